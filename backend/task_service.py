"""
Task creation and field edits.

Creation under a parent links the new child into the parent's ``children``
and then joins the owner into every ancestor, so a parent always lists at
least the members of its children.
"""

import logging
from typing import Any, Dict

import models
import schemas
from errors import InvalidField, TaskNotActive
from propagation import PropagationEngine, with_member
from task_store import TaskStore
from time_utils import to_utc_datetime

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("name", "detail", "due_at", "penalty", "expected_duration")


def create_task(store: TaskStore, owner: str, data: schemas.TaskCreate) -> models.Task:
    """
    Create a task owned by ``owner``, optionally as a child of ``data.parent``.

    Raises:
        NotFound: the parent does not exist
        TaskNotActive: the parent is deleted
        StoreError / PartialPropagation: persistence failed
    """
    parent = None
    if data.parent is not None:
        parent = store.get(data.parent)
        if not parent.is_active:
            logger.info(f"Refusing to create a subtask under deleted task {parent.id}")
            raise TaskNotActive(parent.id)

    task = models.Task(
        id=models.new_id(),
        owner=owner,
        name=data.name,
        detail=data.detail,
        due_at=to_utc_datetime(data.due_at, "due_at"),
        state=models.TaskState.active,
        parent=data.parent,
        children=[],
        members=[owner],
        unfinished_members=[owner],
        penalty=data.penalty,
        expected_duration=data.expected_duration,
    )
    store.put(task)
    logger.info(f"Task created: id={task.id}, owner={owner}, parent={data.parent}")

    if parent is not None:
        parent.children = with_member(parent.children, task.id)
        store.put(parent)
        logger.debug(f"Linked task {task.id} under parent {parent.id}")
        PropagationEngine(store).join_ancestors(parent.id, owner)

    return task


def edit_task_fields(store: TaskStore, task_id: str, updates: Dict[str, Any]) -> models.Task:
    """
    Apply field edits to a single task. Membership, completion state, tree
    links and state are never editable this way.

    Raises:
        NotFound: task missing
        TaskNotActive: task is deleted
        InvalidField: non-editable field or malformed value
    """
    for key in updates:
        if key not in EDITABLE_FIELDS:
            raise InvalidField(key, "field is not editable")

    if "name" in updates and not (updates["name"] or "").strip():
        raise InvalidField("name", "must not be empty")
    if "penalty" in updates and updates["penalty"] is not None and updates["penalty"] < 0:
        raise InvalidField("penalty", "must be >= 0")
    if "expected_duration" in updates and updates["expected_duration"] is not None and updates["expected_duration"] <= 0:
        raise InvalidField("expected_duration", "must be > 0")
    if "due_at" in updates:
        if updates["due_at"] is None:
            raise InvalidField("due_at", "must not be null")
        updates = {**updates, "due_at": to_utc_datetime(updates["due_at"], "due_at")}
    if "detail" in updates and updates["detail"] is None:
        updates = {**updates, "detail": ""}

    task = store.get(task_id)
    if not task.is_active:
        raise TaskNotActive(task_id)

    for key, value in updates.items():
        logger.debug(f"Task {task_id}: {key} {getattr(task, key)!r} -> {value!r}")
        setattr(task, key, value)

    store.put(task)
    logger.info(f"Task {task_id} updated fields: {sorted(updates)}")
    return task
