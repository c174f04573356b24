"""
Viewer-relative leaf detection and the root/leaf task selections built on it.

A task is a leaf for member m when none of its children involves m. This
depends on who is asking and on the children's live membership, so it is
recomputed on every read and never stored.
"""

import logging
from dataclasses import dataclass, field
from typing import List

import models
from errors import NotFound, StoreError
from task_store import TaskStore

logger = logging.getLogger(__name__)


@dataclass
class LeafCheck:
    is_leaf: bool
    warnings: List[str] = field(default_factory=list)


@dataclass
class TaskSelection:
    tasks: List[models.Task] = field(default_factory=list)
    warnings: List[str] = field(default_factory=list)


def is_unfinished_for(task: models.Task, member_id: str) -> bool:
    return member_id in (task.unfinished_members or [])


def is_finished_for(task: models.Task, member_id: str) -> bool:
    """
    Explicit finished test: the member takes part in the task and is no longer
    listed as unfinished. Non-members are never "finished".
    """
    return member_id in (task.members or []) and member_id not in (task.unfinished_members or [])


class LeafClassifier:
    def __init__(self, store: TaskStore):
        self.store = store

    def is_leaf_for(self, task: models.Task, member_id: str) -> LeafCheck:
        """
        Check whether ``task`` is a leaf from ``member_id``'s point of view.

        Each child is fetched individually. A child that cannot be read is
        counted as non-participating, and the failure is reported in
        ``warnings`` so callers can tell it apart from a genuine leaf.
        """
        children = task.children or []
        if not children:
            return LeafCheck(is_leaf=True)

        warnings = []
        for child_id in children:
            try:
                child = self.store.get(child_id)
            except NotFound:
                message = f"Child task {child_id} of task {task.id} does not exist"
                logger.warning(message)
                warnings.append(message)
                continue
            except StoreError as e:
                message = f"Could not read child task {child_id} of task {task.id}: {e}"
                logger.warning(message)
                warnings.append(message)
                continue

            if member_id in (child.members or []):
                logger.debug(f"Task {task.id} is not a leaf for {member_id}: child {child_id} involves them")
                return LeafCheck(is_leaf=False, warnings=warnings)

        return LeafCheck(is_leaf=True, warnings=warnings)

    def _candidates(self, *criteria) -> List[models.Task]:
        return self.store.query(models.Task.state == models.TaskState.active, *criteria)

    def root_tasks_for(self, member_id: str, finished: bool = False) -> TaskSelection:
        """
        Active root tasks the member still has to finish, or with
        ``finished=True`` the active root tasks they already finished.
        """
        wanted = is_finished_for if finished else is_unfinished_for
        tasks = [
            task for task in self._candidates(models.Task.parent.is_(None))
            if wanted(task, member_id)
        ]
        logger.info(f"Found {len(tasks)} {'finished' if finished else 'unfinished'} root task(s) for {member_id}")
        return TaskSelection(tasks=tasks)

    def leaf_tasks_for(self, member_id: str, finished: bool = False) -> TaskSelection:
        """
        Active tasks that are leaves for the member and that they still have
        to finish (or, with ``finished=True``, already finished).
        """
        wanted = is_finished_for if finished else is_unfinished_for
        selection = TaskSelection()
        for task in self._candidates():
            if not wanted(task, member_id):
                continue
            check = self.is_leaf_for(task, member_id)
            selection.warnings.extend(check.warnings)
            if check.is_leaf:
                selection.tasks.append(task)

        if selection.warnings:
            logger.warning(f"Leaf selection for {member_id} is partial: {len(selection.warnings)} child read(s) failed")
        logger.info(f"Found {len(selection.tasks)} {'finished' if finished else 'unfinished'} leaf task(s) for {member_id}")
        return selection
