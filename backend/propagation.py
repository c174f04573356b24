"""
Propagation of membership, completion and deletion through a task tree.

Every walk resolves edges through the TaskStore one node at a time and keeps
an explicit worklist instead of recursing, so tree depth is bounded only by
the data. Each node is read, modified and written back before any of its
children are visited.

Walks are not transactional. When the store fails part-way the walk stops,
already-written nodes keep their updates, and the caller gets a
PartialPropagation error carrying the nodes still left to visit. Deletion and
joining converge when the identical call is replayed; below the start node
completion walks stop at nodes already in the target state, so they are
recovered with ``resume()``, which continues from the unvisited worklist.
"""

import logging
from dataclasses import dataclass, field
from typing import Callable, Iterable, List, Optional

import models
from errors import NotFound, PartialPropagation, StoreError, TaskNotActive
from task_store import TaskStore

logger = logging.getLogger(__name__)

COMPLETE = "complete"
UNCOMPLETE = "uncomplete"
DELETE = "delete"
JOIN = "join"


def with_member(items: Optional[list], member_id: str) -> list:
    """Ordered-set add: returns a new list, appending ``member_id`` if absent."""
    items = list(items or [])
    if member_id not in items:
        items.append(member_id)
    return items


def without_member(items: Optional[list], member_id: str) -> list:
    """Ordered-set remove: returns a new list without ``member_id``."""
    return [item for item in (items or []) if item != member_id]


@dataclass
class PropagationReport:
    """What a finished walk touched."""

    operation: str
    task_id: str
    member_id: Optional[str] = None
    visited: List[str] = field(default_factory=list)
    updated: List[str] = field(default_factory=list)
    skipped: List[str] = field(default_factory=list)


class PropagationEngine:
    def __init__(self, store: TaskStore):
        self.store = store

    # ---- internal helpers ----

    def _fail(self, report: PropagationReport, node_id: str, pending: List[str], exc: StoreError) -> PartialPropagation:
        last_success = report.visited[-1] if report.visited else None
        logger.warning(
            f"{report.operation} on task {report.task_id} aborted at node {node_id} "
            f"after {len(report.visited)} node(s), {len(pending)} left: {exc}"
        )
        return PartialPropagation(
            operation=report.operation,
            task_id=report.task_id,
            stopped_at=node_id,
            last_success=last_success,
            visited=list(report.visited),
            member_id=report.member_id,
            pending=pending,
        )

    def _fetch(self, report: PropagationReport, node_id: str) -> Optional[models.Task]:
        """Read one node; dangling references are recorded and skipped."""
        try:
            return self.store.get(node_id)
        except NotFound:
            logger.warning(f"{report.operation}: task {node_id} referenced from the tree does not exist, skipping")
            report.skipped.append(node_id)
            return None

    def _write(self, report: PropagationReport, task: models.Task) -> None:
        self.store.put(task)
        report.updated.append(task.id)

    def _load_start(self, task_id: str, member_id: Optional[str] = None, require_active: bool = True) -> models.Task:
        # NotFound and StoreError on the start node propagate unchanged: nothing was written yet
        task = self.store.get(task_id)
        if require_active and not task.is_active:
            logger.info(f"Task {task_id} is deleted, refusing to propagate")
            raise TaskNotActive(task_id)
        if member_id is not None and member_id not in (task.members or []):
            logger.info(f"Member {member_id} is not a member of task {task_id}")
            raise NotFound("Member", member_id)
        return task

    def _walk_down(
        self,
        report: PropagationReport,
        start_ids: Iterable[str],
        visit: Callable[[models.Task], bool],
    ) -> PropagationReport:
        """
        Depth-first walk over ``start_ids`` and their descendants.

        ``visit`` updates one node and returns whether to descend into its
        children.
        """
        stack = list(reversed(list(start_ids)))
        seen = set()
        while stack:
            node_id = stack.pop()
            if node_id in seen:
                logger.warning(f"Cycle detected at task {node_id} during {report.operation} of {report.task_id}")
                continue
            seen.add(node_id)

            try:
                task = self._fetch(report, node_id)
                if task is None:
                    continue
                descend = visit(task)
            except StoreError as e:
                raise self._fail(report, node_id, [node_id] + stack[::-1], e) from e

            report.visited.append(node_id)
            if descend:
                stack.extend(reversed(task.children or []))

        return report

    def _walk_up(self, report: PropagationReport, start_id: str, member_id: str) -> PropagationReport:
        current_id = start_id
        seen = set()  # Guard against corrupted parent chains
        while current_id is not None:
            if current_id in seen:
                logger.warning(f"Circular parent chain detected involving task {current_id}")
                break
            seen.add(current_id)

            try:
                task = self._fetch(report, current_id)
                if task is None:
                    break
                task.members = with_member(task.members, member_id)
                task.unfinished_members = with_member(task.unfinished_members, member_id)
                self._write(report, task)
            except StoreError as e:
                raise self._fail(report, current_id, [current_id], e) from e

            report.visited.append(current_id)
            logger.debug(f"Member {member_id} added to task {current_id}")
            current_id = task.parent

        return report

    # ---- node visitors ----

    def _completer(self, report: PropagationReport, member_id: str, start_id: Optional[str]) -> Callable[[models.Task], bool]:
        def visit(task: models.Task) -> bool:
            if member_id not in (task.unfinished_members or []):
                if task.id == start_id:
                    # Children may still be unfinished below a finished start node
                    return True
                logger.debug(f"Member {member_id} already finished task {task.id}, branch done")
                return False
            task.unfinished_members = without_member(task.unfinished_members, member_id)
            self._write(report, task)
            return True

        return visit

    def _uncompleter(self, report: PropagationReport, member_id: str, start_id: Optional[str]) -> Callable[[models.Task], bool]:
        def visit(task: models.Task) -> bool:
            if member_id not in (task.members or []):
                # Never re-add a non-member: unfinished members must stay a subset of members
                logger.debug(f"Member {member_id} is not part of task {task.id}, subtree skipped")
                return False
            if member_id in (task.unfinished_members or []):
                if task.id == start_id:
                    return True
                logger.debug(f"Member {member_id} already unfinished on task {task.id}, branch done")
                return False
            task.unfinished_members = with_member(task.unfinished_members, member_id)
            self._write(report, task)
            return True

        return visit

    def _deleter(self, report: PropagationReport) -> Callable[[models.Task], bool]:
        def visit(task: models.Task) -> bool:
            if task.state != models.TaskState.deleted:
                task.state = models.TaskState.deleted
                self._write(report, task)
            else:
                logger.debug(f"Task {task.id} already deleted")
            return True

        return visit

    # ---- operations ----

    def complete_for_member(self, task_id: str, member_id: str) -> PropagationReport:
        """
        Mark ``task_id`` and every descendant finished for ``member_id``.

        The start node always descends. Below it a branch stops at the first
        node where the member is already finished, so a repeated call
        performs no writes.

        Raises:
            NotFound: task missing, or member not part of the task
            TaskNotActive: task is deleted
            PartialPropagation: the store failed mid-walk
        """
        logger.info(f"Completing task {task_id} for member {member_id}")
        self._load_start(task_id, member_id)
        report = PropagationReport(operation=COMPLETE, task_id=task_id, member_id=member_id)
        self._walk_down(report, [task_id], self._completer(report, member_id, task_id))
        logger.info(f"Completed task {task_id} for {member_id}: {len(report.updated)} node(s) updated")
        return report

    def uncomplete_for_member(self, task_id: str, member_id: str) -> PropagationReport:
        """
        Mark ``task_id`` and its descendants unfinished again for ``member_id``.

        The start node is always visited and always descends. Below it a
        branch stops where the member is already unfinished, and subtrees the
        member never joined are left alone.

        Raises:
            NotFound: task missing, or member not part of the task
            TaskNotActive: task is deleted
            PartialPropagation: the store failed mid-walk
        """
        logger.info(f"Uncompleting task {task_id} for member {member_id}")
        self._load_start(task_id, member_id)
        report = PropagationReport(operation=UNCOMPLETE, task_id=task_id, member_id=member_id)
        self._walk_down(report, [task_id], self._uncompleter(report, member_id, task_id))
        logger.info(f"Uncompleted task {task_id} for {member_id}: {len(report.updated)} node(s) updated")
        return report

    def delete_cascade(self, task_id: str) -> PropagationReport:
        """
        Mark ``task_id`` and its whole subtree Deleted.

        Already-deleted nodes are not rewritten but are still descended into.
        Parents keep their references to deleted children.

        Raises:
            NotFound: task missing
            PartialPropagation: the store failed mid-walk
        """
        logger.info(f"Deleting task {task_id} and its subtree")
        self._load_start(task_id, require_active=False)
        report = PropagationReport(operation=DELETE, task_id=task_id)
        self._walk_down(report, [task_id], self._deleter(report))
        logger.info(f"Deleted task {task_id}: {len(report.visited)} node(s) visited, {len(report.updated)} updated")
        return report

    def join_ancestors(self, task_id: str, member_id: str) -> PropagationReport:
        """
        Add ``member_id`` to ``task_id`` and every ancestor up to the root.

        Every ancestor is rewritten even when it already lists the member, so a
        retry repairs ancestors left behind by an earlier partial failure.

        Raises:
            NotFound: task missing
            TaskNotActive: task is deleted
            PartialPropagation: the store failed mid-walk
        """
        logger.info(f"Member {member_id} joining task {task_id} and its ancestors")
        self._load_start(task_id)
        report = PropagationReport(operation=JOIN, task_id=task_id, member_id=member_id)
        self._walk_up(report, task_id, member_id)
        logger.info(f"Member {member_id} joined {len(report.visited)} task(s) starting at {task_id}")
        return report

    def resume(self, error: PartialPropagation) -> PropagationReport:
        """
        Continue a walk that stopped with ``error`` from the nodes it had not
        finished. Safe to call repeatedly; may itself raise PartialPropagation
        with a shorter worklist.
        """
        logger.info(f"Resuming {error.operation} of task {error.task_id} at {len(error.pending)} node(s)")
        report = PropagationReport(operation=error.operation, task_id=error.task_id, member_id=error.member_id)

        if error.operation == COMPLETE:
            return self._walk_down(report, error.pending, self._completer(report, error.member_id, None))
        if error.operation == UNCOMPLETE:
            return self._walk_down(report, error.pending, self._uncompleter(report, error.member_id, None))
        if error.operation == DELETE:
            return self._walk_down(report, error.pending, self._deleter(report))
        if error.operation == JOIN:
            return self._walk_up(report, error.pending[0], error.member_id)
        raise ValueError(f"Unknown propagation operation: {error.operation}")
