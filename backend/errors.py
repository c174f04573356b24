"""
Domain errors raised by the store, the propagation engine and the classifiers.

Routes translate these into HTTP responses; nothing in this module knows
about HTTP.
"""

from typing import List, Optional


class TaskTreeError(Exception):
    """Base class for every error the task tree core reports."""


class NotFound(TaskTreeError):
    """A referenced task, meeting or member does not exist."""

    def __init__(self, kind: str, identifier: str):
        self.kind = kind
        self.identifier = identifier
        super().__init__(f"{kind} {identifier} not found")


class StoreError(TaskTreeError):
    """The underlying persistence layer failed. Safe to retry."""

    def __init__(self, message: str, task_id: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message)


class InvalidField(TaskTreeError):
    """A write targeted a non-editable field or carried a malformed value."""

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid field '{field}': {reason}")


class TaskNotActive(InvalidField):
    """The task is Deleted and can no longer be modified."""

    def __init__(self, task_id: str):
        self.task_id = task_id
        super().__init__("state", f"task {task_id} is deleted")


class PartialPropagation(TaskTreeError):
    """
    A propagation walk stopped early because of a StoreError.

    Nodes listed in ``visited`` keep their updates. ``pending`` holds the
    node that failed followed by every node the walk had queued but not yet
    reached, in visiting order.
    """

    def __init__(
        self,
        operation: str,
        task_id: str,
        stopped_at: str,
        last_success: Optional[str],
        visited: List[str],
        member_id: Optional[str] = None,
        pending: Optional[List[str]] = None,
    ):
        self.operation = operation
        self.task_id = task_id
        self.stopped_at = stopped_at
        self.last_success = last_success
        self.visited = visited
        self.member_id = member_id
        self.pending = pending if pending is not None else [stopped_at]
        super().__init__(
            f"{operation} on task {task_id} stopped at node {stopped_at} "
            f"(last successful node: {last_success})"
        )

    def to_dict(self) -> dict:
        return {
            "error": "partial_propagation",
            "operation": self.operation,
            "task_id": self.task_id,
            "stopped_at": self.stopped_at,
            "last_success": self.last_success,
            "member_id": self.member_id,
            "visited": self.visited,
            "pending": self.pending,
        }


class OptimizerError(TaskTreeError):
    """The external schedule optimizer failed or returned an unusable answer."""


class DispatchError(TaskTreeError):
    """A push notification could not be delivered."""
