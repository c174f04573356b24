"""
Bucketing of tasks into reminder windows by time remaining until due.

Windows are half-open intervals ``(previous, boundary]`` in seconds with an
implicit lower bound of 0. A task due in exactly one hour with windows
``[3600, 86400]`` belongs to the 3600 bucket.
"""

import logging
from typing import Any, Callable, Dict, Iterable, List, Optional

from errors import InvalidField
from time_utils import Timestamp, seconds_until

logger = logging.getLogger(__name__)


def normalize_boundaries(boundaries: Iterable[float]) -> List[float]:
    """
    Sort and de-duplicate window boundaries.

    Raises:
        InvalidField: if no boundary is given or any boundary is not positive
    """
    result = sorted(set(boundaries))
    if not result:
        raise InvalidField("boundaries", "at least one due window is required")
    if result[0] <= 0:
        raise InvalidField("boundaries", f"due windows must be positive, got {result[0]}")
    return result


def bucket_for(until_due: float, boundaries: List[float]) -> Optional[float]:
    """
    Return the boundary of the bucket ``until_due`` falls into, or None when
    it is already due or beyond the last window. ``boundaries`` must be sorted.
    """
    if until_due <= 0:
        return None
    for boundary in boundaries:
        if until_due <= boundary:
            return boundary
    return None


def classify(
    tasks: Iterable[Any],
    boundaries: Iterable[float],
    now: Timestamp,
    due_of: Callable[[Any], Optional[Timestamp]] = lambda task: task.due_at,
) -> Dict[float, List[Any]]:
    """
    Group tasks by reminder window.

    Args:
        tasks: objects carrying a due timestamp
        boundaries: window upper bounds in seconds (any order)
        now: reference time (datetime, epoch seconds or ISO-8601 string)
        due_of: extracts the due timestamp from a task; tasks without one are skipped

    Returns:
        Mapping from every boundary (ascending) to the tasks in that window,
        in input order. Overdue tasks and tasks beyond the last window appear
        in no bucket.
    """
    ordered = normalize_boundaries(boundaries)
    grouped: Dict[float, List[Any]] = {boundary: [] for boundary in ordered}

    for task in tasks:
        due = due_of(task)
        if due is None:
            continue
        until_due = seconds_until(due, now)
        boundary = bucket_for(until_due, ordered)
        if boundary is None:
            logger.debug(f"Task {getattr(task, 'id', task)!s} due in {until_due:.0f}s is outside every window")
            continue
        grouped[boundary].append(task)

    counts = {boundary: len(bucket) for boundary, bucket in grouped.items()}
    logger.debug(f"Classified tasks into windows: {counts}")
    return grouped
