"""
Schedule requests for the external optimizer.

The builder projects a member's actionable tasks into parallel cost vectors
(position i of every vector describes the same task), the client posts them
to the optimizer, and the builder maps the optimizer's ordering back to task
identifiers.
"""

import logging
from typing import Any, List, Optional, Sequence

import httpx

import config
import models
import schemas
from errors import OptimizerError
from time_utils import Timestamp, seconds_until, utc_now

logger = logging.getLogger(__name__)

DEFAULT_PENALTY = 0.0


class ScheduleRequestBuilder:
    def __init__(self, now: Optional[Timestamp] = None, default_expected_duration: Optional[float] = None):
        self.now = now if now is not None else utc_now()
        self.default_expected_duration = default_expected_duration or config.DEFAULT_EXPECTED_DURATION

    def build_request(self, tasks: Sequence[models.Task], algorithm_id: int = 0) -> schemas.ScheduleRequest:
        request = schemas.ScheduleRequest(algorithm_id=algorithm_id)
        for task in tasks:
            request.task_ids.append(task.id)
            request.expected_duration.append(
                float(task.expected_duration) if task.expected_duration is not None else self.default_expected_duration
            )
            request.penalty.append(float(task.penalty) if task.penalty is not None else DEFAULT_PENALTY)
            request.seconds_until_due.append(seconds_until(task.due_at, self.now))

        logger.debug(f"Built schedule request for {len(request.task_ids)} task(s), algorithm {algorithm_id}")
        return request

    def map_result(self, request: schemas.ScheduleRequest, payload: Any) -> List[schemas.ScheduleEntry]:
        """
        Translate an optimizer response into schedule entries.

        Entries may name their task directly (``taskId``) or by position in the
        request vectors (``index``). Either way the task must be one that was
        sent.

        Raises:
            OptimizerError: on an error payload or an entry that cannot be mapped
        """
        if isinstance(payload, dict):
            if payload.get("error"):
                raise OptimizerError(f"Optimizer returned an error: {payload['error']}")
            payload = payload.get("schedule", payload.get("result"))
        if not isinstance(payload, list):
            raise OptimizerError("Optimizer response is not a list of schedule entries")

        known = set(request.task_ids)
        entries = []
        for position, raw in enumerate(payload):
            if not isinstance(raw, dict):
                raise OptimizerError(f"Schedule entry {position} is not an object")

            task_id = raw.get("taskId", raw.get("task_id"))
            if task_id is None and "index" in raw:
                index = raw["index"]
                if not isinstance(index, int) or not 0 <= index < len(request.task_ids):
                    raise OptimizerError(f"Schedule entry {position} has out-of-range index {index!r}")
                task_id = request.task_ids[index]
            if task_id not in known:
                raise OptimizerError(f"Schedule entry {position} refers to unknown task {task_id!r}")

            try:
                start_offset = float(raw.get("startOffset", raw.get("start_offset", 0)))
                duration = float(raw.get("duration", request.expected_duration[request.task_ids.index(task_id)]))
            except (TypeError, ValueError) as e:
                raise OptimizerError(f"Schedule entry {position} has non-numeric timing: {e}") from e

            entries.append(schemas.ScheduleEntry(task_id=task_id, start_offset=start_offset, duration=duration))

        return entries


class OptimizerClient:
    """Thin HTTP client for the schedule optimizer."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.url = url or config.OPTIMIZER_URL
        self.timeout = timeout or config.OPTIMIZER_TIMEOUT_SECONDS
        self._client = client

    def optimize(self, request: schemas.ScheduleRequest) -> Any:
        """
        POST the request and return the decoded JSON response.

        Raises:
            OptimizerError: on transport failure, HTTP error status or invalid JSON
        """
        body = request.model_dump(by_alias=True)
        logger.info(f"Requesting schedule for {len(request.task_ids)} task(s) from {self.url}")

        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(self.url, json=body)
        except httpx.RequestError as e:
            logger.error(f"Optimizer request failed: {e}")
            raise OptimizerError(f"Optimizer request failed: {e}") from e
        finally:
            if self._client is None:
                client.close()

        if response.status_code >= 400:
            logger.error(f"Optimizer returned HTTP {response.status_code}: {response.text}")
            raise OptimizerError(f"Optimizer error: {response.status_code}")

        try:
            return response.json()
        except ValueError as e:
            raise OptimizerError("Invalid JSON response from optimizer") from e


def schedule_tasks(
    tasks: Sequence[models.Task],
    algorithm_id: int = 0,
    client: Optional[OptimizerClient] = None,
    now: Optional[Timestamp] = None,
) -> List[schemas.ScheduleEntry]:
    """Build the request, ask the optimizer, map the answer back to task ids."""
    builder = ScheduleRequestBuilder(now=now)
    request = builder.build_request(tasks, algorithm_id)
    if not request.task_ids:
        logger.info("No actionable tasks to schedule")
        return []
    payload = (client or OptimizerClient()).optimize(request)
    entries = builder.map_result(request, payload)
    logger.info(f"Optimizer ordered {len(entries)} task(s)")
    return entries
