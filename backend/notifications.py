"""
Due-date reminders delivered as push notifications.

A due check loads every active task, buckets it by time remaining and sends
one reminder per unfinished member with a registered push token. Delivery is
best effort: failures are logged and counted, never raised, and never touch
task state.
"""

import asyncio
import logging
from typing import Dict, Optional, Sequence

import httpx
from sqlalchemy.orm import Session

import config
import models
import schemas
from database import SessionLocal
from due_windows import classify
from errors import DispatchError
from task_store import TaskStore
from time_utils import Timestamp, utc_now

logger = logging.getLogger(__name__)


def format_hours(seconds: float) -> str:
    hours = seconds / 3600
    return f"{hours:g}"


class PushDispatcher:
    """Sends Expo-style push messages over HTTP."""

    def __init__(self, url: Optional[str] = None, timeout: Optional[float] = None, client: Optional[httpx.Client] = None):
        self.url = url or config.PUSH_API_URL
        self.timeout = timeout or config.PUSH_TIMEOUT_SECONDS
        self._client = client

    def _post(self, message: dict) -> dict:
        client = self._client or httpx.Client(timeout=self.timeout)
        try:
            response = client.post(
                self.url,
                json=message,
                headers={"Accept": "application/json", "Accept-Encoding": "gzip, deflate"},
            )
        except httpx.RequestError as e:
            raise DispatchError(f"Push request failed: {e}") from e
        finally:
            if self._client is None:
                client.close()

        if response.status_code >= 400:
            raise DispatchError(f"Push service returned HTTP {response.status_code}: {response.text}")
        try:
            return response.json()
        except ValueError:
            return {}

    def send_due_reminder(self, destination: str, until_due_seconds: float, task_name: str) -> dict:
        """
        Raises:
            DispatchError: if the push service could not be reached or refused the message
        """
        message = {
            "to": destination,
            "sound": "default",
            "title": "⏰ Task Due Soon",
            "body": f'Your task "{task_name}" is due in {format_hours(until_due_seconds)} hours!',
            "data": {"task_name": task_name, "until_due": until_due_seconds},
        }
        result = self._post(message)
        logger.info(f"Due reminder sent for task '{task_name}' ({until_due_seconds}s window)")
        return result

    def send_test(self, destination: str) -> dict:
        message = {
            "to": destination,
            "sound": "default",
            "title": "📆 Test Notification",
            "body": "This is a test push notification from the task tree backend!",
            "data": {"test": True},
        }
        result = self._post(message)
        logger.info("Test notification sent")
        return result


def run_due_check(
    db: Session,
    dispatcher: PushDispatcher,
    windows: Optional[Sequence[float]] = None,
    now: Optional[Timestamp] = None,
) -> schemas.DueCheckResult:
    """Run one reminder pass over every active task."""
    windows = windows or config.DUE_WINDOWS
    now = now if now is not None else utc_now()

    store = TaskStore(db)
    tasks = store.query(models.Task.state == models.TaskState.active)
    grouped = classify(tasks, windows, now)

    tokens: Dict[str, Optional[str]] = {}
    sent = failures = skipped = 0
    for window, bucket in grouped.items():
        for task in bucket:
            for member_id in task.unfinished_members or []:
                if member_id not in tokens:
                    member = db.query(models.Member).filter(models.Member.id == member_id).first()
                    tokens[member_id] = member.push_token if member else None
                token = tokens[member_id]
                if not token:
                    logger.debug(f"Member {member_id} has no push token, skipping reminder for task {task.id}")
                    skipped += 1
                    continue
                try:
                    dispatcher.send_due_reminder(token, window, task.name)
                    sent += 1
                except DispatchError as e:
                    logger.error(f"❌ Failed to send due reminder for task {task.id} to {member_id}: {e}")
                    failures += 1

    logger.info(f"Due check finished: {len(tasks)} task(s), {sent} reminder(s) sent, {failures} failed, {skipped} skipped")
    return schemas.DueCheckResult(
        checked=len(tasks),
        reminders_sent=sent,
        failures=failures,
        skipped=skipped,
        windows={f"{window:g}": len(bucket) for window, bucket in grouped.items()},
    )


def _due_check_once(dispatcher: PushDispatcher) -> None:
    db = SessionLocal()
    try:
        run_due_check(db, dispatcher)
    finally:
        db.close()


async def due_check_loop(interval_seconds: int, dispatcher: Optional[PushDispatcher] = None) -> None:
    """Run a due check every ``interval_seconds`` until cancelled."""
    dispatcher = dispatcher or PushDispatcher()
    logger.info(f"Due reminder loop started (every {interval_seconds}s, windows {config.DUE_WINDOWS})")
    while True:
        await asyncio.sleep(interval_seconds)
        logger.debug("Checking for grouped due tasks...")
        try:
            await asyncio.to_thread(_due_check_once, dispatcher)
        except Exception as e:
            # A failed pass must not stop the loop; the next tick retries
            logger.error(f"Due check pass failed: {e}")
