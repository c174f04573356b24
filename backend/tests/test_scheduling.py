"""
Tests for schedule request building and the optimizer client.

Outbound HTTP is served by ``httpx.MockTransport``; nothing leaves the process.
"""

import json
import logging
from datetime import datetime, timedelta, timezone

import httpx
import pytest

import config
import models
import schemas
from errors import OptimizerError
from scheduling import OptimizerClient, ScheduleRequestBuilder, schedule_tasks

logger = logging.getLogger(__name__)

NOW = datetime(2025, 1, 1, tzinfo=timezone.utc)


def make_record(task_id, due_in_seconds, penalty=None, expected_duration=None) -> models.Task:
    """Unsaved task record; the builder only reads attributes."""
    return models.Task(
        id=task_id,
        owner="u1",
        name=task_id,
        due_at=NOW + timedelta(seconds=due_in_seconds),
        penalty=penalty,
        expected_duration=expected_duration,
    )


def optimizer_returning(payload, status_code=200, seen=None) -> OptimizerClient:
    def handler(request: httpx.Request) -> httpx.Response:
        if seen is not None:
            seen.append(json.loads(request.content.decode()))
        return httpx.Response(status_code, json=payload)

    return OptimizerClient(url="https://optimizer.test/optimize", client=httpx.Client(transport=httpx.MockTransport(handler)))


# ============== Request building ==============


def test_vectors_share_index_positions():
    tasks = [
        make_record("a", 600, penalty=2.5, expected_duration=1200),
        make_record("b", 7200, penalty=0.0, expected_duration=300),
    ]

    request = ScheduleRequestBuilder(now=NOW).build_request(tasks, algorithm_id=3)

    assert request.task_ids == ["a", "b"]
    assert request.expected_duration == [1200.0, 300.0]
    assert request.penalty == [2.5, 0.0]
    assert request.seconds_until_due == [600.0, 7200.0]
    assert request.algorithm_id == 3


def test_missing_costs_use_defaults():
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("a", 60)])

    assert request.penalty == [0.0]
    assert request.expected_duration == [config.DEFAULT_EXPECTED_DURATION]
    assert config.DEFAULT_EXPECTED_DURATION > 0


def test_overdue_tasks_have_negative_time_left():
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("late", -90)])

    assert request.seconds_until_due == [-90.0]


def test_wire_format_uses_optimizer_field_names():
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("a", 60)], algorithm_id=1)

    body = request.model_dump(by_alias=True)

    assert set(body) == {"expectedDuration", "penalty", "secondsUntilDue", "taskIds", "algorithmId"}


# ============== Result mapping ==============


def test_map_result_by_task_id_keeps_optimizer_order():
    builder = ScheduleRequestBuilder(now=NOW)
    request = builder.build_request([make_record("a", 60), make_record("b", 120)])

    entries = builder.map_result(request, [
        {"taskId": "b", "startOffset": 0, "duration": 300},
        {"taskId": "a", "startOffset": 300, "duration": 600},
    ])

    assert [e.task_id for e in entries] == ["b", "a"]
    assert entries[1].start_offset == 300


def test_map_result_by_position():
    builder = ScheduleRequestBuilder(now=NOW)
    request = builder.build_request([make_record("a", 60, expected_duration=50), make_record("b", 120)])

    entries = builder.map_result(request, {"schedule": [{"index": 1, "startOffset": 0}, {"index": 0, "startOffset": 10}]})

    assert [e.task_id for e in entries] == ["b", "a"]
    # Duration falls back to the estimate that was sent
    assert entries[1].duration == 50


@pytest.mark.parametrize("payload", [
    {"error": "solver timeout"},
    {"schedule": "nope"},
    [{"taskId": "zzz", "startOffset": 0}],
    [{"index": 7}],
    [{"taskId": "a", "startOffset": "soon"}],
    ["a"],
])
def test_unusable_results_raise(payload):
    builder = ScheduleRequestBuilder(now=NOW)
    request = builder.build_request([make_record("a", 60)])

    with pytest.raises(OptimizerError):
        builder.map_result(request, payload)


# ============== Optimizer client ==============


def test_client_posts_request_and_returns_json():
    seen = []
    client = optimizer_returning([{"taskId": "a", "startOffset": 0, "duration": 60}], seen=seen)
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("a", 60)], algorithm_id=2)

    payload = client.optimize(request)

    assert payload == [{"taskId": "a", "startOffset": 0, "duration": 60}]
    assert seen[0]["taskIds"] == ["a"]
    assert seen[0]["algorithmId"] == 2


def test_client_http_error_raises():
    client = optimizer_returning({"detail": "boom"}, status_code=500)
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("a", 60)])

    with pytest.raises(OptimizerError):
        client.optimize(request)


def test_client_transport_error_raises():
    def handler(request):
        raise httpx.ConnectError("connection refused")

    client = OptimizerClient(url="https://optimizer.test/optimize", client=httpx.Client(transport=httpx.MockTransport(handler)))
    request = ScheduleRequestBuilder(now=NOW).build_request([make_record("a", 60)])

    with pytest.raises(OptimizerError):
        client.optimize(request)


def test_schedule_tasks_end_to_end():
    client = optimizer_returning([{"index": 0, "startOffset": 0, "duration": 60}])

    entries = schedule_tasks([make_record("a", 60)], client=client, now=NOW)

    assert entries == [schemas.ScheduleEntry(task_id="a", start_offset=0, duration=60)]


def test_schedule_tasks_without_tasks_skips_optimizer():
    seen = []
    client = optimizer_returning([], seen=seen)

    assert schedule_tasks([], client=client, now=NOW) == []
    assert seen == []
