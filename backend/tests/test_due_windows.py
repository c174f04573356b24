"""
Tests for reminder window bucketing and timestamp normalization.
"""

from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from due_windows import bucket_for, classify, normalize_boundaries
from errors import InvalidField
from time_utils import seconds_until, to_epoch_seconds, to_utc_datetime

NOW = 1_700_000_000
WINDOWS = [3600, 86400]


@dataclass
class DueItem:
    id: str
    due_at: Optional[object]


def test_task_within_first_window():
    task = DueItem("t", NOW + 1800)

    result = classify([task], WINDOWS, NOW)

    assert result == {3600: [task], 86400: []}


def test_overdue_task_is_excluded():
    result = classify([DueItem("t", NOW - 10)], WINDOWS, NOW)

    assert result == {3600: [], 86400: []}


def test_task_due_now_is_excluded():
    result = classify([DueItem("t", NOW)], WINDOWS, NOW)

    assert all(bucket == [] for bucket in result.values())


def test_boundary_value_belongs_to_closer_window():
    task = DueItem("t", NOW + 3600)

    result = classify([task], WINDOWS, NOW)

    assert result[3600] == [task]
    assert result[86400] == []


def test_just_past_boundary_goes_to_next_window():
    task = DueItem("t", NOW + 3601)

    result = classify([task], WINDOWS, NOW)

    assert result[86400] == [task]


def test_task_beyond_last_window_is_excluded():
    result = classify([DueItem("t", NOW + 86401)], WINDOWS, NOW)

    assert result == {3600: [], 86400: []}


def test_input_order_is_kept_within_a_bucket():
    tasks = [DueItem("late", NOW + 3000), DueItem("early", NOW + 100), DueItem("mid", NOW + 2000)]

    result = classify(tasks, WINDOWS, NOW)

    assert [t.id for t in result[3600]] == ["late", "early", "mid"]


def test_unsorted_and_duplicate_boundaries_are_normalized():
    result = classify([DueItem("t", NOW + 7200)], [86400, 3600, 86400, 172800], NOW)

    assert list(result) == [3600, 86400, 172800]
    assert [t.id for t in result[86400]] == ["t"]


def test_tasks_without_due_time_are_skipped():
    result = classify([DueItem("t", None)], WINDOWS, NOW)

    assert result == {3600: [], 86400: []}


def test_mixed_timestamp_representations():
    now = datetime.fromtimestamp(NOW, tz=timezone.utc)
    tasks = [
        DueItem("aware", now + timedelta(minutes=30)),
        DueItem("naive", (now + timedelta(hours=2)).replace(tzinfo=None)),
        DueItem("iso", (now + timedelta(minutes=10)).isoformat().replace("+00:00", "Z")),
        DueItem("epoch", NOW + 50_000),
    ]

    result = classify(tasks, WINDOWS, now)

    assert [t.id for t in result[3600]] == ["aware", "iso"]
    assert [t.id for t in result[86400]] == ["naive", "epoch"]


def test_custom_due_accessor():
    result = classify([{"EndTime": NOW + 60}], WINDOWS, NOW, due_of=lambda t: t["EndTime"])

    assert result[3600] == [{"EndTime": NOW + 60}]


@pytest.mark.parametrize("boundaries", [[], [0, 3600], [-5]])
def test_invalid_boundaries_are_rejected(boundaries):
    with pytest.raises(InvalidField):
        normalize_boundaries(boundaries)


def test_bucket_for():
    assert bucket_for(1, [10, 20]) == 10
    assert bucket_for(10, [10, 20]) == 10
    assert bucket_for(10.5, [10, 20]) == 20
    assert bucket_for(21, [10, 20]) is None
    assert bucket_for(0, [10, 20]) is None


# ============== time_utils ==============


def test_to_epoch_seconds_normalizes_every_representation():
    expected = 1_700_000_000.0
    aware = datetime.fromtimestamp(expected, tz=timezone.utc)

    assert to_epoch_seconds(aware) == expected
    assert to_epoch_seconds(aware.replace(tzinfo=None)) == expected
    assert to_epoch_seconds(aware.isoformat()) == expected
    assert to_epoch_seconds("2023-11-14T22:13:20Z") == expected
    assert to_epoch_seconds(1_700_000_000) == expected


def test_to_epoch_seconds_converts_other_offsets():
    assert to_epoch_seconds("2023-11-15T00:13:20+02:00") == 1_700_000_000.0


@pytest.mark.parametrize("value", ["tomorrow", True, None, [1]])
def test_to_epoch_seconds_rejects_garbage(value):
    with pytest.raises(InvalidField):
        to_epoch_seconds(value)


def test_seconds_until_is_negative_when_overdue():
    assert seconds_until(NOW - 30, NOW) == -30
    assert seconds_until(NOW + 30, NOW) == 30


def test_to_utc_datetime_keeps_the_instant():
    stored = to_utc_datetime("2023-11-15T03:13:20+05:00")

    assert stored == datetime(2023, 11, 14, 22, 13, 20, tzinfo=timezone.utc)
    assert stored.utcoffset() == timedelta(0)
    assert to_utc_datetime(1_700_000_000) == stored
