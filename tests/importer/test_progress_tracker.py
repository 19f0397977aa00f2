"""Tests for checkpoint, heartbeat and deferred-operation state."""

import json
from datetime import timedelta
from itertools import combinations

import pytest

from liftsync.importer import progress_tracker as tracker
from liftsync.importer.models import ActiveImportState
from liftsync.importer.steps import PIPELINE_ORDER, StepName

TIMEOUT = timedelta(minutes=10)


def test_fresh_document_has_all_steps_remaining(store):
    assert tracker.get_remaining_steps(store) == [
        StepName.EXERCISES,
        StepName.ROUTINE_FOLDERS,
        StepName.ROUTINES,
        StepName.WORKOUTS,
    ]
    assert tracker.load_progress(store) is None
    assert tracker.has_progress(store) is False


def test_saving_first_step_resumes_at_second(store):
    tracker.save_progress(store, ["exercises"])

    assert tracker.get_remaining_steps(store) == [StepName.ROUTINE_FOLDERS, StepName.ROUTINES, StepName.WORKOUTS]
    assert tracker.is_step_complete(store, StepName.EXERCISES)
    assert not tracker.is_step_complete(store, StepName.WORKOUTS)


@pytest.mark.parametrize(
    "completed",
    [list(c) for r in range(len(PIPELINE_ORDER) + 1) for c in combinations(PIPELINE_ORDER, r)],
)
def test_remaining_steps_preserve_pipeline_order(store, completed):
    tracker.save_progress(store, list(reversed(completed)))

    expected = [step for step in PIPELINE_ORDER if step not in completed]
    assert tracker.get_remaining_steps(store) == expected
    assert tracker.has_progress(store) is bool(completed)


def test_saved_progress_uses_document_json_shape(store, clock):
    tracker.save_progress(store, [StepName.EXERCISES, StepName.ROUTINE_FOLDERS], now=clock())

    payload = json.loads(store.data[tracker.PROGRESS_KEY])
    assert payload["completedSteps"] == ["exercises", "routineFolders"]
    assert payload["isResuming"] is True
    assert payload["timestamp"].startswith("2025-03-01T12:00:00")


def test_completed_steps_keep_completion_order(store):
    tracker.save_progress(store, ["routines", "exercises"])

    assert tracker.get_completed_steps(store) == [StepName.ROUTINES, StepName.EXERCISES]


def test_load_drops_unknown_and_duplicate_steps(store):
    store.data[tracker.PROGRESS_KEY] = json.dumps(
        {
            "completedSteps": ["exercises", "bogus", "exercises", "workouts"],
            "timestamp": "2025-03-01T12:00:00Z",
            "isResuming": True,
        }
    )

    assert tracker.get_completed_steps(store) == [StepName.EXERCISES, StepName.WORKOUTS]


def test_corrupt_progress_is_treated_as_absent(store):
    store.data[tracker.PROGRESS_KEY] = "{not json"

    assert tracker.load_progress(store) is None
    assert tracker.get_remaining_steps(store) == list(PIPELINE_ORDER)


def test_clear_progress_then_load_returns_none(store):
    tracker.save_progress(store, ["exercises"])
    tracker.clear_progress(store)

    assert tracker.load_progress(store) is None


def test_save_progress_swallows_storage_failure(store):
    store.available = False

    tracker.save_progress(store, ["exercises"])

    store.available = True
    assert tracker.load_progress(store) is None


def test_save_progress_swallows_invalid_input(store):
    tracker.save_progress(store, None)

    assert tracker.load_progress(store) is None


def test_import_active_immediately_after_mark(store, clock):
    tracker.mark_import_active(store, now=clock())

    assert tracker.is_import_active(store, now=clock(), timeout=TIMEOUT) is True


def test_active_flag_expires_after_timeout_and_is_deleted(store, clock):
    tracker.mark_import_active(store, now=clock())
    clock.advance(minutes=10, milliseconds=1)

    assert tracker.is_import_active(store, now=clock(), timeout=TIMEOUT) is False
    assert tracker.ACTIVE_IMPORT_KEY not in store.data


def test_active_flag_still_valid_exactly_at_timeout(store, clock):
    tracker.mark_import_active(store, now=clock())
    clock.advance(minutes=10)

    assert tracker.is_import_active(store, now=clock(), timeout=TIMEOUT) is True


def test_heartbeat_extends_active_window(store, clock):
    tracker.mark_import_active(store, now=clock())
    clock.advance(minutes=8)
    tracker.update_heartbeat(store, now=clock())
    clock.advance(minutes=8)

    assert tracker.is_import_active(store, now=clock(), timeout=TIMEOUT) is True


def test_unreadable_active_record_is_healed(store, clock):
    store.data[tracker.ACTIVE_IMPORT_KEY] = "garbage"

    assert tracker.is_import_active(store, now=clock()) is False
    assert tracker.ACTIVE_IMPORT_KEY not in store.data


def test_clear_import_active(store, clock):
    tracker.mark_import_active(store, now=clock())
    tracker.clear_import_active(store)

    assert tracker.is_import_active(store, now=clock()) is False


def test_is_expired_is_pure(clock):
    state = ActiveImportState(timestamp=clock())

    assert tracker.is_expired(state, clock() + TIMEOUT, TIMEOUT) is False
    assert tracker.is_expired(state, clock() + TIMEOUT + timedelta(milliseconds=1), TIMEOUT) is True


def test_naive_stored_timestamp_is_read_as_utc(store, clock):
    store.data[tracker.ACTIVE_IMPORT_KEY] = json.dumps({"timestamp": "2025-03-01T11:55:00"})

    assert tracker.is_import_active(store, now=clock(), timeout=TIMEOUT) is True


def test_naive_clock_is_read_as_utc(store, clock):
    tracker.mark_import_active(store, now=clock())
    naive_now = clock().replace(tzinfo=None)

    assert tracker.is_import_active(store, now=naive_now + TIMEOUT, timeout=TIMEOUT) is True
    assert tracker.is_import_active(store, now=naive_now + TIMEOUT + timedelta(seconds=1), timeout=TIMEOUT) is False


def test_deferred_operation_lifecycle(store):
    tracker.mark_deferred_operation(store, "x")
    assert tracker.is_operation_deferred(store, "x") is True
    assert tracker.get_deferred_operations(store) == ["x"]

    tracker.mark_operation_complete(store, "x")
    assert tracker.is_operation_deferred(store, "x") is False
    assert tracker.get_deferred_operations(store) == []


def test_deferred_ledger_json_shape(store, clock):
    tracker.mark_deferred_operation(store, "exerciseCounts", now=clock())

    payload = json.loads(store.data[tracker.DEFERRED_OPERATIONS_KEY])
    assert payload["exerciseCounts"]["needsCompletion"] is True
    assert "timestamp" in payload["exerciseCounts"]


def test_deferred_entries_without_needs_completion_are_not_listed(store):
    store.data[tracker.DEFERRED_OPERATIONS_KEY] = json.dumps(
        {
            "a": {"timestamp": "2025-03-01T12:00:00Z", "needsCompletion": True},
            "b": {"timestamp": "2025-03-01T12:00:00Z", "needsCompletion": False},
        }
    )

    assert tracker.get_deferred_operations(store) == ["a"]
    assert tracker.is_operation_deferred(store, "b") is False


def test_completing_unknown_operation_is_noop(store):
    tracker.mark_deferred_operation(store, "a")
    tracker.mark_operation_complete(store, "missing")

    assert tracker.get_deferred_operations(store) == ["a"]


def test_reset_import_clears_everything(store, clock):
    tracker.save_progress(store, ["exercises"])
    tracker.mark_import_active(store, now=clock())
    tracker.mark_deferred_operation(store, "a")

    tracker.reset_import(store)

    assert tracker.load_progress(store) is None
    assert tracker.is_import_active(store, now=clock()) is False
    assert tracker.get_deferred_operations(store) == []


def test_reads_degrade_when_store_unavailable(store, clock):
    tracker.save_progress(store, ["exercises"])
    tracker.mark_import_active(store, now=clock())
    store.available = False

    assert tracker.get_remaining_steps(store) == list(PIPELINE_ORDER)
    assert tracker.is_import_active(store, now=clock()) is False
    tracker.mark_deferred_operation(store, "a")
    tracker.clear_progress(store)
