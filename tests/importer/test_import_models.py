"""Tests for step ordering, persisted models and the error hierarchy."""

import pytest

from liftsync.importer.errors import (
    ConfigurationError,
    ImportPipelineError,
    ImportTimeoutError,
    PageNotFoundError,
    StepExecutionError,
    StorageUnavailableError,
)
from liftsync.importer.models import ImportProgressState
from liftsync.importer.steps import PIPELINE_ORDER, StepName, parse_step


def test_pipeline_order():
    assert [str(step) for step in PIPELINE_ORDER] == ["exercises", "routineFolders", "routines", "workouts"]


def test_parse_step():
    assert parse_step("routineFolders") is StepName.ROUTINE_FOLDERS
    assert parse_step("calendar") is None


def test_progress_state_remaining_steps():
    state = ImportProgressState.model_validate(
        {"completedSteps": ["workouts", "exercises"], "timestamp": "2025-03-01T12:00:00Z"}
    )

    assert state.is_resuming is True
    assert state.remaining_steps == [StepName.ROUTINE_FOLDERS, StepName.ROUTINES]


@pytest.mark.parametrize(
    "error_cls",
    [StorageUnavailableError, ConfigurationError, ImportTimeoutError, PageNotFoundError],
)
def test_errors_share_base(error_cls):
    with pytest.raises(ImportPipelineError):
        raise error_cls("failure")


def test_step_execution_error_carries_step():
    error = StepExecutionError("workouts", "HTTP 502")

    assert error.step == "workouts"
    assert "workouts" in str(error)
    assert isinstance(error, ImportPipelineError)
