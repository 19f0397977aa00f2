"""Persisted checkpoint state and run results.

Field aliases match the JSON written to the document store, so payloads
stay readable by older runs:

- import-progress: {completedSteps, timestamp, isResuming}
- active-import: {timestamp}
- deferred-post-processing: {name: {timestamp, needsCompletion}}
- quota-usage: {day, totalMs, executions}
"""

from datetime import UTC, date, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import AfterValidator, BaseModel, ConfigDict, Field, field_validator

from liftsync.importer.steps import PIPELINE_ORDER, StepName, parse_step


def as_utc(value: datetime) -> datetime:
    # Payloads written without an offset are treated as UTC.
    return value.replace(tzinfo=UTC) if value.tzinfo is None else value


UtcDatetime = Annotated[datetime, AfterValidator(as_utc)]


class _StoredModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    def to_json(self) -> str:
        return self.model_dump_json(by_alias=True)


class ImportProgressState(_StoredModel):
    """Checkpoint of completed steps.

    Unknown step names are dropped and duplicates collapsed on load, so the
    completed set is always a subset of the pipeline with no repeats.
    """

    completed_steps: list[StepName] = Field(default_factory=list, alias="completedSteps")
    timestamp: UtcDatetime
    is_resuming: bool = Field(default=True, alias="isResuming")

    @field_validator("completed_steps", mode="before")
    @classmethod
    def normalize_steps(cls, value: list) -> list[StepName]:
        steps: list[StepName] = []
        for item in value or []:
            step = parse_step(str(item))
            if step is not None and step not in steps:
                steps.append(step)
        return steps

    @property
    def remaining_steps(self) -> list[StepName]:
        return [step for step in PIPELINE_ORDER if step not in self.completed_steps]


class ActiveImportState(_StoredModel):
    timestamp: UtcDatetime


class DeferredOperationEntry(_StoredModel):
    timestamp: UtcDatetime
    needs_completion: bool = Field(default=True, alias="needsCompletion")


class QuotaUsage(_StoredModel):
    day: date
    total_ms: int = Field(default=0, ge=0, alias="totalMs")
    executions: int = Field(default=0, ge=0)


class QuotaWarning(BaseModel):
    """Signal that the run or daily execution budget is running low.

    Attributes:
        level: "warning" at the warning threshold, "critical" at the critical one
        scope: Which budget tripped ("run" or "daily")
        utilization: Fraction of the budget used (may exceed 1.0)
        message: Human-readable description
    """

    level: Literal["warning", "critical"]
    scope: Literal["run", "daily"]
    utilization: float
    message: str

    @property
    def is_critical(self) -> bool:
        return self.level == "critical"


class ImportStatus(StrEnum):
    COMPLETED = "completed"
    STOPPED = "stopped"
    SKIPPED = "skipped"


class ImportResult(BaseModel):
    status: ImportStatus
    completed_steps: list[StepName] = Field(default_factory=list)
    remaining_steps: list[StepName] = Field(default_factory=list)
    imported_counts: dict[StepName, int] = Field(default_factory=dict)
    warning: QuotaWarning | None = None
    reason: str | None = None


class PipelineStatus(BaseModel):
    completed_steps: list[StepName]
    remaining_steps: list[StepName]
    active: bool
    deferred_operations: list[str]
    last_checkpoint_at: datetime | None = None
