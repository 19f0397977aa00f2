from enum import StrEnum


class StepName(StrEnum):
    """Import pipeline steps. Declaration order is execution order."""

    EXERCISES = "exercises"
    ROUTINE_FOLDERS = "routineFolders"
    ROUTINES = "routines"
    WORKOUTS = "workouts"


PIPELINE_ORDER: tuple[StepName, ...] = tuple(StepName)


def parse_step(value: str) -> StepName | None:
    """Return the StepName for a persisted value, or None if unknown."""
    try:
        return StepName(value)
    except ValueError:
        return None
