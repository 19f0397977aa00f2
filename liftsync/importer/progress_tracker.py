"""Checkpoint state for the import pipeline.

Three independent records live in the document store:

- import-progress: which steps have completed (resume point)
- active-import: heartbeat of the run that currently owns the pipeline
- deferred-post-processing: post-processing that could not be confirmed inline

All functions take the store explicitly. Persistence is best-effort:
failures are logged and swallowed because checkpoint durability only affects
how much work a later run repeats, never whether a step is correct.
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import UTC, datetime, timedelta

from loguru import logger
from pydantic import TypeAdapter, ValidationError

from liftsync.importer.models import ActiveImportState, DeferredOperationEntry, ImportProgressState, as_utc
from liftsync.importer.steps import PIPELINE_ORDER, StepName
from liftsync.importer.store import ProgressStore

PROGRESS_KEY = "import-progress"
ACTIVE_IMPORT_KEY = "active-import"
DEFERRED_OPERATIONS_KEY = "deferred-post-processing"

DEFAULT_ACTIVE_TIMEOUT = timedelta(minutes=10)

Clock = Callable[[], datetime]

_deferred_adapter = TypeAdapter(dict[str, DeferredOperationEntry])


def utc_now() -> datetime:
    return datetime.now(UTC)


# --- step checkpoint -------------------------------------------------------


def save_progress(store: ProgressStore, completed_steps: Iterable[StepName | str], now: datetime | None = None) -> None:
    try:
        state = ImportProgressState(
            completed_steps=list(completed_steps),
            timestamp=now or utc_now(),
            is_resuming=True,
        )
        store.set(PROGRESS_KEY, state.to_json())
        logger.bind(document_id=store.document_id).debug(
            f"[PROGRESS] Saved checkpoint: {[str(step) for step in state.completed_steps]}"
        )
    except Exception as e:
        logger.bind(document_id=store.document_id, error=str(e)).warning("[PROGRESS] Failed to save import progress")


def load_progress(store: ProgressStore) -> ImportProgressState | None:
    raw = store.get(PROGRESS_KEY)
    if not raw:
        return None
    try:
        return ImportProgressState.model_validate_json(raw)
    except ValidationError as e:
        logger.bind(document_id=store.document_id, error=str(e)).warning("[PROGRESS] Ignoring corrupt import progress")
        return None


def clear_progress(store: ProgressStore) -> None:
    store.delete(PROGRESS_KEY)
    logger.bind(document_id=store.document_id).debug("[PROGRESS] Cleared import progress")


def get_completed_steps(store: ProgressStore) -> list[StepName]:
    progress = load_progress(store)
    return list(progress.completed_steps) if progress else []


def is_step_complete(store: ProgressStore, step: StepName | str) -> bool:
    return step in get_completed_steps(store)


def get_remaining_steps(store: ProgressStore) -> list[StepName]:
    """Pipeline order minus completed steps; a resumed run starts at the first entry."""
    completed = get_completed_steps(store)
    return [step for step in PIPELINE_ORDER if step not in completed]


def has_progress(store: ProgressStore) -> bool:
    return bool(get_completed_steps(store))


# --- active run heartbeat --------------------------------------------------


def is_expired(state: ActiveImportState, now: datetime, timeout: timedelta = DEFAULT_ACTIVE_TIMEOUT) -> bool:
    """True once more than `timeout` has passed since the last heartbeat."""
    return as_utc(now) - state.timestamp > timeout


def mark_import_active(store: ProgressStore, now: datetime | None = None) -> None:
    try:
        store.set(ACTIVE_IMPORT_KEY, ActiveImportState(timestamp=now or utc_now()).to_json())
    except Exception as e:
        logger.bind(document_id=store.document_id, error=str(e)).warning("[PROGRESS] Failed to mark import active")


# Starting a run and keeping it alive write the same record.
update_heartbeat = mark_import_active


def is_import_active(
    store: ProgressStore,
    now: datetime | None = None,
    timeout: timedelta = DEFAULT_ACTIVE_TIMEOUT,
) -> bool:
    """Whether another run currently owns the pipeline.

    A stale or unreadable record is deleted and reported as inactive, so a
    crashed run blocks new runs for at most `timeout`.
    """
    raw = store.get(ACTIVE_IMPORT_KEY)
    if not raw:
        return False

    try:
        state = ActiveImportState.model_validate_json(raw)
    except ValidationError:
        logger.bind(document_id=store.document_id).warning("[PROGRESS] Removing unreadable active import record")
        store.delete(ACTIVE_IMPORT_KEY)
        return False

    current = now or utc_now()
    if is_expired(state, current, timeout):
        logger.bind(document_id=store.document_id).info(
            f"[PROGRESS] Clearing stale active import (last heartbeat {state.timestamp.isoformat()})"
        )
        store.delete(ACTIVE_IMPORT_KEY)
        return False
    return True


def clear_import_active(store: ProgressStore) -> None:
    store.delete(ACTIVE_IMPORT_KEY)


# --- deferred operations ---------------------------------------------------


def _load_deferred(store: ProgressStore) -> dict[str, DeferredOperationEntry]:
    raw = store.get(DEFERRED_OPERATIONS_KEY)
    if not raw:
        return {}
    try:
        return _deferred_adapter.validate_json(raw)
    except ValidationError as e:
        logger.bind(document_id=store.document_id, error=str(e)).warning("[PROGRESS] Ignoring corrupt deferred operations")
        return {}


def _save_deferred(store: ProgressStore, entries: dict[str, DeferredOperationEntry]) -> None:
    if not entries:
        store.delete(DEFERRED_OPERATIONS_KEY)
        return
    try:
        store.set(DEFERRED_OPERATIONS_KEY, _deferred_adapter.dump_json(entries, by_alias=True).decode("utf-8"))
    except Exception as e:
        logger.bind(document_id=store.document_id, error=str(e)).warning("[PROGRESS] Failed to save deferred operations")


def mark_deferred_operation(store: ProgressStore, name: str, now: datetime | None = None) -> None:
    entries = _load_deferred(store)
    entries[name] = DeferredOperationEntry(timestamp=now or utc_now(), needs_completion=True)
    _save_deferred(store, entries)
    logger.bind(document_id=store.document_id, operation=name).info("[PROGRESS] Deferred operation recorded")


def mark_operation_complete(store: ProgressStore, name: str) -> None:
    entries = _load_deferred(store)
    if entries.pop(name, None) is not None:
        _save_deferred(store, entries)
        logger.bind(document_id=store.document_id, operation=name).info("[PROGRESS] Deferred operation confirmed")


def get_deferred_operations(store: ProgressStore) -> list[str]:
    return [name for name, entry in _load_deferred(store).items() if entry.needs_completion]


def is_operation_deferred(store: ProgressStore, name: str) -> bool:
    entry = _load_deferred(store).get(name)
    return bool(entry and entry.needs_completion)


def reset_import(store: ProgressStore) -> None:
    """Forget all import state, e.g. after the account credential changes."""
    clear_progress(store)
    clear_import_active(store)
    store.delete(DEFERRED_OPERATIONS_KEY)
    logger.bind(document_id=store.document_id).info("[PROGRESS] Import state reset")
