"""Checkpointed import orchestrator.

Runs the fixed step pipeline for one document, one trigger at a time:

- Skips immediately when another run holds a fresh heartbeat
- Resumes at the first step not recorded as complete
- Checkpoints and refreshes the heartbeat after every step
- Stops cleanly (without error) when the time budget runs short
- Re-checks deferred post-processing queued by earlier runs

Exclusion is advisory: the active check and the claim are two separate
store operations, so two triggers firing together can both proceed.
"""

from __future__ import annotations

from collections.abc import Mapping
from datetime import datetime, timedelta

from loguru import logger

from liftsync.config.settings import Settings, settings
from liftsync.importer import progress_tracker as tracker
from liftsync.importer.errors import ConfigurationError, ImportTimeoutError, StepExecutionError
from liftsync.importer.interfaces import (
    CredentialProvider,
    DeferredHandler,
    LogNotificationSink,
    NotificationLevel,
    NotificationSink,
    SettingsCredentialProvider,
    StepExecutor,
)
from liftsync.importer.models import ImportResult, ImportStatus, PipelineStatus, QuotaWarning
from liftsync.importer.progress_tracker import Clock, utc_now
from liftsync.importer.quota import QuotaTracker
from liftsync.importer.steps import PIPELINE_ORDER, StepName
from liftsync.importer.store import ProgressStore


class ImportOrchestrator:
    def __init__(
        self,
        store: ProgressStore,
        executors: Mapping[StepName, StepExecutor],
        *,
        credentials: CredentialProvider | None = None,
        notifier: NotificationSink | None = None,
        quota: QuotaTracker | None = None,
        deferred_handlers: Mapping[str, DeferredHandler] | None = None,
        active_timeout: timedelta = tracker.DEFAULT_ACTIVE_TIMEOUT,
        step_budget_ms: int = 30_000,
        clock: Clock = utc_now,
    ) -> None:
        missing = [str(step) for step in PIPELINE_ORDER if step not in executors]
        if missing:
            raise ConfigurationError(f"No step executor registered for: {', '.join(missing)}")

        self.store = store
        self.executors = dict(executors)
        self.credentials = credentials or SettingsCredentialProvider()
        self.notifier = notifier or LogNotificationSink()
        self.clock = clock
        self.quota = quota or QuotaTracker(store, clock=clock)
        self.deferred_handlers = dict(deferred_handlers or {})
        self.active_timeout = active_timeout
        self.step_budget_ms = step_budget_ms

    @classmethod
    def from_settings(
        cls,
        store: ProgressStore,
        executors: Mapping[StepName, StepExecutor],
        config: Settings = settings,
        **kwargs,
    ) -> ImportOrchestrator:
        """Build an orchestrator whose budgets and timeout come from settings."""
        clock = kwargs.pop("clock", utc_now)
        quota = QuotaTracker(
            store,
            max_run_ms=config.max_run_duration_ms,
            daily_quota_ms=config.daily_quota_ms,
            warning_threshold=config.quota_warning_threshold,
            critical_threshold=config.quota_critical_threshold,
            clock=clock,
        )
        return cls(
            store,
            executors,
            quota=quota,
            active_timeout=timedelta(seconds=config.active_import_timeout_seconds),
            step_budget_ms=config.step_budget_ms,
            clock=clock,
            **kwargs,
        )

    # --- notifications ------------------------------------------------------

    def _notify(self, message: str, level: NotificationLevel = "info") -> None:
        try:
            self.notifier.notify(message, level)
        except Exception as e:
            logger.bind(document_id=self.store.document_id, error=str(e)).warning("[IMPORT] Notification failed")

    # --- entry points -------------------------------------------------------

    async def run_once(self) -> ImportResult:
        """Run (or resume) the pipeline once. Safe to call from any trigger.

        Returns a `skipped` result when another run is active, `stopped` when
        the time budget ran short (a later call resumes), and `completed` when
        every step has finished.

        Raises:
            ConfigurationError: No API key is available; nothing was touched.
            StepExecutionError: A step failed; earlier steps stay checkpointed.
        """
        document_id = self.store.document_id

        if not self.credentials.get_current_api_key():
            self._notify("No API key configured. Set an API key before importing.", "error")
            raise ConfigurationError("API key is not configured")

        if tracker.is_import_active(self.store, now=self.clock(), timeout=self.active_timeout):
            logger.bind(document_id=document_id).info("[IMPORT] Another import is active, skipping this trigger")
            return self._result(ImportStatus.SKIPPED, reason="Another import is already running")

        tracker.mark_import_active(self.store, now=self.clock())
        self.quota.start_run()
        logger.bind(document_id=document_id).info("[IMPORT] Import run started")

        try:
            return await self._run_pipeline()
        except ImportTimeoutError as e:
            return self._stop_for_resume(str(e), {})
        except Exception:
            tracker.clear_import_active(self.store)
            raise

    async def _run_pipeline(self) -> ImportResult:
        await self._process_deferred()

        completed = tracker.get_completed_steps(self.store)
        remaining = tracker.get_remaining_steps(self.store)
        counts: dict[StepName, int] = {}
        warning: QuotaWarning | None = None

        if completed:
            logger.bind(document_id=self.store.document_id).info(
                f"[IMPORT] Resuming import; completed={[str(s) for s in completed]}, remaining={[str(s) for s in remaining]}"
            )

        for step in remaining:
            warning = self.quota.check_quota_warnings() or warning
            if warning is not None and warning.is_critical:
                return self._stop_for_resume(warning.message, counts, warning)
            if not self.quota.has_time_for(self.step_budget_ms):
                return self._stop_for_resume(f"Not enough time left to start {step}", counts, warning)

            try:
                counts[step] = await self._execute_step(step)
            except ImportTimeoutError as e:
                return self._stop_for_resume(str(e), counts, warning)
            completed.append(step)
            now = self.clock()
            tracker.save_progress(self.store, completed, now=now)
            tracker.update_heartbeat(self.store, now=now)

        total = sum(counts.values())
        tracker.clear_progress(self.store)
        tracker.clear_import_active(self.store)
        logger.bind(document_id=self.store.document_id).info(f"[IMPORT] Import completed ({total} records this run)")
        self._notify(f"Import complete. {total} records imported.", "success")
        return ImportResult(
            status=ImportStatus.COMPLETED,
            completed_steps=list(PIPELINE_ORDER),
            remaining_steps=[],
            imported_counts=counts,
            warning=warning,
        )

    async def _execute_step(self, step: StepName) -> int:
        document_id = self.store.document_id
        self._notify(f"Starting import: {step}...")
        started = self.clock()
        try:
            count = await self.executors[step](step)
        except ImportTimeoutError:
            self._record_duration(started)
            raise
        except StepExecutionError as e:
            self._record_duration(started)
            self._report_failure(step, e)
            raise
        except Exception as e:
            self._record_duration(started)
            error = StepExecutionError(step, str(e))
            self._report_failure(step, error)
            raise error from e

        self._record_duration(started)
        if not isinstance(count, int) or isinstance(count, bool):
            error = StepExecutionError(step, f"executor returned {count!r} instead of a record count")
            self._report_failure(step, error)
            raise error

        logger.bind(document_id=document_id, step=str(step), count=count).info(f"[IMPORT] Step {step} completed")
        self._notify(f"Completed: {step} ({count} records)", "success")
        return count

    def _report_failure(self, step: StepName, error: StepExecutionError) -> None:
        logger.bind(document_id=self.store.document_id, step=str(step)).error(f"[IMPORT] {error}")
        self._notify(f"Import failed during {step}: {error}", "error")

    def _record_duration(self, started: datetime) -> None:
        self.quota.record_execution_time(int((self.clock() - started).total_seconds() * 1000))

    def _stop_for_resume(
        self,
        reason: str,
        counts: dict[StepName, int],
        warning: QuotaWarning | None = None,
    ) -> ImportResult:
        # The active record is left in place; it lapses after the timeout.
        logger.bind(document_id=self.store.document_id).info(f"[IMPORT] Stopping early, will resume on next trigger: {reason}")
        self._notify("Import paused to stay within time limits. It will resume automatically.", "warning")
        return self._result(ImportStatus.STOPPED, counts=counts, warning=warning, reason=reason)

    def _result(
        self,
        status: ImportStatus,
        *,
        counts: dict[StepName, int] | None = None,
        warning: QuotaWarning | None = None,
        reason: str | None = None,
    ) -> ImportResult:
        return ImportResult(
            status=status,
            completed_steps=tracker.get_completed_steps(self.store),
            remaining_steps=tracker.get_remaining_steps(self.store),
            imported_counts=counts or {},
            warning=warning,
            reason=reason,
        )

    async def _process_deferred(self) -> None:
        """Confirm or redo post-processing left over from earlier runs.

        ImportTimeoutError propagates (the run stops for resume); any other
        handler failure leaves the operation deferred for the next run.
        """
        for name in tracker.get_deferred_operations(self.store):
            handler = self.deferred_handlers.get(name)
            if handler is None:
                logger.bind(operation=name).debug("[IMPORT] No handler for deferred operation, leaving it queued")
                continue
            try:
                if not await handler.verify():
                    logger.bind(operation=name).info("[IMPORT] Deferred operation not confirmed, retrying")
                    await handler.retry()
                tracker.mark_operation_complete(self.store, name)
            except ImportTimeoutError:
                raise
            except Exception as e:
                logger.bind(operation=name, error=str(e)).warning("[IMPORT] Deferred operation retry failed, keeping it queued")

    # --- operator actions ---------------------------------------------------

    def reset(self) -> None:
        """Discard all checkpoint state, e.g. after switching accounts."""
        tracker.reset_import(self.store)
        self._notify("Import progress reset. The next import starts from the beginning.")

    def status(self) -> PipelineStatus:
        progress = tracker.load_progress(self.store)
        return PipelineStatus(
            completed_steps=progress.completed_steps if progress else [],
            remaining_steps=progress.remaining_steps if progress else list(PIPELINE_ORDER),
            active=tracker.is_import_active(self.store, now=self.clock(), timeout=self.active_timeout),
            deferred_operations=tracker.get_deferred_operations(self.store),
            last_checkpoint_at=progress.timestamp if progress else None,
        )
