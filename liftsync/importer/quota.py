from __future__ import annotations

from datetime import datetime

from loguru import logger
from pydantic import ValidationError

from liftsync.importer.models import QuotaUsage, QuotaWarning
from liftsync.importer.progress_tracker import Clock, utc_now
from liftsync.importer.store import ProgressStore

QUOTA_USAGE_KEY = "quota-usage"


class QuotaTracker:
    """Tracks execution time against the per-run and per-day budgets.

    The run budget is measured as wall-clock time since `start_run()`, which
    is what the hosting platform enforces. The daily budget is the sum of
    recorded execution durations, persisted in the document store so it
    survives between triggers; it resets when the date changes.
    """

    def __init__(
        self,
        store: ProgressStore | None = None,
        *,
        max_run_ms: int = 330_000,
        daily_quota_ms: int = 90 * 60 * 1000,
        warning_threshold: float = 0.8,
        critical_threshold: float = 0.9,
        clock: Clock = utc_now,
    ) -> None:
        if not 0 < warning_threshold <= critical_threshold <= 1:
            raise ValueError("Thresholds must satisfy 0 < warning <= critical <= 1")
        self.store = store
        self.max_run_ms = max_run_ms
        self.daily_quota_ms = daily_quota_ms
        self.warning_threshold = warning_threshold
        self.critical_threshold = critical_threshold
        self.clock = clock
        self.run_started_at: datetime | None = None
        self.run_recorded_ms = 0
        self._usage: QuotaUsage | None = None

    def start_run(self) -> None:
        self.run_started_at = self.clock()
        self.run_recorded_ms = 0

    def elapsed_ms(self) -> int:
        if self.run_started_at is None:
            return 0
        return int((self.clock() - self.run_started_at).total_seconds() * 1000)

    def _load_usage(self, refresh: bool = False) -> QuotaUsage:
        today = self.clock().date()
        cached = self._usage is not None and self._usage.day == today
        if cached and (not refresh or self.store is None):
            return self._usage

        usage = None
        raw = self.store.get(QUOTA_USAGE_KEY) if self.store else None
        if raw:
            try:
                usage = QuotaUsage.model_validate_json(raw)
            except ValidationError:
                logger.warning("[QUOTA] Ignoring corrupt quota usage record")
        if usage is None or usage.day != today:
            usage = QuotaUsage(day=today)
        self._usage = usage
        return usage

    def daily_usage_ms(self) -> int:
        return self._load_usage().total_ms

    def record_execution_time(self, duration_ms: int) -> None:
        duration_ms = max(0, int(duration_ms))
        self.run_recorded_ms += duration_ms

        # Other runs on the same document may have recorded since the last read.
        usage = self._load_usage(refresh=True)
        self._usage = usage.model_copy(
            update={"total_ms": usage.total_ms + duration_ms, "executions": usage.executions + 1}
        )
        if self.store:
            self.store.set(QUOTA_USAGE_KEY, self._usage.to_json())
        logger.debug(f"[QUOTA] Recorded {duration_ms}ms (run={self.run_recorded_ms}ms, day={self._usage.total_ms}ms)")

    def _warning_for(self, scope: str, used_ms: int, limit_ms: int) -> QuotaWarning | None:
        utilization = used_ms / limit_ms
        if utilization >= self.critical_threshold:
            level = "critical"
        elif utilization >= self.warning_threshold:
            level = "warning"
        else:
            return None
        label = "Run time" if scope == "run" else "Daily execution quota"
        return QuotaWarning(
            level=level,
            scope=scope,
            utilization=utilization,
            message=f"{label} at {utilization:.0%} ({used_ms // 1000}s of {limit_ms // 1000}s)",
        )

    def check_quota_warnings(self) -> QuotaWarning | None:
        """Return the most severe budget warning, or None if both budgets are healthy."""
        candidates = [
            warning
            for warning in (
                self._warning_for("run", self.elapsed_ms(), self.max_run_ms),
                self._warning_for("daily", self.daily_usage_ms(), self.daily_quota_ms),
            )
            if warning is not None
        ]
        if not candidates:
            return None
        worst = max(candidates, key=lambda w: (w.is_critical, w.utilization))
        logger.bind(scope=worst.scope, utilization=round(worst.utilization, 3)).warning(f"[QUOTA] {worst.message}")
        return worst

    def has_time_for(self, estimated_ms: int) -> bool:
        """Whether a unit of work of `estimated_ms` still fits before the critical run threshold."""
        return self.elapsed_ms() + estimated_ms <= self.max_run_ms * self.critical_threshold
