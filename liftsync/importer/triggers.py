"""Trigger entry points.

Schedulers call these on document-open and time-based events. They never
raise, so a failing import does not disable the trigger; the outcome is
returned for the caller to inspect.
"""

from __future__ import annotations

from loguru import logger

from liftsync.importer.models import ImportResult
from liftsync.importer.orchestrator import ImportOrchestrator


async def _run_from_trigger(orchestrator: ImportOrchestrator, source: str) -> ImportResult | None:
    document_id = orchestrator.store.document_id
    logger.bind(document_id=document_id, trigger=source).info("[TRIGGER] Trigger fired")
    try:
        return await orchestrator.run_once()
    except Exception as e:
        logger.bind(document_id=document_id, trigger=source, error_type=type(e).__name__).error(
            f"[TRIGGER] Import run failed: {e}"
        )
        return None


async def on_open(orchestrator: ImportOrchestrator) -> ImportResult | None:
    return await _run_from_trigger(orchestrator, "open")


async def on_time(orchestrator: ImportOrchestrator) -> ImportResult | None:
    return await _run_from_trigger(orchestrator, "time")
