"""Collaborators the import orchestrator depends on."""

from __future__ import annotations

from collections.abc import Awaitable
from typing import Literal, Protocol

from loguru import logger

from liftsync.config.settings import settings
from liftsync.importer.steps import StepName

NotificationLevel = Literal["info", "success", "warning", "error"]


class StepExecutor(Protocol):
    """Imports one step from scratch and returns the number of records written.

    Must be safe to re-run from the beginning; partial work inside an
    interrupted step is not checkpointed.
    """

    def __call__(self, step: StepName) -> Awaitable[int]: ...


class CredentialProvider(Protocol):
    def get_current_api_key(self) -> str | None: ...


class NotificationSink(Protocol):
    """Receives user-facing messages. Fire-and-forget."""

    def notify(self, message: str, level: NotificationLevel = "info", title: str = "Import Progress") -> None: ...


class DeferredHandler(Protocol):
    """Confirms or redoes post-processing queued by an earlier run."""

    async def verify(self) -> bool: ...

    async def retry(self) -> None: ...


class SettingsCredentialProvider:
    """Reads the API key from application settings (LIFTSYNC_API_KEY)."""

    def get_current_api_key(self) -> str | None:
        return settings.api_key or None


class LogNotificationSink:
    """Routes notifications to the application log."""

    _levels = {"info": "INFO", "success": "SUCCESS", "warning": "WARNING", "error": "ERROR"}

    def notify(self, message: str, level: NotificationLevel = "info", title: str = "Import Progress") -> None:
        logger.log(self._levels.get(level, "INFO"), f"[{title}] {message}")
