"""Shared fixtures for liftsync tests."""

from datetime import UTC, datetime, timedelta

import pytest

from liftsync.importer.store import InMemoryProgressStore


class FakeClock:
    """Deterministic clock; call to read, `advance()` to move time forward."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


class StaticCredentials:
    def __init__(self, api_key: str | None = "test-api-key") -> None:
        self.api_key = api_key

    def get_current_api_key(self) -> str | None:
        return self.api_key


class RecordingNotifier:
    def __init__(self) -> None:
        self.messages: list[tuple[str, str]] = []

    def notify(self, message: str, level: str = "info", title: str = "Import Progress") -> None:
        self.messages.append((level, message))


@pytest.fixture
def store() -> InMemoryProgressStore:
    return InMemoryProgressStore("doc-123")


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2025, 3, 1, 12, 0, tzinfo=UTC))


@pytest.fixture
def credentials() -> StaticCredentials:
    return StaticCredentials()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()
