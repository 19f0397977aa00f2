"""Document-scoped key/value stores backing the import checkpoint.

Every store exposes get/set/delete and NEVER raises. If the backend is
unavailable, the failure is logged and the call degrades to a no-op
(get returns None).
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from collections.abc import Generator
from contextlib import contextmanager
from typing import Protocol

import redis
from loguru import logger
from sqlalchemy import Engine, String, Text, create_engine
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import DeclarativeBase, Mapped, Session, mapped_column, sessionmaker

from liftsync.importer.errors import StorageUnavailableError

KEY_PREFIX = "liftsync"


class ProgressStore(Protocol):
    """Persisted key/value store scoped to one document."""

    document_id: str

    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class BaseProgressStore(ABC):
    """Turns backend failures into logged no-ops.

    Subclasses implement the raw `_get`/`_set`/`_delete` operations and may
    raise; the public methods never do.
    """

    def __init__(self, document_id: str) -> None:
        self.document_id = document_id

    @abstractmethod
    def _get(self, key: str) -> str | None: ...

    @abstractmethod
    def _set(self, key: str, value: str) -> None: ...

    @abstractmethod
    def _delete(self, key: str) -> None: ...

    def get(self, key: str) -> str | None:
        try:
            return self._get(key)
        except Exception as e:
            self._log_failure("get", key, e)
            return None

    def set(self, key: str, value: str) -> None:
        try:
            self._set(key, value)
        except Exception as e:
            self._log_failure("set", key, e)

    def delete(self, key: str) -> None:
        try:
            self._delete(key)
        except Exception as e:
            self._log_failure("delete", key, e)

    def _log_failure(self, operation: str, key: str, error: Exception) -> None:
        logger.bind(
            document_id=self.document_id,
            key=key,
            operation=operation,
            error_type=type(error).__name__,
        ).warning(f"[STORE] Progress store unavailable, {operation} skipped: {error}")


class InMemoryProgressStore(BaseProgressStore):
    """Dict-backed store for tests and dry runs.

    Set `available = False` to simulate a storage outage.
    """

    def __init__(self, document_id: str = "test-document", data: dict[str, str] | None = None) -> None:
        super().__init__(document_id)
        self.data: dict[str, str] = dict(data or {})
        self.available = True

    def _check(self) -> None:
        if not self.available:
            raise StorageUnavailableError("in-memory store marked unavailable")

    def _get(self, key: str) -> str | None:
        self._check()
        return self.data.get(key)

    def _set(self, key: str, value: str) -> None:
        self._check()
        self.data[key] = value

    def _delete(self, key: str) -> None:
        self._check()
        self.data.pop(key, None)


class RedisProgressStore(BaseProgressStore):
    """Redis-backed store; keys are namespaced per document."""

    def __init__(self, document_id: str, client: redis.Redis) -> None:
        super().__init__(document_id)
        self.redis = client

    @classmethod
    def from_url(cls, document_id: str, url: str) -> RedisProgressStore:
        return cls(document_id, redis.from_url(url, decode_responses=True))

    def _key(self, key: str) -> str:
        return f"{KEY_PREFIX}:{self.document_id}:{key}"

    def _get(self, key: str) -> str | None:
        try:
            value = self.redis.get(self._key(key))
        except redis.RedisError as e:
            raise StorageUnavailableError(str(e)) from e
        if isinstance(value, bytes):
            return value.decode("utf-8")
        return value

    def _set(self, key: str, value: str) -> None:
        try:
            self.redis.set(self._key(key), value)
        except redis.RedisError as e:
            raise StorageUnavailableError(str(e)) from e

    def _delete(self, key: str) -> None:
        try:
            self.redis.delete(self._key(key))
        except redis.RedisError as e:
            raise StorageUnavailableError(str(e)) from e


class Base(DeclarativeBase):
    """Base class for liftsync database models."""


class DocumentProperty(Base):
    """One persisted property of a document (checkpoint, heartbeat, ledger)."""

    __tablename__ = "document_properties"

    document_id: Mapped[str] = mapped_column(String, primary_key=True)
    key: Mapped[str] = mapped_column(String, primary_key=True)
    value: Mapped[str] = mapped_column(Text, nullable=False)


def create_store_engine(database_url: str) -> Engine:
    """Create an engine for SqlProgressStore and ensure the table exists."""
    engine = create_engine(
        database_url,
        connect_args={"check_same_thread": False} if "sqlite" in database_url else {},
        echo=False,
    )
    Base.metadata.create_all(bind=engine)
    return engine


class SqlProgressStore(BaseProgressStore):
    """SQLAlchemy-backed store using the `document_properties` table."""

    def __init__(self, document_id: str, engine: Engine) -> None:
        super().__init__(document_id)
        self._session_factory = sessionmaker(autocommit=False, autoflush=False, bind=engine)

    @contextmanager
    def _session(self) -> Generator[Session, None, None]:
        session = self._session_factory()
        try:
            yield session
            session.commit()
        except SQLAlchemyError as e:
            session.rollback()
            raise StorageUnavailableError(str(e)) from e
        finally:
            session.close()

    def _get(self, key: str) -> str | None:
        with self._session() as session:
            row = session.get(DocumentProperty, (self.document_id, key))
            return row.value if row else None

    def _set(self, key: str, value: str) -> None:
        with self._session() as session:
            row = session.get(DocumentProperty, (self.document_id, key))
            if row:
                row.value = value
            else:
                session.add(DocumentProperty(document_id=self.document_id, key=key, value=value))

    def _delete(self, key: str) -> None:
        with self._session() as session:
            row = session.get(DocumentProperty, (self.document_id, key))
            if row:
                session.delete(row)
