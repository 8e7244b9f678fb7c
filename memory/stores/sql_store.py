"""SQLite SQLAlchemy store wrapper."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from pathlib import Path

from sqlalchemy import create_engine, event, inspect
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session, sessionmaker

from memory.schemas import Base

logger = logging.getLogger("ame.store")

# Conflict wording differs between engines and driver versions.
_CONFLICT_MARKERS = (
    "already exists",
    "stored_relation_conflict",
    "duplicate",
    "index_already",
)
_MISSING_MARKERS = (
    "no such table",
    "relation_not_found",
    "undefined table",
)


class StoreError(Exception):
    """Base error raised by the memory store adapter."""


class AlreadyExists(StoreError):
    """A table or index being created is already present."""


class SchemaNotInitialized(StoreError):
    """The store has not been initialized for this agent yet."""


def _error_text(exc: BaseException) -> str:
    parts = [str(exc), str(getattr(exc, "code", "") or "")]
    orig = getattr(exc, "orig", None)
    if orig is not None:
        parts.append(str(orig))
        parts.append(str(getattr(orig, "sqlite_errorname", "") or ""))
    return " ".join(parts).lower()


def normalize_store_error(exc: BaseException) -> BaseException:
    """Map engine-specific error shapes onto the typed store errors."""
    text = _error_text(exc)
    if any(marker in text for marker in _CONFLICT_MARKERS):
        return AlreadyExists(str(exc))
    if any(marker in text for marker in _MISSING_MARKERS):
        return SchemaNotInitialized(str(exc))
    return exc


class SQLStore:
    """Provides SQLAlchemy session management for SQLite persistence."""

    def __init__(self, db_path: Path) -> None:
        self.db_path = db_path
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        self.engine = create_engine(
            f"sqlite+pysqlite:///{self.db_path}",
            future=True,
            connect_args={"check_same_thread": False, "timeout": 30},
        )
        event.listen(self.engine, "connect", _sqlite_pragmas)
        self._session_factory = sessionmaker(bind=self.engine, future=True, expire_on_commit=False)

    def create_all(self) -> None:
        """Create all schema tables and indexes, tolerating existing ones."""
        for table in Base.metadata.sorted_tables:
            created = self._create_if_missing(table.name, lambda t=table: t.create(self.engine))
            if created:
                continue
            for index in table.indexes:
                self._create_if_missing(index.name, lambda i=index: i.create(self.engine))

    def has_schema(self) -> bool:
        """Return whether every schema table is present."""
        existing = set(inspect(self.engine).get_table_names())
        return all(name in existing for name in Base.metadata.tables)

    def _create_if_missing(self, name: str | None, ddl: Callable[[], None]) -> bool:
        try:
            try:
                ddl()
            except SQLAlchemyError as exc:
                raise normalize_store_error(exc) from exc
        except AlreadyExists:
            logger.debug("Schema object %s already exists", name)
            return False
        logger.debug("Created schema object %s", name)
        return True

    @contextmanager
    def session(self) -> Iterator[Session]:
        """Context manager that commits on success and rolls back on error."""
        sess = self._session_factory()
        try:
            yield sess
            sess.commit()
        except SQLAlchemyError as exc:
            sess.rollback()
            normalized = normalize_store_error(exc)
            if normalized is exc:
                raise
            raise normalized from exc
        except Exception:
            sess.rollback()
            raise
        finally:
            sess.close()

    def dispose(self) -> None:
        self.engine.dispose()


def _sqlite_pragmas(dbapi_connection: object, _record: object) -> None:
    cursor = dbapi_connection.cursor()  # type: ignore[attr-defined]
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute("PRAGMA busy_timeout=30000")
    cursor.close()
