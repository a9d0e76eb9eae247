"""Database engine, per-caller connection handles and bulk writer.

This module provides:
- Database: Connection manager with WAL mode for concurrent readers
- StoreHandle: A connection owned by exactly one caller on one thread
- BulkWriter: High-volume inserts for the single ingestion writer
- Session utilities for ORM and serialized transactions

The hybrid pattern:
- Use ORM sessions for low-volume operations (mappings, engine state)
- Use BulkWriter for high-volume operations (fact rows)
- Use read handles for cache loads and query execution, one per call
- Use immediate_transaction for generation stamp updates
"""

from __future__ import annotations

import threading
import time
from collections.abc import Generator, Sequence
from contextlib import contextmanager
from pathlib import Path
from typing import TYPE_CHECKING, Any

import structlog
from sqlalchemy import event, text
from sqlalchemy.exc import DBAPIError, OperationalError
from sqlmodel import Session, SQLModel, create_engine

from saaqengine.core.errors import StorageError

if TYPE_CHECKING:
    from sqlalchemy import Connection, Engine, Row

logger = structlog.get_logger()

DEFAULT_MAX_RETRIES = 0
DEFAULT_RETRY_BASE_DELAY = 0.1  # 100ms base
DEFAULT_RETRY_MAX_DELAY = 2.0  # 2s max
DEFAULT_BUSY_TIMEOUT_MS = 30000
DEFAULT_CACHE_SIZE_KB = 64000


def _is_database_locked_error(error: Exception) -> bool:
    """Check if error is a SQLite database locked error."""
    error_str = str(error).lower()
    return "database is locked" in error_str or "database is busy" in error_str


@contextmanager
def storage_errors(operation: str) -> Generator[None, None, None]:
    """Translate driver errors into StorageError at the store boundary."""
    try:
        yield
    except DBAPIError as e:
        reason = str(e.orig) if e.orig is not None else str(e)
        logger.error("storage_error", operation=operation, error=reason)
        raise StorageError.io_error(operation, reason) from e


class StoreHandle:
    """A connection owned by one caller.

    The handle remembers the thread that opened it and refuses to run
    statements from any other thread. It cannot be copied or pickled, so a
    handle can never end up shared between two callers.
    """

    def __init__(self, conn: Connection, *, label: str = "read") -> None:
        self._conn = conn
        self._owner = threading.get_ident()
        self._closed = False
        self.label = label

    def _check(self) -> None:
        if self._closed:
            raise StorageError.handle_misuse(f"{self.label} handle used after close")
        if threading.get_ident() != self._owner:
            raise StorageError.handle_misuse(
                f"{self.label} handle opened on thread {self._owner} used from "
                f"thread {threading.get_ident()}"
            )

    def execute(self, sql: str, params: dict[str, Any] | Sequence[dict[str, Any]] | None = None) -> Any:
        self._check()
        with storage_errors(self.label):
            return self._conn.execute(text(sql), params or {})

    def all(self, sql: str, params: dict[str, Any] | None = None) -> list[Row[Any]]:
        """Run a statement and fetch every row."""
        return list(self.execute(sql, params).fetchall())

    def scalar(self, sql: str, params: dict[str, Any] | None = None) -> Any:
        """Run a statement and return the first column of the first row (or None)."""
        return self.execute(sql, params).scalar()

    def close(self) -> None:
        if self._closed:
            return
        self._check()
        self._closed = True
        self._conn.close()

    @property
    def closed(self) -> bool:
        return self._closed

    def __copy__(self) -> StoreHandle:
        raise StorageError.handle_misuse("connection handles cannot be copied")

    def __deepcopy__(self, memo: dict[int, Any]) -> StoreHandle:
        raise StorageError.handle_misuse("connection handles cannot be copied")

    def __reduce__(self) -> Any:
        raise StorageError.handle_misuse("connection handles cannot be pickled")


class Database:
    """SQLite connection manager with WAL mode for concurrent access.

    Every reader gets its own connection from the pool through read_handle().
    The engine does not retry on lock contention unless max_retries is set;
    the default leaves the retry policy to the caller.
    """

    def __init__(
        self,
        db_path: Path,
        max_retries: int = DEFAULT_MAX_RETRIES,
        retry_base_delay: float = DEFAULT_RETRY_BASE_DELAY,
        retry_max_delay: float = DEFAULT_RETRY_MAX_DELAY,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        cache_size_kb: int = DEFAULT_CACHE_SIZE_KB,
    ) -> None:
        self.db_path = db_path
        self._max_retries = max_retries
        self._retry_base_delay = retry_base_delay
        self._retry_max_delay = retry_max_delay
        self._busy_timeout_ms = busy_timeout_ms
        self._cache_size_kb = cache_size_kb
        self.engine = self._create_engine()

    def _create_engine(self) -> Engine:
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        # Connections move between pool and threads; StoreHandle enforces ownership.
        engine = create_engine(
            f"sqlite:///{self.db_path}",
            connect_args={"check_same_thread": False},
            pool_pre_ping=True,
        )
        busy_timeout_ms = self._busy_timeout_ms
        cache_size_kb = self._cache_size_kb

        def _on_connect(dbapi_conn: Any, connection_record: Any) -> None:
            _configure_pragmas(dbapi_conn, connection_record, busy_timeout_ms, cache_size_kb)

        event.listen(engine, "connect", _on_connect)
        return engine

    def create_all(self) -> None:
        """Create all tables from SQLModel metadata."""
        with storage_errors("create_all"):
            SQLModel.metadata.create_all(self.engine)

    def dispose(self) -> None:
        """Close pooled connections."""
        self.engine.dispose()

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session for low-volume operations."""
        with storage_errors("session"), Session(self.engine) as session:
            yield session

    @contextmanager
    def read_handle(self, label: str = "read") -> Generator[StoreHandle, None, None]:
        """Dedicated connection for one reader. Closed on exit."""
        with storage_errors(f"{label}_connect"):
            conn = self.engine.connect()
        handle = StoreHandle(conn, label=label)
        try:
            yield handle
        finally:
            if not handle.closed:
                with storage_errors(f"{label}_close"):
                    conn.rollback()
                handle.close()

    @contextmanager
    def immediate_transaction(
        self,
        max_retries: int | None = None,
    ) -> Generator[Session, None, None]:
        """
        Session with BEGIN IMMEDIATE for serialized writes.

        BEGIN IMMEDIATE acquires a RESERVED lock immediately, blocking other
        writers but allowing readers. The session commits on successful exit
        and rolls back on exception. Driver errors raised by the body or the
        commit surface as StorageError; engine errors pass through unchanged.

        Lock contention while taking the lock is retried with exponential
        backoff only when max_retries (argument or constructor default) is
        above zero. The body itself runs once.
        """
        retries = max_retries if max_retries is not None else self._max_retries
        session = self._begin_immediate(retries)
        try:
            yield session
            session.commit()
        except DBAPIError as e:
            session.rollback()
            reason = str(e.orig) if e.orig is not None else str(e)
            logger.error("storage_error", operation="immediate_transaction", error=reason)
            raise StorageError.io_error("immediate_transaction", reason) from e
        except BaseException:
            session.rollback()
            raise
        finally:
            session.close()

    def _begin_immediate(self, retries: int) -> Session:
        """Open a session holding the write lock, retrying lock contention."""
        attempt = 0
        while True:
            session = Session(self.engine)
            try:
                session.execute(text("BEGIN IMMEDIATE"))
                return session
            except OperationalError as e:
                session.close()
                if _is_database_locked_error(e) and attempt < retries:
                    delay = min(
                        self._retry_base_delay * (2**attempt),
                        self._retry_max_delay,
                    )
                    attempt += 1
                    logger.warning(
                        "sqlite_busy_retry",
                        attempt=attempt,
                        max_retries=retries,
                        delay_sec=delay,
                    )
                    time.sleep(delay)
                    continue
                reason = str(e.orig) if e.orig is not None else str(e)
                raise StorageError.io_error("immediate_transaction", reason) from e
            except DBAPIError as e:
                session.close()
                reason = str(e.orig) if e.orig is not None else str(e)
                raise StorageError.io_error("immediate_transaction", reason) from e

    @contextmanager
    def bulk_writer(self) -> Generator[BulkWriter, None, None]:
        """
        Bulk writer for the ingestion path.

        Commits on successful exit, rolls back on exception.
        """
        with storage_errors("bulk_writer_connect"):
            writer = BulkWriter(self.engine)
        try:
            yield writer
            writer.commit()
        except Exception:
            writer.rollback()
            raise
        finally:
            writer.close()

    def execute_raw(self, sql: str, params: dict[str, Any] | None = None) -> list[Row[Any]]:
        """Execute raw SQL and return fetched rows (empty for statements)."""
        with storage_errors("execute_raw"), self.engine.connect() as conn:
            result = conn.execute(text(sql), params or {})
            rows = list(result.fetchall()) if result.returns_rows else []
            conn.commit()
            return rows

    def analyze(self) -> None:
        """Refresh planner statistics after a bulk import."""
        with storage_errors("analyze"), self.engine.connect() as conn:
            conn.execute(text("ANALYZE"))
            conn.commit()
        logger.debug("analyze_completed")


def _configure_pragmas(
    dbapi_conn: Any,
    _connection_record: Any,
    busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
    cache_size_kb: int = DEFAULT_CACHE_SIZE_KB,
) -> None:
    """Configure SQLite for concurrent access and performance."""
    cursor = dbapi_conn.cursor()
    cursor.execute("PRAGMA journal_mode=WAL")
    cursor.execute(f"PRAGMA busy_timeout={int(busy_timeout_ms)}")
    cursor.execute("PRAGMA synchronous=NORMAL")  # Safe with WAL
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.execute(f"PRAGMA cache_size=-{int(cache_size_kb)}")
    cursor.execute("PRAGMA temp_store=MEMORY")
    cursor.close()


class BulkWriter:
    """High-performance writes using Core SQL, bypassing ORM overhead.

    Holds one connection and one transaction for its whole lifetime; the
    ingestion path is its only user.
    """

    def __init__(self, engine: Engine) -> None:
        self.engine = engine
        self.conn = engine.connect()
        self.transaction = self.conn.begin()
        self.handle = StoreHandle(self.conn, label="write")

    def insert_many(self, model_class: type[SQLModel], records: list[dict[str, Any]]) -> int:
        """Bulk insert records into table, returning count inserted."""
        if not records:
            return 0

        table = model_class.__table__  # type: ignore[attr-defined]
        with storage_errors(f"insert_{table.name}"):
            self.conn.execute(table.insert(), records)
        return len(records)

    def insert_or_ignore(self, model_class: type[SQLModel], record: dict[str, Any]) -> None:
        """Insert a row unless a uniqueness constraint already holds it."""
        table = model_class.__table__  # type: ignore[attr-defined]
        columns = list(record.keys())
        col_names = ", ".join(columns)
        placeholders = ", ".join(f":{col}" for col in columns)
        self.handle.execute(
            f"INSERT OR IGNORE INTO {table.name} ({col_names}) VALUES ({placeholders})",
            record,
        )

    def delete_where(
        self,
        model_class: type[SQLModel],
        condition: str,
        params: dict[str, Any],
    ) -> int:
        """Bulk delete rows matching condition, returning count affected."""
        table = model_class.__table__  # type: ignore[attr-defined]
        result = self.handle.execute(f"DELETE FROM {table.name} WHERE {condition}", params)
        return int(result.rowcount)

    @contextmanager
    def session(self) -> Generator[Session, None, None]:
        """ORM session inside the writer's transaction.

        Flushes on exit; the rows commit or roll back with the writer.
        """
        with (
            storage_errors("write_session"),
            Session(bind=self.conn, join_transaction_mode="rollback_only") as session,
        ):
            yield session
            session.flush()

    def commit(self) -> None:
        with storage_errors("commit"):
            self.transaction.commit()

    def rollback(self) -> None:
        self.transaction.rollback()

    def close(self) -> None:
        self.handle.close()
