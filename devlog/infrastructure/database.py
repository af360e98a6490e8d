"""SQLite storage for reports, settings, the inference cache and workflow runs

devlog keeps everything in ONE SQLite database file, DEVLOG_DB_PATH
(default devlog/data/devlog.db). A Database instance owns a connection pool
for that file. The process builds one instance at startup and hands it to the
stores that need it; tests build one per temporary path.

Provides:
- Connection pooling (reuses connections, WAL mode)
- retry_on_db_lock for transient SQLITE_BUSY contention
- Transaction context manager (commit on success, rollback on error)
- Idempotent schema initialization
"""

from __future__ import annotations

import atexit
import os
import random
import sqlite3
import time
from collections.abc import Callable, Generator
from contextlib import contextmanager
from functools import wraps
from pathlib import Path
from queue import Empty, Full, Queue
from threading import Lock
from typing import Any, TypeVar

from devlog.config import (
    DATA_DIR,
    DB_CONNECT_TIMEOUT,
    DB_POOL_SIZE,
    DB_POOL_TIMEOUT,
    DB_RETRY_BASE_DELAY,
    DB_RETRY_JITTER,
    DB_RETRY_MAX,
    DB_RETRY_MAX_DELAY,
    DB_TEMP_CONN_MAX,
)
from devlog.infrastructure.database_schema import init_database, validate_schema
from devlog.observability.logging import get_logger
from devlog.observability.telemetry import counter, log_event

F = TypeVar("F", bound=Callable[..., Any])

DB_PATH = DATA_DIR / "devlog.db"

logger = get_logger(__name__)


def retry_on_db_lock(
    max_retries: int = DB_RETRY_MAX,
    base_delay: float = DB_RETRY_BASE_DELAY,
    max_delay: float = DB_RETRY_MAX_DELAY,
) -> Callable[[F], F]:
    """
    Decorator to retry database operations on SQLITE_BUSY errors

    Usage:
        @retry_on_db_lock()
        def save(self, ...):
            with self.db.transaction() as conn:
                conn.execute("INSERT INTO ...")

    Side Effects:
        - Sleeps between retries (exponential backoff with jitter)
        - Logs a warning per retry and an error when retries run out
    """

    def decorator(func: F) -> F:
        @wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            for attempt in range(max_retries + 1):
                try:
                    return func(*args, **kwargs)
                except sqlite3.OperationalError as e:
                    message = str(e).lower()
                    if "locked" not in message and "busy" not in message:
                        raise

                    if attempt >= max_retries:
                        logger.error(
                            "Database lock retry exhausted after %d attempts: %s",
                            max_retries,
                            e,
                        )
                        raise

                    delay = min(base_delay * (2**attempt), max_delay)
                    sleep_time = delay + random.uniform(0, delay * DB_RETRY_JITTER)
                    logger.warning(
                        "Database locked (attempt %d/%d), retrying in %.2fs: %s",
                        attempt + 1,
                        max_retries,
                        sleep_time,
                        e,
                    )
                    time.sleep(sleep_time)
            raise AssertionError("unreachable")

        return wrapper  # type: ignore[return-value]

    return decorator


class DatabaseConnectionPool:
    """
    Thread-safe connection pool for SQLite

    Keeps pool_size connections open. When the pool is empty, a bounded number
    of temporary connections are created and closed on return.
    """

    def __init__(self, db_path: Path, pool_size: int = DB_POOL_SIZE):
        self.db_path = db_path
        self.pool_size = pool_size
        self.pool: Queue[sqlite3.Connection] = Queue(maxsize=pool_size)
        self.lock = Lock()
        self.closed = False
        self.temp_conn_count = 0
        self.temp_conn_max = DB_TEMP_CONN_MAX
        self._temporary: set[int] = set()
        self._initialize_pool()

        atexit.register(self.close_all)

    def _create_connection(self) -> sqlite3.Connection:
        """
        Open a connection with WAL, NORMAL sync, foreign keys and Row factory.

        Raises:
            RuntimeError: If the integrity check reports corruption
        """
        conn = sqlite3.connect(
            str(self.db_path),
            timeout=DB_CONNECT_TIMEOUT,
            check_same_thread=False,
        )

        try:
            result = conn.execute("PRAGMA quick_check(1)").fetchone()
        except sqlite3.DatabaseError as e:
            conn.close()
            counter("database.corruption_detected")
            logger.critical("Database corruption or error during integrity check: %s", e)
            raise RuntimeError(f"Database corruption detected: {e}") from e
        if result[0] != "ok":
            conn.close()
            counter("database.corruption_detected")
            logger.critical("Database corruption detected: %s", result[0])
            raise RuntimeError(f"Database corruption detected: {result[0]}")

        conn.execute("PRAGMA journal_mode=WAL")
        conn.execute("PRAGMA synchronous=NORMAL")
        conn.execute("PRAGMA foreign_keys=ON")
        conn.row_factory = sqlite3.Row
        return conn

    def _initialize_pool(self) -> None:
        for _ in range(self.pool_size):
            try:
                self.pool.put(self._create_connection())
            except (sqlite3.Error, RuntimeError) as e:
                logger.warning("Failed to create pooled connection: %s", e)

    def get_connection(self) -> sqlite3.Connection:
        """
        Take a connection from the pool, or a temporary one if the pool is empty.

        Raises:
            RuntimeError: If the pool is closed or the temporary limit is reached
        """
        if self.closed:
            raise RuntimeError("Connection pool has been closed")

        try:
            return self.pool.get(block=True, timeout=DB_POOL_TIMEOUT)
        except Empty:
            with self.lock:
                if self.temp_conn_count >= self.temp_conn_max:
                    logger.critical(
                        "Temporary connection limit reached: %d/%d (pool_size=%d)",
                        self.temp_conn_count,
                        self.temp_conn_max,
                        self.pool_size,
                    )
                    raise RuntimeError(
                        "Database connection pool exhausted and temporary connection "
                        f"limit reached (pool_size={self.pool_size}, "
                        f"temp_conn_max={self.temp_conn_max})"
                    ) from None
                self.temp_conn_count += 1
                temp_count = self.temp_conn_count

            logger.error(
                "Connection pool exhausted (pool_size=%d). Creating temporary connection %d/%d.",
                self.pool_size,
                temp_count,
                self.temp_conn_max,
            )
            log_event(
                "database.pool_exhausted",
                pool_size=self.pool_size,
                temp_conn_count=temp_count,
            )

            conn = self._create_connection()
            with self.lock:
                self._temporary.add(id(conn))
            return conn

    def return_connection(self, conn: sqlite3.Connection) -> None:
        with self.lock:
            is_temp = id(conn) in self._temporary
            if is_temp:
                self._temporary.discard(id(conn))
                self.temp_conn_count -= 1

        if self.closed or is_temp:
            conn.close()
            return

        try:
            self.pool.put_nowait(conn)
        except Full:
            logger.warning("Failed to return connection to pool (pool full), closing")
            conn.close()

    def close_all(self) -> None:
        self.closed = True
        while not self.pool.empty():
            try:
                self.pool.get_nowait().close()
            except Empty:
                break


def get_db_path() -> Path:
    """
    Get database path (environment-aware)

    Checks DEVLOG_DB_PATH first, falls back to the packaged data directory.
    """
    if env_path := os.getenv("DEVLOG_DB_PATH"):
        return Path(env_path)
    return DB_PATH


class Database:
    """One SQLite file plus its connection pool."""

    def __init__(self, db_path: Path | str | None = None, pool_size: int = DB_POOL_SIZE):
        self.db_path = Path(db_path) if db_path is not None else get_db_path()
        init_database(self.db_path)
        self.pool = DatabaseConnectionPool(self.db_path, pool_size=pool_size)

    @contextmanager
    def connection(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Pooled connection (context manager); returned to the pool on exit.

        Usage:
            with db.connection() as conn:
                rows = conn.execute("SELECT * FROM logs").fetchall()
        """
        conn = self.pool.get_connection()
        try:
            yield conn
        finally:
            self.pool.return_connection(conn)

    @contextmanager
    def transaction(self) -> Generator[sqlite3.Connection, None, None]:
        """
        Commit on success, roll back on error.

        Side Effects:
            - Writes to the database file on commit
        """
        with self.connection() as conn:
            try:
                yield conn
                conn.commit()
            except Exception:
                conn.rollback()
                raise

    def execute(
        self,
        query: str,
        params: tuple[Any, ...] | dict[str, Any] | None = None,
        fetch: str = "all",
    ) -> list[sqlite3.Row] | sqlite3.Row | None:
        """
        Execute one statement.

        Args:
            query: SQL query string
            params: Query parameters (tuple or dict)
            fetch: 'all', 'one', or 'none' (commits, for writes)
        """
        with self.connection() as conn:
            cursor = conn.execute(query, params or ())
            if fetch == "all":
                return cursor.fetchall()
            if fetch == "one":
                return cursor.fetchone()
            conn.commit()
            return None

    def validate_schema(self) -> bool:
        """
        Raises:
            ValueError: If tables are missing
        """
        with self.connection() as conn:
            return validate_schema(conn)

    def pool_stats(self) -> dict[str, Any]:
        """Connection pool health metrics"""
        available = self.pool.pool.qsize()
        in_use = self.pool.pool_size - available
        usage_percent = (in_use / self.pool.pool_size) * 100 if self.pool.pool_size > 0 else 0
        return {
            "pool_size": self.pool.pool_size,
            "available": available,
            "in_use": in_use,
            "usage_percent": round(usage_percent, 1),
            "closed": self.pool.closed,
        }

    def close(self) -> None:
        self.pool.close_all()
