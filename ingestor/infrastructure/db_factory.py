"""
Database connection factory utilities for the data ingestor.

Provides centralized management of PostgreSQL connections and the shared
connection pool. The PoolManager singleton ensures the pool is closed on
application exit and that it is large enough for every worker to hold one
connection for the whole run.

Includes retry logic for transient connection failures using tenacity.
"""

from __future__ import annotations

import atexit
import threading
from typing import Optional

import psycopg
from psycopg import Connection
from psycopg_pool import ConnectionPool, PoolTimeout
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from ingestor.config import get_settings
from ingestor.utils.logging import get_logger

log = get_logger(__name__)

TRANSIENT_ERRORS = (psycopg.OperationalError, psycopg.InterfaceError, PoolTimeout)

# Shared policy for acquiring connections: 3 attempts, exponential backoff.
connection_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type(TRANSIENT_ERRORS),
    reraise=True,
)


def build_dsn() -> str:
    """Compose a DSN string from settings."""
    settings = get_settings()
    return (
        f"postgresql://{settings.db_user}:{settings.db_password}"
        f"@{settings.db_host}:{settings.db_port}/{settings.db_name}"
    )


class PoolManager:
    """
    Thread-safe singleton for managing the database connection pool.

    Handles lifecycle management with automatic cleanup via atexit hook.
    """

    _instance: Optional["PoolManager"] = None
    _lock = threading.Lock()

    def __new__(cls) -> "PoolManager":
        """Create or return the singleton instance."""
        with cls._lock:
            if cls._instance is None:
                cls._instance = super().__new__(cls)
                cls._instance._pool = None
                atexit.register(cls._instance.close_all)
            return cls._instance

    def get_pool(self, min_size: int = 1, max_size: int = 10) -> ConnectionPool:
        """
        Get or create the connection pool.

        Parameters
        ----------
        min_size : int
            Minimum number of idle connections to keep.
        max_size : int
            Maximum total connections in the pool. Must cover the worker count.

        Raises
        ------
        ValueError
            If an existing pool is smaller than `max_size`.
        """
        with self._lock:
            if self._pool is None:
                self._pool = ConnectionPool(
                    conninfo=build_dsn(), min_size=min_size, max_size=max_size, open=True
                )
                log.info("Connection pool opened", extra={"min_size": min_size, "max_size": max_size})
            elif self._pool.max_size < max_size:
                raise ValueError(
                    f"Existing pool holds at most {self._pool.max_size} connections; "
                    f"{max_size} requested"
                )
            return self._pool

    def close_all(self) -> None:
        """
        Close the managed pool and release resources.

        This is called automatically on exit via atexit hook.
        """
        with self._lock:
            if self._pool is not None:
                try:
                    self._pool.close()
                except psycopg.Error as exc:
                    log.warning("Failed to close connection pool", extra={"error": str(exc)})
                finally:
                    self._pool = None


@connection_retry
def get_sync_connection() -> Connection:
    """
    Acquire a dedicated connection with automatic retry.

    Use this for one-off operations (schema checks, table setup). Ingestion
    runs use the pool.
    """
    return psycopg.connect(build_dsn())


def get_sync_pool(min_size: int = 1, max_size: int = 10) -> ConnectionPool:
    """Get or create the shared connection pool via PoolManager."""
    return PoolManager().get_pool(min_size=min_size, max_size=max_size)


def apply_statement_timeout(cur: psycopg.Cursor, timeout_ms: int) -> None:
    """Bound every statement of the current transaction to `timeout_ms` (0 disables)."""
    cur.execute(f"SET LOCAL statement_timeout = {int(timeout_ms)}")


__all__ = [
    "PoolManager",
    "apply_statement_timeout",
    "build_dsn",
    "connection_retry",
    "get_sync_connection",
    "get_sync_pool",
]
