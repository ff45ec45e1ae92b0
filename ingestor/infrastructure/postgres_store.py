"""
PostgreSQL implementation of the engine's Store/Transaction ports.

Each transaction checks one connection out of a psycopg ConnectionPool and
keeps it until the barrier commits or rolls it back, at which point the
connection goes back to the pool.
"""

from __future__ import annotations

import threading
from typing import Any, Optional, Sequence

from psycopg import Connection
from psycopg_pool import ConnectionPool

from ingestor.config import get_settings
from ingestor.engine.abstract import AbstractStore
from ingestor.infrastructure.db_factory import apply_statement_timeout, connection_retry, get_sync_pool


class PostgresTransaction:
    def __init__(self, pool: ConnectionPool, conn: Connection) -> None:
        self._pool = pool
        self._conn: Optional[Connection] = conn
        self._lock = threading.Lock()

    def execute(self, sql: str, params: Sequence[Any]) -> int:
        with self._connection().cursor() as cur:
            cur.execute(sql, params)
            return cur.rowcount

    def commit(self) -> None:
        try:
            self._connection().commit()
        finally:
            self._release()

    def rollback(self) -> None:
        try:
            self._connection().rollback()
        finally:
            self._release()

    def _connection(self) -> Connection:
        if self._conn is None:
            raise RuntimeError("Transaction already finalized")
        return self._conn

    def _release(self) -> None:
        with self._lock:
            if self._conn is not None:
                self._pool.putconn(self._conn)
                self._conn = None


class PostgresStore(AbstractStore):
    """
    Opens transactions on pooled connections.

    Parameters
    ----------
    pool : ConnectionPool
        Must allow at least as many connections as there are workers.
    statement_timeout_ms : int
        Per-statement timeout applied inside every transaction (0 disables).
    acquire_timeout : float
        Seconds to wait for a free pooled connection before retrying.
    """

    def __init__(
        self,
        pool: ConnectionPool,
        statement_timeout_ms: int = 0,
        acquire_timeout: float = 30.0,
    ) -> None:
        self._pool = pool
        self._statement_timeout_ms = statement_timeout_ms
        self._acquire_timeout = acquire_timeout

    @classmethod
    def from_settings(cls, workers: int) -> "PostgresStore":
        settings = get_settings()
        pool = get_sync_pool(min_size=1, max_size=workers)
        return cls(pool, statement_timeout_ms=settings.db_statement_timeout_ms)

    @connection_retry
    def _acquire(self) -> Connection:
        return self._pool.getconn(timeout=self._acquire_timeout)

    def begin(self) -> PostgresTransaction:
        conn = self._acquire()
        try:
            conn.autocommit = False
            # The first statement opens the server-side transaction.
            with conn.cursor() as cur:
                apply_statement_timeout(cur, self._statement_timeout_ms)
        except BaseException:
            self._pool.putconn(conn)
            raise
        return PostgresTransaction(self._pool, conn)


__all__ = ["PostgresStore", "PostgresTransaction"]
