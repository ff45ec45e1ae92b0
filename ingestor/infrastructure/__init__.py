"""
Infrastructure package for the data ingestor.

Centralizes database connectivity concerns (DSN, pooling, retries) and the
PostgreSQL adapter for the engine's store port. Keep this layer focused on
I/O and resource management, decoupled from engine/orchestrator logic.
"""

from ingestor.infrastructure.db_factory import (
    PoolManager,
    build_dsn,
    get_sync_connection,
    get_sync_pool,
)
from ingestor.infrastructure.postgres_store import PostgresStore, PostgresTransaction

__all__ = [
    "PoolManager",
    "PostgresStore",
    "PostgresTransaction",
    "build_dsn",
    "get_sync_connection",
    "get_sync_pool",
]
