"""
Data Ingestor - transactional batch ingestion of nested records into PostgreSQL.

Records are read from JSON or XML files, split into batches and processed by a
fixed pool of workers. Each worker owns one database transaction for the whole
run and inserts the rows it flattens from its records. Once every worker has
finished, a barrier commits all transactions if all of them succeeded and rolls
every one of them back otherwise.

Main building blocks:

- Schema-driven flattening of nested collections into rows
- Dynamic, fully parameterized multi-row INSERT generation
- Bulk and streaming dispatch with backpressure
- Commit-all-or-rollback-all coordination
"""

from __future__ import annotations

__version__ = "0.1.0"
__license__ = "MIT"

# Public API exports
from ingestor.config import Settings, get_settings
from ingestor.domain.errors import (
    CommitError,
    FinalizationError,
    IngestError,
    RollbackError,
    RowError,
    RunCancelledError,
    SchemaError,
    SourceError,
    TransactionOpenError,
)
from ingestor.domain.models import Batch, ColumnMapping, RunOutcome, RunResult, Schema, WorkerResult
from ingestor.engine.abstract import AbstractStore, Store, Transaction
from ingestor.engine.cancellation import CancelToken
from ingestor.orchestrator import run_ingestion
from ingestor.utils.logging import configure_logging, get_logger
from ingestor.utils.profiler import ProfileStats, profile_block

__all__ = [
    # Version info
    "__version__",
    "__license__",
    # Configuration
    "Settings",
    "get_settings",
    # Orchestration
    "run_ingestion",
    "CancelToken",
    # Domain
    "Batch",
    "ColumnMapping",
    "RunOutcome",
    "RunResult",
    "Schema",
    "WorkerResult",
    # Store abstractions
    "AbstractStore",
    "Store",
    "Transaction",
    # Errors
    "IngestError",
    "SchemaError",
    "SourceError",
    "RunCancelledError",
    "TransactionOpenError",
    "RowError",
    "FinalizationError",
    "CommitError",
    "RollbackError",
    # Logging
    "configure_logging",
    "get_logger",
    # Profiling
    "ProfileStats",
    "profile_block",
]
