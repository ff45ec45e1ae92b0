"""
Domain package for the data ingestor.

Exports the schema, dispatch and result models plus the error taxonomy used
across the engine, orchestrator and CLI. Keep this package focused on data
definitions and validation concerns.
"""

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
from ingestor.domain.models import (
    Batch,
    ColumnMapping,
    FinalizationFailure,
    FlattenedRow,
    Record,
    RunOutcome,
    RunResult,
    Schema,
    WorkerResult,
)

__all__ = [
    "Batch",
    "ColumnMapping",
    "FinalizationFailure",
    "FlattenedRow",
    "Record",
    "RunOutcome",
    "RunResult",
    "Schema",
    "WorkerResult",
    "CommitError",
    "FinalizationError",
    "IngestError",
    "RollbackError",
    "RowError",
    "RunCancelledError",
    "SchemaError",
    "SourceError",
    "TransactionOpenError",
]
