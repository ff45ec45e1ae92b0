"""
Error taxonomy for ingestion runs.

Every failure the engine can report derives from IngestError so callers can
catch the whole family at once. The barrier distinguishes map-stage failures
(SourceError, TransactionOpenError, RowError, RunCancelledError) from
finalization failures (CommitError, RollbackError).
"""

from __future__ import annotations

from typing import Optional


class IngestError(Exception):
    """Base class for all ingestion errors."""


class SchemaError(IngestError):
    """The schema file could not be read or failed validation."""


class SourceError(IngestError):
    """Record production failed (unreadable file, malformed document, ...)."""


class RunCancelledError(IngestError):
    """The run was cancelled or its deadline passed before the map stage finished."""


class TransactionOpenError(IngestError):
    """A worker could not obtain its transaction."""

    def __init__(self, worker_id: int, message: str) -> None:
        super().__init__(f"worker {worker_id}: {message}")
        self.worker_id = worker_id


class RowError(IngestError):
    """A single record failed to flatten or insert."""

    def __init__(
        self,
        worker_id: int,
        message: str,
        batch_index: Optional[int] = None,
        record_index: Optional[int] = None,
    ) -> None:
        location = f"worker {worker_id}"
        if batch_index is not None:
            location += f", batch {batch_index}"
        if record_index is not None:
            location += f", record {record_index}"
        super().__init__(f"{location}: {message}")
        self.worker_id = worker_id
        self.batch_index = batch_index
        self.record_index = record_index


class FinalizationError(IngestError):
    """Committing or rolling back one transaction failed."""

    action = "finalize"

    def __init__(self, worker_id: int, message: str) -> None:
        super().__init__(f"{self.action} failed for worker {worker_id}: {message}")
        self.worker_id = worker_id


class CommitError(FinalizationError):
    action = "commit"


class RollbackError(FinalizationError):
    action = "rollback"


__all__ = [
    "IngestError",
    "SchemaError",
    "SourceError",
    "RunCancelledError",
    "TransactionOpenError",
    "RowError",
    "FinalizationError",
    "CommitError",
    "RollbackError",
]
