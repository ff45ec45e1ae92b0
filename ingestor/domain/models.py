"""
Domain models for the data ingestor.

Defines the declarative target schema (table identity plus an ordered
field -> column mapping), the unit of dispatch (Batch), and the result
contracts produced by workers, the barrier, and a whole run.
"""
from __future__ import annotations

import re
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import TYPE_CHECKING, Any, Dict, List, Mapping, Optional, Tuple

from pydantic import BaseModel, Field, ValidationError, field_validator, model_validator

from ingestor.domain.errors import SchemaError

if TYPE_CHECKING:
    from ingestor.engine.abstract import Transaction

Record = Mapping[str, Any]
FlattenedRow = Dict[str, Any]

IDENT_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


def validate_sql_ident(name: str, *, what: str) -> str:
    n = (name or "").strip()
    if not IDENT_RE.fullmatch(n):
        raise ValueError(f"Invalid {what}: {n!r}. Expected SQL identifier, e.g. 'dt_created'")
    return n


class ColumnMapping(BaseModel):
    """
    One record field routed to one target column.
    """

    field: str = Field(
        ...,
        min_length=1,
        description="Record key, or a dotted path through nested collections (e.g. 'items.id').",
    )
    column: str = Field(..., description="Target column name.")

    model_config = {"frozen": True}

    @field_validator("field")
    @classmethod
    def _field_path_has_no_empty_segment(cls, value: str) -> str:
        if any(not segment for segment in value.split(".")):
            raise ValueError(f"Invalid field path: {value!r}. Expected 'key' or 'collection.key'")
        return value

    @field_validator("column")
    @classmethod
    def _column_is_identifier(cls, value: str) -> str:
        return validate_sql_ident(value, what="column")


class Schema(BaseModel):
    """
    Target table identity and the allow-list of columns for one run.

    `columns` is ordered; that order fixes the column order of generated
    INSERT statements. Entries may be given as plain strings when the record
    field and column share a name.
    """

    table: str = Field(..., description="Target table, optionally schema-qualified.")
    columns: List[ColumnMapping] = Field(..., min_length=1)
    record_tag: str = Field("Record", description="XML element holding one record.")
    records_key: Optional[str] = Field("Records", description="JSON key holding the record list.")

    model_config = {"frozen": True}

    @field_validator("table")
    @classmethod
    def _table_is_identifier(cls, value: str) -> str:
        parts = value.strip().split(".")
        if len(parts) > 2:
            raise ValueError(f"Invalid table: {value!r}. Expected 'table' or 'schema.table'")
        return ".".join(validate_sql_ident(part, what="table") for part in parts)

    @field_validator("columns", mode="before")
    @classmethod
    def _expand_shorthand(cls, value: Any) -> Any:
        if isinstance(value, list):
            return [{"field": item, "column": item} if isinstance(item, str) else item for item in value]
        return value

    @model_validator(mode="after")
    def _no_duplicates(self) -> "Schema":
        fields = [m.field for m in self.columns]
        columns = [m.column for m in self.columns]
        if len(set(fields)) != len(fields):
            raise ValueError(f"Duplicate record fields in schema: {_duplicates(fields)}")
        if len(set(columns)) != len(columns):
            raise ValueError(f"Duplicate columns in schema: {_duplicates(columns)}")
        return self

    @property
    def allowed_columns(self) -> frozenset[str]:
        return frozenset(m.column for m in self.columns)

    @property
    def column_names(self) -> Tuple[str, ...]:
        return tuple(m.column for m in self.columns)

    @classmethod
    def from_file(cls, path: Path | str) -> "Schema":
        """Load and validate a schema from a JSON file."""
        schema_path = Path(path)
        try:
            return cls.model_validate_json(schema_path.read_text(encoding="utf-8"))
        except OSError as exc:
            raise SchemaError(f"Cannot read schema file {schema_path}: {exc}") from exc
        except ValidationError as exc:
            raise SchemaError(f"Invalid schema file {schema_path}: {exc}") from exc

    def with_table(self, table: str) -> "Schema":
        """Return a copy targeting another table (validated)."""
        try:
            return Schema.model_validate({**self.model_dump(), "table": table})
        except ValidationError as exc:
            raise SchemaError(str(exc)) from exc


def _duplicates(values: List[str]) -> List[str]:
    return sorted(value for value, count in Counter(values).items() if count > 1)


@dataclass(frozen=True)
class Batch:
    """A contiguous group of records assigned to exactly one worker."""

    index: int
    offset: int
    records: Tuple[Record, ...]

    def __len__(self) -> int:
        return len(self.records)


@dataclass
class WorkerResult:
    """
    Outcome of one worker's map stage.

    `transaction` is None only when the worker never obtained one.
    """

    worker_id: int
    error: Optional[BaseException] = None
    transaction: Optional["Transaction"] = None
    batches_processed: int = 0
    records_processed: int = 0
    rows_inserted: int = 0
    failed_batch: Optional[int] = None

    @property
    def ok(self) -> bool:
        return self.error is None and self.transaction is not None


@dataclass(frozen=True)
class FinalizationFailure:
    worker_id: int
    action: str
    error: BaseException


class RunOutcome(str, Enum):
    SUCCESS = "success"
    FAILED_MAPPING = "failed_mapping"
    FAILED_FINALIZATION = "failed_finalization"


@dataclass
class RunResult:
    """
    Aggregate outcome of one ingestion run returned to the caller.
    """

    success: bool
    outcome: RunOutcome
    table: str
    workers: List[WorkerResult] = field(default_factory=list)
    failed_workers: List[WorkerResult] = field(default_factory=list)
    finalization_errors: List[FinalizationFailure] = field(default_factory=list)
    committed: List[int] = field(default_factory=list)
    rolled_back: List[int] = field(default_factory=list)
    rows_inserted: int = 0
    rows_attempted: int = 0
    records_dispatched: int = 0
    batches_dispatched: int = 0
    source_error: Optional[BaseException] = None
    error: Optional[BaseException] = None
    dropped_keys: Dict[str, int] = field(default_factory=dict)
    duration_seconds: float = 0.0
    profile: Dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        """JSON-safe summary (transactions and exception objects rendered as text)."""
        return {
            "success": self.success,
            "outcome": self.outcome.value,
            "table": self.table,
            "rows_inserted": self.rows_inserted,
            "rows_attempted": self.rows_attempted,
            "records_dispatched": self.records_dispatched,
            "batches_dispatched": self.batches_dispatched,
            "committed": list(self.committed),
            "rolled_back": list(self.rolled_back),
            "workers": [
                {
                    "worker_id": w.worker_id,
                    "batches": w.batches_processed,
                    "records": w.records_processed,
                    "rows": w.rows_inserted,
                    "failed_batch": w.failed_batch,
                    "error": _describe(w.error),
                }
                for w in self.workers
            ],
            "failed_workers": [w.worker_id for w in self.failed_workers],
            "finalization_errors": [
                {"worker_id": f.worker_id, "action": f.action, "error": _describe(f.error)}
                for f in self.finalization_errors
            ],
            "source_error": _describe(self.source_error),
            "error": _describe(self.error),
            "dropped_keys": dict(self.dropped_keys),
            "duration_seconds": round(self.duration_seconds, 3),
            "profile": dict(self.profile),
        }


def _describe(error: Optional[BaseException]) -> Optional[str]:
    if error is None:
        return None
    return f"{type(error).__name__}: {error}"


__all__ = [
    "Record",
    "FlattenedRow",
    "ColumnMapping",
    "Schema",
    "Batch",
    "WorkerResult",
    "FinalizationFailure",
    "RunOutcome",
    "RunResult",
    "validate_sql_ident",
]
