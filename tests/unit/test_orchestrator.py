from __future__ import annotations

import json
import threading
from pathlib import Path
from typing import Iterator

import pytest

from ingestor.domain.errors import RowError, RunCancelledError, SourceError, TransactionOpenError
from ingestor.domain.models import RunOutcome, Schema
from ingestor.engine.cancellation import CancelToken
from ingestor.orchestrator import run_ingestion
from ingestor.sources.record_stream import RecordStream
from tests.fakes import FakeStore

SCALAR_RECORDS = 10
WORKERS = 2


def _people(n: int) -> list[dict]:
    return [{"id": i, "name": f"p{i}", "email": f"p{i}@example.com"} for i in range(n)]


def test_bulk_run_commits_every_transaction(flat_schema: Schema) -> None:
    store = FakeStore()
    result = run_ingestion(_people(SCALAR_RECORDS), flat_schema, store, workers=WORKERS)

    assert result.success
    assert result.outcome is RunOutcome.SUCCESS
    assert result.batches_dispatched == 2
    assert result.records_dispatched == SCALAR_RECORDS
    assert result.rows_inserted == SCALAR_RECORDS
    assert result.committed == [0, 1]
    assert len(store.transactions) == WORKERS
    assert sorted(r["id"] for r in store.committed_rows) == list(range(SCALAR_RECORDS))
    assert result.error is None


def test_constraint_violation_rolls_back_every_worker(flat_schema: Schema) -> None:
    store = FakeStore(required={"email"})
    records = _people(9)
    records[4] = {"id": 4, "name": "no email"}

    result = run_ingestion(records, flat_schema, store, workers=3)

    assert not result.success
    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert len(result.failed_workers) == 1
    assert isinstance(result.error, RowError)
    assert result.error.record_index == 4
    assert result.rolled_back == [0, 1, 2]
    assert store.states == ["rolled_back"] * 3
    assert store.committed_rows == []
    assert result.rows_inserted == 0


def test_nested_records_flatten_into_rows(scan_schema: Schema) -> None:
    store = FakeStore()
    records = [
        {"user": "a", "status": "ok"},
        {"user": "b", "status": "ok", "fnumbers": [{"fNumber": f"F{i}"} for i in range(3)]},
        {"user": "c", "status": "ok"},
    ]

    result = run_ingestion(records, scan_schema, store, workers=WORKERS)

    assert result.success
    assert result.rows_inserted == 5
    assert len(store.committed_rows) == 5
    assert all(set(row) <= scan_schema.allowed_columns for row in store.committed_rows)


def test_stream_source_error_rolls_back_opened_transactions(flat_schema: Schema) -> None:
    def produce() -> Iterator[dict]:
        yield from _people(4)
        raise ValueError("malformed record 5")

    store = FakeStore()
    result = run_ingestion(
        RecordStream(produce, buffer_size=2), flat_schema, store, workers=WORKERS, mode="stream"
    )

    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert isinstance(result.source_error, SourceError)
    assert result.error is result.source_error
    assert store.committed_rows == []
    assert all(state == "rolled_back" for state in store.states)


def test_bulk_source_error_opens_no_transactions(flat_schema: Schema) -> None:
    def produce() -> Iterator[dict]:
        yield {"id": 1}
        raise OSError("unreadable")

    store = FakeStore()
    result = run_ingestion(produce(), flat_schema, store, workers=WORKERS)

    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert isinstance(result.source_error, SourceError)
    assert store.transactions == []


def test_all_workers_failing_does_not_deadlock(flat_schema: Schema) -> None:
    store = FakeStore(fail_begin={0, 1})
    finished = threading.Event()
    outcome = {}

    def run() -> None:
        outcome["result"] = run_ingestion(
            iter(_people(50)), flat_schema, store, workers=WORKERS, mode="stream", stream_batch_size=1
        )
        finished.set()

    thread = threading.Thread(target=run, daemon=True)
    thread.start()
    assert finished.wait(timeout=10), "dispatcher blocked with no consumers left"

    result = outcome["result"]
    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert all(isinstance(w.error, TransactionOpenError) for w in result.workers)
    assert result.records_dispatched < 50


def test_commit_failure_reports_finalization_outcome(flat_schema: Schema) -> None:
    store = FakeStore(fail_commit={0})
    result = run_ingestion(_people(4), flat_schema, store, workers=WORKERS)

    assert result.outcome is RunOutcome.FAILED_FINALIZATION
    assert not result.success
    assert result.committed == [1]
    assert [f.worker_id for f in result.finalization_errors] == [0]
    assert result.error is result.finalization_errors[0].error
    assert result.rows_inserted == 0
    assert result.rows_attempted == 4


def test_cancelled_run_rolls_back(flat_schema: Schema) -> None:
    token = CancelToken()
    token.cancel("operator abort")
    store = FakeStore()

    result = run_ingestion(_people(4), flat_schema, store, workers=WORKERS, token=token)

    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert isinstance(result.error, RunCancelledError)
    assert store.committed_rows == []


@pytest.mark.parametrize("mode", ["bulk", "stream"])
def test_run_deadline_rolls_back_every_transaction(flat_schema: Schema, mode: str) -> None:
    store = FakeStore(execute_delay=0.05)

    result = run_ingestion(_people(40), flat_schema, store, workers=WORKERS, mode=mode, timeout_seconds=0.2)

    assert result.outcome is RunOutcome.FAILED_MAPPING
    assert isinstance(result.error, RunCancelledError)
    assert "deadline exceeded" in str(result.error)
    assert len(store.transactions) == WORKERS
    assert store.states == ["rolled_back"] * WORKERS
    assert store.committed_rows == []
    assert result.rows_inserted == 0


def test_empty_input_commits_empty_transactions(flat_schema: Schema) -> None:
    store = FakeStore()
    result = run_ingestion([], flat_schema, store, workers=WORKERS)

    assert result.success
    assert result.rows_inserted == 0
    assert result.batches_dispatched == 0
    assert store.states == ["committed", "committed"]


def test_dropped_keys_are_counted(flat_schema: Schema) -> None:
    records = [{"id": 1, "name": "a", "email": "e", "extra": True}, {"id": 2, "extra": False}]
    result = run_ingestion(records, flat_schema, FakeStore(), workers=1)

    assert result.success
    assert result.dropped_keys == {"extra": 2}


def test_invalid_arguments_rejected(flat_schema: Schema) -> None:
    with pytest.raises(ValueError):
        run_ingestion([], flat_schema, FakeStore(), workers=0)
    with pytest.raises(ValueError):
        run_ingestion([], flat_schema, FakeStore(), workers=1, mode="turbo")


def test_results_are_persisted(flat_schema: Schema, tmp_path: Path) -> None:
    results_dir = tmp_path / "out"
    run_ingestion(_people(3), flat_schema, FakeStore(), workers=1, persist=True, results_dir=results_dir)

    latest = json.loads((results_dir / "latest.json").read_text(encoding="utf-8"))
    assert latest["outcome"] == "success"
    assert latest["rows_inserted"] == 3
    assert len(list(results_dir.glob("run-*.json"))) == 1
