"""
Orchestrator for ingestion runs: dispatch, map stage, barrier, and result
persistence.

Usage (example from CLI):
    from ingestor.orchestrator import run_ingestion

    result = run_ingestion(records, schema, store, workers=4, mode="stream")
    print(result.outcome, result.rows_inserted)

When `persist` is set, outputs are saved to `results/` by default:
- `results/latest.json` (last run)
- `results/run-<timestamp>.json` (timestamped archive)
"""

from __future__ import annotations

import json
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterable, List, Optional, Sequence

from ingestor.config import get_settings
from ingestor.domain.errors import RunCancelledError, SourceError
from ingestor.domain.models import Record, RunOutcome, RunResult, Schema, WorkerResult
from ingestor.engine.abstract import Store
from ingestor.engine.batch_queue import BatchQueue
from ingestor.engine.cancellation import CancelToken
from ingestor.engine.coordinator import BarrierReport, TransactionCoordinator
from ingestor.engine.dispatcher import DispatchReport, Dispatcher, bulk_batches, stream_batches
from ingestor.engine.flattener import DropCounter, Flattener
from ingestor.engine.sql_builder import POSTGRES_MAX_PARAMS
from ingestor.engine.worker import Worker, WorkerPool
from ingestor.utils.logging import get_logger
from ingestor.utils.profiler import profile_block

log = get_logger(__name__)

MODES = ("bulk", "stream")


def _persist_results(payload: dict, results_dir: Path) -> None:
    results_dir.mkdir(parents=True, exist_ok=True)
    latest_path = results_dir / "latest.json"
    timestamp = datetime.now(timezone.utc).strftime("%Y%m%dT%H%M%S%fZ")
    archive_path = results_dir / f"run-{timestamp}.json"

    with latest_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)
    with archive_path.open("w", encoding="utf-8") as f:
        json.dump(payload, f, indent=2, sort_keys=True)

    log.info("Results persisted", extra={"latest": str(latest_path), "archive": str(archive_path)})


def _materialize(records: Iterable[Record]) -> Sequence[Record]:
    if isinstance(records, Sequence):
        return records
    try:
        return list(records)
    except SourceError:
        raise
    except Exception as exc:  # noqa: BLE001 - any source failure is a SourceError
        raise SourceError(f"record source failed: {exc}") from exc


def _map_stage(
    records: Iterable[Record],
    store: Store,
    flattener: Flattener,
    token: CancelToken,
    *,
    workers: int,
    mode: str,
    stream_batch_size: int,
    max_params: int,
    coordinator: TransactionCoordinator,
) -> tuple[List[WorkerResult], DispatchReport, BarrierReport]:
    if mode == "bulk":
        try:
            materialized = _materialize(records)
        except SourceError as exc:
            log.error("[SOURCE FAILED] records could not be loaded", extra={"error": str(exc)})
            token.cancel(f"source error: {exc}")
            dispatch = DispatchReport(source_error=exc, stopped_reason="source error")
            return [], dispatch, coordinator.finalize([], abort=exc)
        batches: Iterable = bulk_batches(materialized, workers)
    else:
        batches = stream_batches(records, stream_batch_size)

    queue = BatchQueue(capacity=workers, consumers=workers, token=token)
    pool = WorkerPool(
        workers,
        lambda worker_id: Worker(worker_id, store, queue, flattener, token, max_params),
    )
    dispatcher = Dispatcher(queue, token)

    pool.start()
    try:
        dispatch = dispatcher.dispatch(batches)
    except BaseException:
        # Interrupted while dispatching: still route through the barrier.
        token.cancel("dispatch interrupted")
        results = pool.join()
        coordinator.finalize(results, abort=RunCancelledError("dispatch interrupted"))
        raise
    results = pool.join()

    abort: Optional[BaseException] = dispatch.source_error
    if abort is None and token.cancelled:
        abort = RunCancelledError(token.reason or "cancelled")
    return results, dispatch, coordinator.finalize(results, abort=abort)


def _assemble(
    table: str,
    results: List[WorkerResult],
    dispatch: DispatchReport,
    barrier: BarrierReport,
    token: CancelToken,
) -> RunResult:
    rows_attempted = sum(r.rows_inserted for r in results)

    if barrier.map_failed:
        outcome = RunOutcome.FAILED_MAPPING
        error: Optional[BaseException] = dispatch.source_error
        if error is None and barrier.failed_workers:
            error = barrier.failed_workers[0].error or RuntimeError(
                f"worker {barrier.failed_workers[0].worker_id} has no transaction"
            )
        if error is None:
            error = RunCancelledError(token.reason or "cancelled")
    elif barrier.finalization_errors:
        outcome = RunOutcome.FAILED_FINALIZATION
        error = barrier.first_finalization_error
    else:
        outcome = RunOutcome.SUCCESS
        error = None

    success = outcome is RunOutcome.SUCCESS
    return RunResult(
        success=success,
        outcome=outcome,
        table=table,
        workers=list(results),
        failed_workers=list(barrier.failed_workers),
        finalization_errors=list(barrier.finalization_errors),
        committed=list(barrier.committed),
        rolled_back=list(barrier.rolled_back),
        rows_inserted=rows_attempted if success else 0,
        rows_attempted=rows_attempted,
        records_dispatched=dispatch.records,
        batches_dispatched=dispatch.batches,
        source_error=dispatch.source_error,
        error=error,
    )


def run_ingestion(
    records: Iterable[Record],
    schema: Schema,
    store: Store,
    *,
    workers: Optional[int] = None,
    mode: str = "bulk",
    stream_batch_size: Optional[int] = None,
    timeout_seconds: Optional[float] = None,
    token: Optional[CancelToken] = None,
    max_params: int = POSTGRES_MAX_PARAMS,
    persist: bool = False,
    results_dir: Path | str | None = None,
) -> RunResult:
    """
    Ingest `records` into `schema.table` with all-or-nothing semantics.

    Parameters
    ----------
    records : iterable of Record
        Bulk mode materializes it; stream mode consumes it lazily.
    schema : Schema
        Target table and the field -> column allow-list.
    store : Store
        Opens one transaction per worker. Its pool must hold `workers` connections.
    workers : int | None
        Pool size W. Defaults to settings.worker_count.
    mode : str
        "bulk" (ceil(N/W)-sized batches) or "stream" (threshold-sized batches).
    stream_batch_size : int | None
        Streaming threshold. Defaults to settings.stream_batch_size, then W.
    timeout_seconds : float | None
        Run deadline; when it passes, the run is cancelled and rolled back.
    token : CancelToken | None
        External cancellation handle. Overrides `timeout_seconds`.
    max_params : int
        Bind-parameter ceiling per INSERT statement.
    persist : bool
        Whether to write the run summary to disk.
    results_dir : Path | str | None
        Directory for JSON artifacts. Defaults to settings.results_dir.

    Returns
    -------
    RunResult
        Never raises for map-stage or finalization failures; those are
        reported on the result.
    """
    settings = get_settings()
    worker_count = workers if workers is not None else settings.worker_count
    if worker_count <= 0:
        raise ValueError("workers must be positive")
    if mode not in MODES:
        raise ValueError(f"Unknown mode '{mode}'. Available: {', '.join(MODES)}")
    threshold = stream_batch_size or settings.stream_batch_size or worker_count
    if threshold <= 0:
        raise ValueError("stream_batch_size must be positive")
    if token is None:
        token = CancelToken(timeout_seconds if timeout_seconds is not None else settings.run_timeout_seconds)

    drops = DropCounter()
    flattener = Flattener(schema, on_drop=drops.add)
    coordinator = TransactionCoordinator()

    log.info(
        f"[RUN START] {schema.table}",
        extra={"table": schema.table, "workers": worker_count, "mode": mode},
    )
    with profile_block(f"ingest:{schema.table}") as stats:
        results, dispatch, barrier = _map_stage(
            records,
            store,
            flattener,
            token,
            workers=worker_count,
            mode=mode,
            stream_batch_size=threshold,
            max_params=max_params,
            coordinator=coordinator,
        )

    result = _assemble(schema.table, results, dispatch, barrier, token)
    result.dropped_keys = drops.snapshot()
    result.duration_seconds = stats.duration_seconds
    result.profile = stats.as_dict()

    log_fn = log.info if result.success else log.error
    log_fn(
        f"[RUN COMPLETE] {schema.table}: {result.outcome.value}",
        extra={
            "table": schema.table,
            "outcome": result.outcome.value,
            "rows": result.rows_inserted,
            "records": result.records_dispatched,
            "batches": result.batches_dispatched,
            "duration_seconds": round(result.duration_seconds, 3),
            "peak_rss_bytes": stats.peak_rss_bytes,
        },
    )

    if persist:
        _persist_results(result.to_dict(), Path(results_dir or settings.results_dir))
    return result


__all__ = ["MODES", "run_ingestion"]
