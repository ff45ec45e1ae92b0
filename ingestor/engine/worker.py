"""
Map stage: a fixed pool of workers, each owning one transaction.

A worker opens its transaction once, then pulls batches until the queue is
closed and drained. For every record it flattens, generates the INSERT(s) and
executes them inside its transaction. The first failure stops the worker
(fail-fast); it never finalizes its own transaction, that is the barrier's job.
"""

from __future__ import annotations

from concurrent.futures import Future, ThreadPoolExecutor
from typing import Callable, List, Optional

from ingestor.domain.errors import RowError, RunCancelledError, TransactionOpenError
from ingestor.domain.models import Batch, WorkerResult
from ingestor.engine.abstract import Store, Transaction
from ingestor.engine.batch_queue import BatchQueue
from ingestor.engine.cancellation import CancelToken
from ingestor.engine.flattener import Flattener
from ingestor.engine.sql_builder import POSTGRES_MAX_PARAMS, build_inserts
from ingestor.utils.logging import get_logger

log = get_logger(__name__)


class Worker:
    def __init__(
        self,
        worker_id: int,
        store: Store,
        queue: BatchQueue,
        flattener: Flattener,
        token: CancelToken,
        max_params: int = POSTGRES_MAX_PARAMS,
    ) -> None:
        self.worker_id = worker_id
        self._store = store
        self._queue = queue
        self._flattener = flattener
        self._table = flattener.schema.table
        self._token = token
        self._max_params = max_params

    def run(self) -> WorkerResult:
        """
        Process batches until the queue is exhausted or the first failure.

        Never raises: every failure is recorded on the returned WorkerResult.
        """
        result = WorkerResult(worker_id=self.worker_id)
        try:
            try:
                result.transaction = self._store.begin()
            except Exception as exc:  # noqa: BLE001 - any open failure is fatal for this worker
                error = TransactionOpenError(self.worker_id, str(exc))
                error.__cause__ = exc
                result.error = error
                log.error(
                    "[WORKER FAILED] could not open transaction",
                    extra={"worker_id": self.worker_id, "error": str(exc)},
                )
                return result

            log.debug("[WORKER START] transaction open", extra={"worker_id": self.worker_id})
            self._consume(result.transaction, result)
        except (RowError, RunCancelledError) as exc:
            result.error = exc
            log.error(
                "[WORKER FAILED] stopping",
                extra={"worker_id": self.worker_id, "error": str(exc)},
            )
        except Exception as exc:  # noqa: BLE001 - intentional broad catch to record failures
            log.exception("[WORKER FAILED] unexpected error", extra={"worker_id": self.worker_id})
            result.error = exc
        finally:
            self._queue.detach()

        if result.error is None:
            log.info(
                "[WORKER DONE]",
                extra={
                    "worker_id": self.worker_id,
                    "batches": result.batches_processed,
                    "records": result.records_processed,
                    "rows": result.rows_inserted,
                },
            )
        return result

    def _consume(self, tx: Transaction, result: WorkerResult) -> None:
        while True:
            batch = self._queue.get()
            if batch is None:
                self._token.raise_if_cancelled()
                return
            result.failed_batch = batch.index
            self._process_batch(tx, batch, result)
            result.failed_batch = None
            result.batches_processed += 1

    def _process_batch(self, tx: Transaction, batch: Batch, result: WorkerResult) -> None:
        for position, record in enumerate(batch.records):
            self._token.raise_if_cancelled()
            record_index = batch.offset + position
            try:
                rows = self._flattener.flatten(record)
                for statement in build_inserts(self._table, rows, self._max_params):
                    affected = tx.execute(statement.sql, statement.params)
                    result.rows_inserted += affected if affected >= 0 else statement.row_count
            except Exception as exc:  # noqa: BLE001 - row-level failures are fatal for the worker
                error = RowError(self.worker_id, str(exc), batch.index, record_index)
                error.__cause__ = exc
                raise error
            result.records_processed += 1


class WorkerPool:
    """
    Runs a fixed number of workers on threads and joins their results.
    """

    def __init__(self, size: int, worker_factory: Callable[[int], Worker]) -> None:
        if size <= 0:
            raise ValueError("pool size must be positive")
        self.size = size
        self._worker_factory = worker_factory
        self._executor: Optional[ThreadPoolExecutor] = None
        self._futures: List[Future[WorkerResult]] = []

    def start(self) -> None:
        if self._executor is not None:
            raise RuntimeError("WorkerPool already started")
        self._executor = ThreadPoolExecutor(max_workers=self.size, thread_name_prefix="ingest-worker")
        self._futures = [
            self._executor.submit(self._worker_factory(worker_id).run) for worker_id in range(self.size)
        ]

    def join(self) -> List[WorkerResult]:
        """Wait for every worker; results come back ordered by worker id."""
        if self._executor is None:
            raise RuntimeError("WorkerPool not started")
        try:
            results = [future.result() for future in self._futures]
        finally:
            self._executor.shutdown(wait=True)
        return sorted(results, key=lambda r: r.worker_id)

    def __enter__(self) -> "WorkerPool":
        self.start()
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        del exc_type, exc, tb
        if self._executor is not None:
            self._executor.shutdown(wait=True)


__all__ = ["Worker", "WorkerPool"]
