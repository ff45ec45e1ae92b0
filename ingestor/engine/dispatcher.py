"""
Batch partitioning and dispatch onto the bounded worker queue.

Two partitioning modes:
- bulk: a materialized sequence of N records split for W workers into
  ceil(N / ceil(N / W)) contiguous batches, the last possibly smaller;
- streaming: records buffered as they arrive and emitted every `threshold`
  records, with the remainder flushed when the source completes.

The Dispatcher pushes batches in order onto a BatchQueue (blocking when it is
full). Any exception raised while pulling from the source is a SourceError: it
trips the run's cancel token so workers stop promptly, and is reported rather
than mistaken for clean completion.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Iterable, Iterator, List, Optional, Sequence

from ingestor.domain.errors import SourceError
from ingestor.domain.models import Batch, Record
from ingestor.engine.batch_queue import BatchQueue
from ingestor.engine.cancellation import CancelToken
from ingestor.utils.logging import get_logger

log = get_logger(__name__)


def bulk_batches(records: Sequence[Record], workers: int) -> List[Batch]:
    if workers <= 0:
        raise ValueError("workers must be positive")
    total = len(records)
    if total == 0:
        return []
    size = math.ceil(total / workers)
    return [
        Batch(index=index, offset=start, records=tuple(records[start : start + size]))
        for index, start in enumerate(range(0, total, size))
    ]


def stream_batches(records: Iterable[Record], threshold: int) -> Iterator[Batch]:
    if threshold <= 0:
        raise ValueError("threshold must be positive")
    iterator = iter(records)
    buffer: List[Record] = []
    index = 0
    offset = 0
    try:
        for record in iterator:
            buffer.append(record)
            if len(buffer) >= threshold:
                yield Batch(index=index, offset=offset, records=tuple(buffer))
                index += 1
                offset += len(buffer)
                buffer = []
        if buffer:
            yield Batch(index=index, offset=offset, records=tuple(buffer))
    finally:
        close = getattr(iterator, "close", None)
        if close is not None:
            close()


@dataclass
class DispatchReport:
    batches: int = 0
    records: int = 0
    completed: bool = False
    source_error: Optional[SourceError] = None
    stopped_reason: Optional[str] = None


class Dispatcher:
    def __init__(self, queue: BatchQueue, token: CancelToken) -> None:
        self._queue = queue
        self._token = token

    def dispatch(self, batches: Iterable[Batch]) -> DispatchReport:
        """
        Feed batches to the queue until the source is exhausted, fails, or the
        run can no longer make progress. Always closes the queue.
        """
        report = DispatchReport()
        iterator = iter(batches)
        try:
            while True:
                if self._token.cancelled:
                    report.stopped_reason = self._token.reason or "cancelled"
                    break
                try:
                    batch = next(iterator)
                except StopIteration:
                    report.completed = True
                    break
                except SourceError as exc:
                    self._fail(report, exc)
                    break
                except Exception as exc:  # noqa: BLE001 - any source failure is a SourceError
                    error = SourceError(f"record source failed: {exc}")
                    error.__cause__ = exc
                    self._fail(report, error)
                    break

                if not self._queue.put(batch):
                    report.stopped_reason = (
                        self._token.reason if self._token.cancelled else "no workers left"
                    )
                    log.warning(
                        "[DISPATCH STOPPED] batch not accepted",
                        extra={"batch": batch.index, "reason": report.stopped_reason},
                    )
                    break
                report.batches += 1
                report.records += len(batch)
                log.debug(
                    "[DISPATCH] batch queued",
                    extra={"batch": batch.index, "size": len(batch), "offset": batch.offset},
                )
        finally:
            self._queue.close()
            close = getattr(iterator, "close", None)
            if close is not None:
                close()

        log.info(
            "[DISPATCH COMPLETE]" if report.completed else "[DISPATCH ABORTED]",
            extra={
                "batches": report.batches,
                "records": report.records,
                "reason": report.stopped_reason,
            },
        )
        return report

    def dispatch_bulk(self, records: Sequence[Record], workers: int) -> DispatchReport:
        return self.dispatch(bulk_batches(records, workers))

    def dispatch_stream(self, records: Iterable[Record], threshold: int) -> DispatchReport:
        return self.dispatch(stream_batches(records, threshold))

    def _fail(self, report: DispatchReport, error: SourceError) -> None:
        report.source_error = error
        report.stopped_reason = "source error"
        log.error("[SOURCE FAILED] aborting dispatch", extra={"error": str(error)})
        self._token.cancel(f"source error: {error}")


__all__ = ["Dispatcher", "DispatchReport", "bulk_batches", "stream_batches"]
