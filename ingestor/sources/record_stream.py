"""
Lazy record source backed by a producer thread and a bounded queue.

The producer pushes records as it parses them; the consumer iterates. The
stream ends with an explicit completion marker, and a producer failure travels
as an explicit failure marker that the consumer re-raises as SourceError, so a
broken input is never mistaken for a short one.
"""

from __future__ import annotations

import queue
import threading
from typing import Callable, Iterable, Iterator, Optional

from ingestor.domain.errors import SourceError
from ingestor.domain.models import Record
from ingestor.utils.logging import get_logger

log = get_logger(__name__)

_END = object()


class _Failure:
    def __init__(self, error: BaseException) -> None:
        self.error = error


class RecordStream:
    """
    Iterable over records produced on a background thread.

    Parameters
    ----------
    producer : callable
        Zero-argument callable returning an iterable of records. Called on the
        producer thread.
    buffer_size : int
        Maximum number of records held between producer and consumer.
    name : str
        Thread name, useful in logs.
    """

    def __init__(
        self,
        producer: Callable[[], Iterable[Record]],
        buffer_size: int = 1000,
        name: str = "record-producer",
        poll_interval: float = 0.1,
    ) -> None:
        if buffer_size <= 0:
            raise ValueError("buffer_size must be positive")
        self._producer = producer
        self._queue: "queue.Queue[object]" = queue.Queue(maxsize=buffer_size)
        self._closed = threading.Event()
        self._poll_interval = poll_interval
        self._thread: Optional[threading.Thread] = None
        self._name = name
        self._started = False

    def _run(self) -> None:
        count = 0
        outcome: Optional[object] = _END
        try:
            records = iter(self._producer())
            try:
                for record in records:
                    if not self._offer(record):
                        log.debug("Record stream closed by consumer", extra={"produced": count})
                        outcome = None
                        return
                    count += 1
            finally:
                close = getattr(records, "close", None)
                if close is not None:
                    close()
        except BaseException as exc:  # noqa: BLE001 - handed to the consumer as a failure marker
            log.error("Record producer failed", extra={"produced": count, "error": repr(exc)})
            outcome = _Failure(exc)
        else:
            log.debug("Record producer finished", extra={"produced": count})
        finally:
            # The consumer waits for exactly one terminal marker.
            if outcome is not None:
                self._offer(outcome)

    def _offer(self, item: object) -> bool:
        while not self._closed.is_set():
            try:
                self._queue.put(item, timeout=self._poll_interval)
                return True
            except queue.Full:
                continue
        return False

    def __iter__(self) -> Iterator[Record]:
        if self._started:
            raise RuntimeError("RecordStream can only be iterated once")
        self._started = True
        self._thread = threading.Thread(target=self._run, name=self._name, daemon=True)
        self._thread.start()
        try:
            while True:
                item = self._next_item()
                if item is _END:
                    return
                if isinstance(item, _Failure):
                    if isinstance(item.error, SourceError):
                        raise item.error
                    raise SourceError(f"record source failed: {item.error}") from item.error
                yield item  # type: ignore[misc]
        finally:
            self.close()

    def _next_item(self) -> object:
        while True:
            try:
                return self._queue.get(timeout=self._poll_interval)
            except queue.Empty:
                thread = self._thread
                if thread is not None and not thread.is_alive() and self._queue.empty():
                    raise SourceError("record producer exited without ending the stream") from None

    def close(self, timeout: Optional[float] = 5.0) -> None:
        """Stop consuming, release a producer blocked on a full buffer and wait for it to exit."""
        self._closed.set()
        thread = self._thread
        if thread is None or thread is threading.current_thread():
            return
        thread.join(timeout)
        if thread.is_alive():
            log.warning("Record producer still running after close", extra={"thread": thread.name})

    @property
    def closed(self) -> bool:
        return self._closed.is_set()


__all__ = ["RecordStream"]
