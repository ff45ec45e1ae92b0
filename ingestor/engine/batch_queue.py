"""
Bounded FIFO of batches between the dispatcher and the worker pool.

Backpressure: `put` blocks while the queue holds `capacity` batches. It returns
False instead of blocking forever when the run is cancelled or when every
consumer has detached (all workers finished early). `get` returns None once the
queue is closed and drained, or when the run is cancelled.
"""

from __future__ import annotations

import threading
from collections import deque
from typing import Deque, Optional

from ingestor.domain.models import Batch
from ingestor.engine.cancellation import CancelToken


class BatchQueue:
    def __init__(
        self,
        capacity: int,
        consumers: int,
        token: Optional[CancelToken] = None,
        poll_interval: float = 0.05,
    ) -> None:
        if capacity <= 0:
            raise ValueError("capacity must be positive")
        if consumers <= 0:
            raise ValueError("consumers must be positive")
        self.capacity = capacity
        self._items: Deque[Batch] = deque()
        self._consumers = consumers
        self._closed = False
        self._token = token or CancelToken()
        self._poll_interval = poll_interval
        self._cond = threading.Condition()

    def put(self, batch: Batch) -> bool:
        """
        Enqueue a batch, blocking while the queue is full.

        Returns False when the batch was not accepted (cancelled, or no
        consumers left).
        """
        with self._cond:
            if self._closed:
                raise RuntimeError("put() on a closed BatchQueue")
            while (
                len(self._items) >= self.capacity
                and self._consumers > 0
                and not self._token.cancelled
            ):
                self._cond.wait(self._poll_interval)
            if self._token.cancelled or self._consumers == 0:
                return False
            self._items.append(batch)
            self._cond.notify_all()
            return True

    def get(self) -> Optional[Batch]:
        with self._cond:
            while not self._items and not self._closed and not self._token.cancelled:
                self._cond.wait(self._poll_interval)
            if self._token.cancelled:
                return None
            if self._items:
                batch = self._items.popleft()
                self._cond.notify_all()
                return batch
            return None

    def close(self) -> None:
        """No more batches will be put; consumers drain what is left."""
        with self._cond:
            self._closed = True
            self._cond.notify_all()

    def detach(self) -> None:
        """A consumer leaves for good."""
        with self._cond:
            self._consumers = max(0, self._consumers - 1)
            self._cond.notify_all()

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def consumers(self) -> int:
        return self._consumers

    def __len__(self) -> int:
        with self._cond:
            return len(self._items)


__all__ = ["BatchQueue"]
