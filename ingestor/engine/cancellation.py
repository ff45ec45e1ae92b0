"""
Cooperative cancellation shared by the dispatcher, the batch queue and workers.

A token trips either explicitly (`cancel(reason)`) or when its optional
deadline passes. Nothing is interrupted forcibly: every party polls the token
at its suspension points and winds down, leaving the barrier to roll back.
"""

from __future__ import annotations

import threading
import time
from typing import Optional

from ingestor.domain.errors import RunCancelledError


class CancelToken:
    def __init__(self, timeout_seconds: Optional[float] = None) -> None:
        if timeout_seconds is not None and timeout_seconds <= 0:
            raise ValueError(f"timeout_seconds must be positive, got {timeout_seconds}")
        self._event = threading.Event()
        self._lock = threading.Lock()
        self._reason: Optional[str] = None
        self._deadline = time.monotonic() + timeout_seconds if timeout_seconds is not None else None

    def cancel(self, reason: str = "cancelled") -> None:
        """Trip the token. The first reason wins."""
        with self._lock:
            if self._reason is None:
                self._reason = reason
            self._event.set()

    @property
    def cancelled(self) -> bool:
        if self._event.is_set():
            return True
        if self._deadline is not None and time.monotonic() >= self._deadline:
            self.cancel("deadline exceeded")
            return True
        return False

    @property
    def reason(self) -> Optional[str]:
        return self._reason

    def remaining(self) -> Optional[float]:
        """Seconds until the deadline, or None when there is no deadline."""
        if self._deadline is None:
            return None
        return max(0.0, self._deadline - time.monotonic())

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise RunCancelledError(self._reason or "cancelled")


__all__ = ["CancelToken"]
