"""
Store and transaction interfaces used by the ingestion engine.

The engine only ever talks to the relational store through these ports:
begin a transaction, execute a parameterized statement inside it, and
finalize it exactly once. Concrete adapters (PostgreSQL, test fakes) implement
the Protocols structurally; AbstractStore is an optional ABC helper.
"""

from __future__ import annotations

import abc
from typing import Any, Protocol, Sequence, runtime_checkable


@runtime_checkable
class Transaction(Protocol):
    """
    One open database transaction, owned by exactly one worker.
    """

    def execute(self, sql: str, params: Sequence[Any]) -> int:
        """
        Execute a parameterized statement inside the transaction.

        Returns
        -------
        int
            Number of rows affected (may be -1 when the driver cannot tell).
        """
        ...

    def commit(self) -> None:
        ...

    def rollback(self) -> None:
        ...


@runtime_checkable
class Store(Protocol):
    """
    Source of transactions. Must be able to hold at least W open at once.
    """

    def begin(self) -> Transaction:
        ...


class AbstractStore(abc.ABC):
    """
    Optional ABC helper for class-based store implementations.
    """

    @abc.abstractmethod
    def begin(self) -> Transaction:  # pragma: no cover - interface only
        """Open a new transaction."""
        raise NotImplementedError


__all__ = ["Transaction", "Store", "AbstractStore"]
