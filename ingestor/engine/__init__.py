"""
Ingestion engine: flattening, INSERT generation, dispatch, the worker pool
(map stage) and the transaction barrier (reduce stage).

This module re-exports the public pieces so downstream code can import from
`ingestor.engine` directly.
"""

from ingestor.engine.abstract import AbstractStore, Store, Transaction
from ingestor.engine.batch_queue import BatchQueue
from ingestor.engine.cancellation import CancelToken
from ingestor.engine.coordinator import BarrierReport, TransactionCoordinator
from ingestor.engine.dispatcher import DispatchReport, Dispatcher, bulk_batches, stream_batches
from ingestor.engine.flattener import DropCounter, Flattener
from ingestor.engine.sql_builder import InsertStatement, build_insert, build_inserts
from ingestor.engine.worker import Worker, WorkerPool

__all__ = [
    # Ports
    "AbstractStore",
    "Store",
    "Transaction",
    # Map stage
    "BatchQueue",
    "CancelToken",
    "DispatchReport",
    "Dispatcher",
    "DropCounter",
    "Flattener",
    "InsertStatement",
    "Worker",
    "WorkerPool",
    "build_insert",
    "build_inserts",
    "bulk_batches",
    "stream_batches",
    # Reduce stage
    "BarrierReport",
    "TransactionCoordinator",
]
