"""
Reduce stage: the commit-all-or-rollback-all barrier.

Runs once every worker has finished. If any worker reported an error, any
worker never obtained a transaction, or the run itself was aborted (source
failure, cancellation), every open transaction is rolled back, including those
of workers that succeeded. Otherwise every transaction is committed.
Finalization proceeds in ascending worker id and is best-effort: a failed
commit or rollback is recorded and the remaining transactions are still
finalized.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from ingestor.domain.errors import CommitError, FinalizationError, RollbackError
from ingestor.domain.models import FinalizationFailure, WorkerResult
from ingestor.utils.logging import get_logger

log = get_logger(__name__)


@dataclass
class BarrierReport:
    map_failed: bool
    committed: List[int] = field(default_factory=list)
    rolled_back: List[int] = field(default_factory=list)
    failed_workers: List[WorkerResult] = field(default_factory=list)
    finalization_errors: List[FinalizationFailure] = field(default_factory=list)

    @property
    def first_finalization_error(self) -> Optional[BaseException]:
        return self.finalization_errors[0].error if self.finalization_errors else None


class TransactionCoordinator:
    def finalize(
        self,
        results: Sequence[WorkerResult],
        abort: Optional[BaseException] = None,
    ) -> BarrierReport:
        """
        Decide and apply commit-all vs rollback-all.

        Parameters
        ----------
        results : sequence of WorkerResult
            Exactly one per worker, collected after the pool drained.
        abort : BaseException | None
            A run-level failure outside the workers (source error,
            cancellation) that forces a rollback.
        """
        ordered = sorted(results, key=lambda r: r.worker_id)
        ids = [r.worker_id for r in ordered]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate worker ids in results: {ids}")

        failed = [r for r in ordered if not r.ok]
        for r in failed:
            if r.transaction is None:
                log.error(
                    "[BARRIER] worker never obtained a transaction",
                    extra={"worker_id": r.worker_id, "error": str(r.error)},
                )
            else:
                log.error(
                    "[BARRIER] worker reported an error",
                    extra={"worker_id": r.worker_id, "error": str(r.error)},
                )

        report = BarrierReport(map_failed=bool(failed) or abort is not None, failed_workers=failed)
        if report.map_failed:
            log.warning(
                "[BARRIER ROLLBACK] errors detected during the map stage; rolling back all transactions",
                extra={"failed_workers": [r.worker_id for r in failed], "abort": str(abort) if abort else None},
            )
            self._rollback_all(ordered, report)
        else:
            self._commit_all(ordered, report)

        if report.finalization_errors:
            log.critical(
                "[BARRIER] finalization incomplete; store state must be inspected",
                extra={
                    "failures": [
                        {"worker_id": f.worker_id, "action": f.action} for f in report.finalization_errors
                    ]
                },
            )
        return report

    def _commit_all(self, ordered: Sequence[WorkerResult], report: BarrierReport) -> None:
        for r in ordered:
            tx = r.transaction
            if tx is None:
                continue
            try:
                tx.commit()
            except Exception as exc:  # noqa: BLE001 - keep finalizing sibling transactions
                self._record(report, CommitError(r.worker_id, str(exc)), exc)
                continue
            report.committed.append(r.worker_id)
            log.info("[BARRIER COMMIT] transaction committed", extra={"worker_id": r.worker_id})
        if not report.finalization_errors:
            log.info("[BARRIER COMMIT] all transactions committed", extra={"workers": report.committed})

    def _rollback_all(self, ordered: Sequence[WorkerResult], report: BarrierReport) -> None:
        for r in ordered:
            tx = r.transaction
            if tx is None:
                continue
            try:
                tx.rollback()
            except Exception as exc:  # noqa: BLE001 - keep finalizing sibling transactions
                self._record(report, RollbackError(r.worker_id, str(exc)), exc)
                continue
            report.rolled_back.append(r.worker_id)
            log.info("[BARRIER ROLLBACK] transaction rolled back", extra={"worker_id": r.worker_id})

    @staticmethod
    def _record(report: BarrierReport, error: FinalizationError, cause: BaseException) -> None:
        error.__cause__ = cause
        report.finalization_errors.append(
            FinalizationFailure(worker_id=error.worker_id, action=error.action, error=error)
        )
        log.error(f"[BARRIER] {error.action} failed", extra={"worker_id": error.worker_id, "error": str(cause)})


__all__ = ["BarrierReport", "TransactionCoordinator"]
