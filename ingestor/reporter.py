from __future__ import annotations

from typing import Optional

from rich import box
from rich.console import Console
from rich.markup import escape
from rich.table import Table

from ingestor.domain.models import RunOutcome, RunResult

_OUTCOME_STYLE = {
    RunOutcome.SUCCESS: "bold green",
    RunOutcome.FAILED_MAPPING: "bold red",
    RunOutcome.FAILED_FINALIZATION: "bold white on red",
}


def _worker_status(result: RunResult, worker_id: int) -> str:
    if worker_id in result.committed:
        return "[green]committed[/green]"
    if worker_id in result.rolled_back:
        return "[yellow]rolled back[/yellow]"
    for failure in result.finalization_errors:
        if failure.worker_id == worker_id:
            return f"[red]{failure.action} failed[/red]"
    return "[dim]no transaction[/dim]"


def print_run_result(result: RunResult, console: Optional[Console] = None) -> None:
    """
    Render a run's per-worker outcome as a rich table, followed by the
    finalization failures (if any) and the overall verdict.
    """
    console = console or Console()

    table = Table(
        title=f"Ingestion into {result.table}",
        box=box.ROUNDED,
        caption=(
            f"{result.records_dispatched:,} records in {result.batches_dispatched:,} batches, "
            f"{result.duration_seconds:.2f}s"
        ),
    )
    table.add_column("Worker", style="cyan", justify="right", no_wrap=True)
    table.add_column("Batches", justify="right", style="blue")
    table.add_column("Records", justify="right", style="magenta")
    table.add_column("Rows", justify="right", style="green")
    table.add_column("Transaction")
    table.add_column("Error", style="red", overflow="fold")

    for worker in result.workers:
        table.add_row(
            str(worker.worker_id),
            f"{worker.batches_processed:,}",
            f"{worker.records_processed:,}",
            f"{worker.rows_inserted:,}",
            _worker_status(result, worker.worker_id),
            escape(str(worker.error)) if worker.error else "",
        )
    console.print(table)

    if result.source_error is not None:
        console.print(f"[red]Source error:[/red] {escape(str(result.source_error))}")

    if result.finalization_errors:
        console.print(
            "[bold red]Finalization incomplete: the store may hold a partial result. "
            "Inspect the target table before re-running.[/bold red]"
        )
        for failure in result.finalization_errors:
            console.print(f"  worker {failure.worker_id}: {escape(str(failure.error))}")

    if result.dropped_keys:
        dropped = ", ".join(f"{key} ({count})" for key, count in sorted(result.dropped_keys.items()))
        console.print(f"[dim]Keys not in schema (dropped): {dropped}[/dim]")

    style = _OUTCOME_STYLE[result.outcome]
    verdict = f"[{style}]{result.outcome.value.upper()}[/{style}] rows={result.rows_inserted:,}"
    if result.error is not None and result.outcome is not RunOutcome.SUCCESS:
        verdict += f" error={escape(str(result.error))}"
    console.print(verdict)
