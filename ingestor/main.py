from __future__ import annotations

import itertools
import json
import sys
from pathlib import Path
from typing import Optional

import typer

from ingestor.config import get_settings
from ingestor.domain.errors import SchemaError, SourceError
from ingestor.domain.models import RunOutcome, Schema
from ingestor.engine.abstract import Store
from ingestor.engine.flattener import Flattener
from ingestor.infrastructure.postgres_store import PostgresStore
from ingestor.orchestrator import MODES, run_ingestion
from ingestor.reporter import print_run_result
from ingestor.sources.file_loader import iter_records, load_records, move_input_file, stream_records
from ingestor.utils.logging import configure_logging

app = typer.Typer(help="Transactional batch ingestion of nested JSON/XML records into PostgreSQL.")

EXIT_OK = 0
EXIT_FAILED_MAPPING = 1
EXIT_USAGE = 2
EXIT_FAILED_FINALIZATION = 3

_EXIT_CODES = {
    RunOutcome.SUCCESS: EXIT_OK,
    RunOutcome.FAILED_MAPPING: EXIT_FAILED_MAPPING,
    RunOutcome.FAILED_FINALIZATION: EXIT_FAILED_FINALIZATION,
}


def _build_store(workers: int) -> Store:
    return PostgresStore.from_settings(workers)


def _load_schema(schema_path: Path, table: Optional[str]) -> Schema:
    try:
        schema = Schema.from_file(schema_path)
        return schema.with_table(table) if table else schema
    except SchemaError as exc:
        typer.echo(f"Schema error: {exc}", err=True)
        raise typer.Exit(code=EXIT_USAGE) from exc


@app.command()
def info() -> None:
    """
    Show effective configuration values.
    """
    settings = get_settings()
    typer.echo(
        f"DB={settings.db_user}@{settings.db_host}:{settings.db_port}/{settings.db_name} | "
        f"workers={settings.worker_count} stream_batch={settings.stream_batch_size or settings.worker_count} "
        f"buffer={settings.record_buffer_size} timeout={settings.run_timeout_seconds} "
        f"results_dir={settings.results_dir}"
    )


@app.command()
def ingest(
    file: Path = typer.Option(..., "--file", "-f", exists=True, dir_okay=False, help="JSON or XML input file."),
    schema_path: Path = typer.Option(
        ..., "--schema", "-s", exists=True, dir_okay=False, help="Schema file (table + column mapping)."
    ),
    table: Optional[str] = typer.Option(None, "--table", "-t", help="Override the schema's target table."),
    workers: Optional[int] = typer.Option(None, "--workers", "-w", min=1, help="Worker count (default from settings)."),
    mode: str = typer.Option("bulk", "--mode", "-m", help=f"Dispatch mode: {', '.join(MODES)}."),
    batch_size: Optional[int] = typer.Option(
        None, "--batch-size", "-b", min=1, help="Streaming batch threshold (default: worker count)."
    ),
    timeout: Optional[float] = typer.Option(None, "--timeout", help="Run deadline in seconds (positive)."),
    move_to: Optional[Path] = typer.Option(
        None, "--move-to", help="Move the input file here after a successful run."
    ),
    json_logs: bool = typer.Option(False, "--json-logs", help="Emit logs as JSON lines."),
    persist: bool = typer.Option(True, "--persist/--no-persist", help="Write the run summary to disk."),
    results_dir: Optional[Path] = typer.Option(None, "--results-dir", help="Directory for run summaries."),
) -> None:
    """
    Ingest one file: every record lands, or none does.
    """
    settings = get_settings()
    configure_logging(level=settings.log_level, json_logs=json_logs or settings.log_json)

    if mode not in MODES:
        raise typer.BadParameter(f"expected one of {', '.join(MODES)}", param_hint="--mode")
    if timeout is not None and timeout <= 0:
        raise typer.BadParameter("must be a positive number of seconds", param_hint="--timeout")
    schema = _load_schema(schema_path, table)
    worker_count = workers or settings.worker_count

    if mode == "bulk":
        try:
            records = load_records(file, schema)
        except SourceError as exc:
            typer.echo(f"Source error: {exc}", err=True)
            raise typer.Exit(code=EXIT_FAILED_MAPPING) from exc
    else:
        records = stream_records(file, schema, buffer_size=settings.record_buffer_size)

    typer.echo(f"Ingesting '{file}' into {schema.table} (mode={mode}, workers={worker_count}).")
    result = run_ingestion(
        records,
        schema,
        _build_store(worker_count),
        workers=worker_count,
        mode=mode,
        stream_batch_size=batch_size,
        timeout_seconds=timeout,
        persist=persist,
        results_dir=results_dir,
    )
    print_run_result(result)

    destination = move_to or (Path(settings.file_destination) if settings.file_destination else None)
    if result.success and destination is not None:
        try:
            move_input_file(file, destination)
        except OSError as exc:
            typer.echo(f"Data committed, but the input file could not be moved: {exc}", err=True)

    if result.outcome is RunOutcome.FAILED_FINALIZATION:
        typer.echo(
            "FINALIZATION FAILED: some transactions may be committed. Inspect the target table.",
            err=True,
        )
    raise typer.Exit(code=_EXIT_CODES[result.outcome])


@app.command()
def preview(
    file: Path = typer.Option(..., "--file", "-f", exists=True, dir_okay=False, help="JSON or XML input file."),
    schema_path: Path = typer.Option(
        ..., "--schema", "-s", exists=True, dir_okay=False, help="Schema file (table + column mapping)."
    ),
    limit: int = typer.Option(5, "--limit", "-n", min=1, help="Number of records to flatten."),
) -> None:
    """
    Flatten the first records of a file and print the rows they would insert.
    """
    schema = _load_schema(schema_path, None)
    flattener = Flattener(schema)
    try:
        records = list(itertools.islice(iter_records(file, schema), limit))
    except SourceError as exc:
        typer.echo(f"Source error: {exc}", err=True)
        raise typer.Exit(code=EXIT_FAILED_MAPPING) from exc

    preview_rows = [
        {"record": index, "rows": flattener.flatten(record)} for index, record in enumerate(records)
    ]
    typer.echo(json.dumps(preview_rows, indent=2, default=str))


def main() -> None:
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)


if __name__ == "__main__":
    main()
