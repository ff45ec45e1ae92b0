"""
Sample data tooling for the data ingestor.

Generates deterministic pseudo-random nested records (each carrying a
collection of fNumber/scanTime scans) as JSON or XML, and creates the target
table they are ingested into.
"""

from __future__ import annotations

import hashlib
import json
import random
import sys
import time
import xml.etree.ElementTree as ET
from pathlib import Path
from typing import Any, Dict, List

import psycopg
import typer

from ingestor.engine.sql_builder import quote_table
from ingestor.infrastructure.db_factory import build_dsn

app = typer.Typer(help="Generate nested sample records and prepare the target table.")

CREATE_TABLE_SQL = """
CREATE TABLE IF NOT EXISTS {table} (
    id           BIGSERIAL PRIMARY KEY,
    "user"       TEXT NOT NULL,
    dt_created   BIGINT,
    dt_submitted BIGINT,
    ast_name     TEXT,
    location     TEXT,
    status       TEXT,
    json_hash    TEXT,
    local_id     TEXT,
    filename     TEXT,
    fnumber      TEXT,
    scan_time    TEXT
)
"""


def _build_dsn(dsn_override: str | None) -> str:
    if dsn_override:
        return dsn_override
    return build_dsn()


def generate_records(count: int, scans_per_record: int, seed: int) -> List[Dict[str, Any]]:
    """Build `count` records, each with 1..scans_per_record nested scans (none when 0)."""
    rng = random.Random(seed)
    statuses = ["received", "processed", "archived"]
    locations = ["dock-1", "dock-2", "warehouse", "field"]
    base_ts = 1_700_000_000_000

    records: List[Dict[str, Any]] = []
    for i in range(count):
        created = base_ts + rng.randint(0, 86_400_000)
        record: Dict[str, Any] = {
            "user": f"user{rng.randint(1, 500):03d}",
            "dateCreated": created,
            "dateSubmitted": created + rng.randint(1_000, 600_000),
            "assetName": rng.choice([None, f"asset-{rng.randint(1, 9999)}"]),
            "location": rng.choice(locations),
            "status": rng.choice(statuses),
            "localId": f"L{i:06d}",
            "fileName": f"scan_{i:06d}.dat",
        }
        record["jsonHash"] = hashlib.sha256(json.dumps(record, sort_keys=True).encode()).hexdigest()
        if scans_per_record > 0:
            record["fnumbers"] = [
                {
                    "fNumber": f"F{rng.randint(100000, 999999)}",
                    "scanTime": f"{rng.randint(0, 23):02d}:{rng.randint(0, 59):02d}",
                }
                for _ in range(rng.randint(1, scans_per_record))
            ]
        records.append(record)
    return records


def write_json(path: Path, records: List[Dict[str, Any]]) -> None:
    with path.open("w", encoding="utf-8") as f:
        json.dump({"Records": records}, f, indent=2)


def write_xml(path: Path, records: List[Dict[str, Any]]) -> None:
    root = ET.Element("Data")
    for record in records:
        elem = ET.SubElement(root, "Record")
        for key, value in record.items():
            if key == "fnumbers":
                for scan in value:
                    scan_elem = ET.SubElement(elem, "fnumbers")
                    for scan_key, scan_value in scan.items():
                        ET.SubElement(scan_elem, scan_key).text = str(scan_value)
            else:
                ET.SubElement(elem, key).text = "" if value is None else str(value)
    ET.ElementTree(root).write(path, encoding="utf-8", xml_declaration=True)


@app.command()
def generate(
    records: int = typer.Option(1_000, "--records", "-r", min=1, help="Number of records to generate."),
    scans: int = typer.Option(3, "--scans", help="Maximum nested scans per record."),
    seed: int = typer.Option(42, "--seed", help="Deterministic RNG seed."),
    output: Path = typer.Option(
        Path("data/records.json"),
        "--output",
        "-o",
        help="Output file; the suffix (.json or .xml) selects the format.",
    ),
) -> None:
    """
    Generate nested sample records as JSON or XML.
    """
    start = time.perf_counter()
    output.parent.mkdir(parents=True, exist_ok=True)
    data = generate_records(records, scans, seed)
    if output.suffix.lower() == ".xml":
        write_xml(output, data)
    else:
        write_json(output, data)
    rows = sum(len(r["fnumbers"]) if "fnumbers" in r else 1 for r in data)
    typer.echo(
        f"Wrote {records:,} records ({rows:,} rows once flattened) -> {output} "
        f"in {time.perf_counter() - start:.2f}s"
    )


@app.command("create-table")
def create_table(
    table: str = typer.Option("sflw_recs", "--table", "-t", help="Table to create."),
    dsn: str | None = typer.Option(None, "--dsn", help="Optional DSN override for Postgres."),
    truncate: bool = typer.Option(False, "--truncate", help="Empty the table if it already exists."),
) -> None:
    """
    Create the sample target table.
    """
    qualified = quote_table(table)
    with psycopg.connect(_build_dsn(dsn)) as conn:
        with conn.cursor() as cur:
            cur.execute(CREATE_TABLE_SQL.format(table=qualified))
            if truncate:
                cur.execute(f"TRUNCATE TABLE {qualified} RESTART IDENTITY")
        conn.commit()
    typer.echo(f"Table {qualified} ready.")


if __name__ == "__main__":
    try:
        app()
    except KeyboardInterrupt:
        typer.echo("Cancelled by user.", err=True)
        sys.exit(130)
