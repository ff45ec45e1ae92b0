"""
Dynamic multi-row INSERT generation.

Statements are built from validated, double-quoted identifiers and `%s`
placeholders (psycopg paramstyle). Field values never appear in the SQL text;
they travel only in the bound parameter tuple.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Sequence, Tuple

from ingestor.domain.models import validate_sql_ident

# PostgreSQL's wire protocol caps a statement at 65535 bind parameters.
POSTGRES_MAX_PARAMS = 65535
PLACEHOLDER = "%s"


@dataclass(frozen=True)
class InsertStatement:
    sql: str
    params: Tuple[Any, ...]
    columns: Tuple[str, ...]
    row_count: int


def quote_ident(name: str) -> str:
    return f'"{validate_sql_ident(name, what="identifier")}"'


def quote_table(table: str) -> str:
    return ".".join(quote_ident(part) for part in table.split("."))


def build_insert(table: str, rows: Sequence[Mapping[str, Any]]) -> InsertStatement:
    """
    Build one parameterized INSERT for rows sharing an identical column set.

    The first row's key order fixes the column order for the whole statement.

    Raises
    ------
    ValueError
        If there are no rows, no columns, or a row's key set differs.
    """
    if not rows:
        raise ValueError("Cannot build an INSERT without rows")
    columns = tuple(rows[0].keys())
    if not columns:
        raise ValueError("Cannot build an INSERT for rows without columns")

    expected = frozenset(columns)
    for position, row in enumerate(rows):
        if frozenset(row.keys()) != expected:
            raise ValueError(
                f"Row {position} has columns {sorted(row.keys())}, expected {sorted(expected)}"
            )

    row_placeholders = "(" + ", ".join([PLACEHOLDER] * len(columns)) + ")"
    sql = (
        f"INSERT INTO {quote_table(table)} "
        f"({', '.join(quote_ident(column) for column in columns)}) "
        f"VALUES {', '.join([row_placeholders] * len(rows))}"
    )
    params = tuple(row[column] for row in rows for column in columns)
    return InsertStatement(sql=sql, params=params, columns=columns, row_count=len(rows))


def group_by_columns(rows: Sequence[Mapping[str, Any]]) -> List[List[Mapping[str, Any]]]:
    """
    Group rows by column set, preserving first-seen order. Empty rows are skipped.
    """
    groups: Dict[FrozenSet[str], List[Mapping[str, Any]]] = {}
    for row in rows:
        if not row:
            continue
        groups.setdefault(frozenset(row.keys()), []).append(row)
    return list(groups.values())


def build_inserts(
    table: str,
    rows: Sequence[Mapping[str, Any]],
    max_params: int = POSTGRES_MAX_PARAMS,
) -> Iterator[InsertStatement]:
    """
    Yield as many INSERT statements as needed for arbitrarily shaped rows.

    Rows are grouped by column set and each group is chunked so that no
    statement binds more than `max_params` values.
    """
    if max_params <= 0:
        raise ValueError("max_params must be positive")
    for group in group_by_columns(rows):
        width = len(group[0])
        if width > max_params:
            raise ValueError(f"A row with {width} columns exceeds max_params={max_params}")
        per_statement = max_params // width
        for start in range(0, len(group), per_statement):
            yield build_insert(table, group[start : start + per_statement])


__all__ = [
    "InsertStatement",
    "POSTGRES_MAX_PARAMS",
    "build_insert",
    "build_inserts",
    "group_by_columns",
    "quote_ident",
    "quote_table",
]
