from __future__ import annotations

import pytest

from ingestor.engine.sql_builder import (
    build_insert,
    build_inserts,
    group_by_columns,
    quote_ident,
    quote_table,
)

INJECTION = "x'); DROP TABLE users; --"


def test_build_insert_multi_row_statement() -> None:
    rows = [{"id": 1, "name": "Ada"}, {"id": 2, "name": "Grace"}]
    statement = build_insert("people", rows)

    assert statement.sql == 'INSERT INTO "people" ("id", "name") VALUES (%s, %s), (%s, %s)'
    assert statement.params == (1, "Ada", 2, "Grace")
    assert statement.columns == ("id", "name")
    assert statement.row_count == 2


def test_first_row_fixes_column_order() -> None:
    statement = build_insert("people", [{"name": "Ada", "id": 1}, {"id": 2, "name": "Grace"}])
    assert statement.columns == ("name", "id")
    assert statement.params == ("Ada", 1, "Grace", 2)


def test_values_are_bound_never_interpolated() -> None:
    statement = build_insert("people", [{"name": INJECTION}])
    assert INJECTION not in statement.sql
    assert statement.params == (INJECTION,)
    assert statement.sql.count("%s") == len(statement.params)


@pytest.mark.parametrize("bad", ["na me", 'id"; DROP', "1col", ""])
def test_invalid_identifiers_rejected(bad: str) -> None:
    with pytest.raises(ValueError):
        quote_ident(bad)


def test_schema_qualified_table() -> None:
    assert quote_table("audit.events") == '"audit"."events"'


def test_mismatched_rows_rejected() -> None:
    with pytest.raises(ValueError, match="Row 1"):
        build_insert("people", [{"id": 1}, {"id": 2, "name": "x"}])


def test_empty_input_rejected() -> None:
    with pytest.raises(ValueError):
        build_insert("people", [])
    with pytest.raises(ValueError):
        build_insert("people", [{}])


def test_group_by_columns_keeps_first_seen_order_and_skips_empty() -> None:
    rows = [{"a": 1}, {}, {"a": 2, "b": 3}, {"a": 4}]
    assert group_by_columns(rows) == [[{"a": 1}, {"a": 4}], [{"a": 2, "b": 3}]]


def test_build_inserts_chunks_under_param_limit() -> None:
    rows = [{"a": i, "b": i, "c": i} for i in range(10)]
    statements = list(build_inserts("t", rows, max_params=9))

    assert [s.row_count for s in statements] == [3, 3, 3, 1]
    assert all(len(s.params) <= 9 for s in statements)
    assert [p for s in statements for p in s.params[::3]] == list(range(10))


def test_build_inserts_rejects_row_wider_than_limit() -> None:
    with pytest.raises(ValueError):
        list(build_inserts("t", [{"a": 1, "b": 2}], max_params=1))
