from __future__ import annotations

from ingestor.domain.models import Schema
from ingestor.engine.flattener import (
    DropCounter,
    Flattener,
    expand,
    expand_paths,
    is_nested_collection,
    split_fields,
)

SCANS_IN_RECORD = 3


def _record(scans: int) -> dict:
    return {
        "user": "u1",
        "dateCreated": 1700000000000,
        "status": "received",
        "fnumbers": [{"fNumber": f"F{i}", "scanTime": f"0{i}:00"} for i in range(scans)],
    }


def test_is_nested_collection_classifies_values() -> None:
    assert is_nested_collection({"a": 1})
    assert is_nested_collection([{"a": 1}, {"b": 2}])
    assert is_nested_collection([])
    assert not is_nested_collection([1, 2, 3])
    assert not is_nested_collection([{"a": 1}, 2])
    assert not is_nested_collection("text")
    assert not is_nested_collection(None)


def test_split_fields_separates_base_and_nested() -> None:
    base, nested = split_fields({"a": 1, "tags": ["x"], "child": {"b": 2}, "items": [{"c": 3}]})
    assert base == {"a": 1, "tags": ["x"]}
    assert nested == [("child", [{"b": 2}]), ("items", [{"c": 3}])]


def test_scalar_only_record_yields_one_row(flat_schema: Schema) -> None:
    rows = Flattener(flat_schema).flatten({"id": 1, "name": "Ada", "email": "ada@example.com"})
    assert rows == [{"id": 1, "name": "Ada", "email": "ada@example.com"}]


def test_single_collection_yields_one_row_per_element(scan_schema: Schema) -> None:
    rows = Flattener(scan_schema).flatten(_record(SCANS_IN_RECORD))

    assert len(rows) == SCANS_IN_RECORD
    for i, row in enumerate(rows):
        assert row == {
            "user": "u1",
            "dt_created": 1700000000000,
            "status": "received",
            "fnumber": f"F{i}",
            "scan_time": f"0{i}:00",
        }


def test_empty_collection_yields_no_rows(scan_schema: Schema) -> None:
    assert Flattener(scan_schema).flatten(_record(0)) == []


def test_mixed_records_total_rows(scan_schema: Schema) -> None:
    flattener = Flattener(scan_schema)
    records = [
        {"user": "a", "status": "ok"},
        _record(3),
        {"user": "c", "status": "ok"},
    ]
    assert sum(len(flattener.flatten(r)) for r in records) == 5


def test_sibling_collections_are_concatenated_not_multiplied() -> None:
    rows = expand({"id": 1, "left": [{"l": 1}, {"l": 2}], "right": [{"r": 1}, {"r": 2}, {"r": 3}]})
    assert len(rows) == 5
    assert rows[:2] == [{"id": 1, "l": 1}, {"id": 1, "l": 2}]
    assert rows[2:] == [{"id": 1, "r": 1}, {"id": 1, "r": 2}, {"id": 1, "r": 3}]


def test_nested_collections_expand_recursively() -> None:
    record = {
        "order": 7,
        "lines": [
            {"sku": "A", "serials": [{"serial": "s1"}, {"serial": "s2"}]},
            {"sku": "B"},
        ],
    }
    assert expand(record) == [
        {"order": 7, "sku": "A", "serial": "s1"},
        {"order": 7, "sku": "A", "serial": "s2"},
        {"order": 7, "sku": "B"},
    ]


def test_single_mapping_counts_as_one_element() -> None:
    assert expand({"id": 1, "meta": {"source": "scanner"}}) == [{"id": 1, "source": "scanner"}]


def test_element_fields_override_base_fields() -> None:
    rows = expand({"status": "base", "items": [{"status": "element"}]})
    assert rows == [{"status": "element"}]


def test_unknown_keys_never_reach_rows_and_are_reported(scan_schema: Schema) -> None:
    drops = DropCounter()
    flattener = Flattener(scan_schema, on_drop=drops.add)
    record = {"user": "u1", "status": "ok", "secret": "x", "fnumbers": [{"fNumber": "F1", "junk": 1}]}

    rows = flattener.flatten(record)

    assert rows == [{"user": "u1", "status": "ok", "fnumber": "F1"}]
    assert set(rows[0]) <= scan_schema.allowed_columns
    assert drops.snapshot() == {"secret": 1, "fnumbers.junk": 1}


def test_rows_follow_schema_column_order(scan_schema: Schema) -> None:
    record = {"scanTime": "t", "status": "s", "user": "u", "fNumber": "f", "dateCreated": 1}
    rows = Flattener(scan_schema).flatten(record)
    assert list(rows[0]) == list(scan_schema.column_names)


def test_list_of_scalars_is_a_plain_value() -> None:
    schema = Schema.model_validate({"table": "t", "columns": ["id", "tags"]})
    assert Flattener(schema).flatten({"id": 1, "tags": ["a", "b"]}) == [{"id": 1, "tags": ["a", "b"]}]


def test_expand_paths_keys_nested_fields_by_collection() -> None:
    rows = expand_paths({"id": 1, "items": [{"id": 10, "parts": [{"id": 100}]}]})
    assert rows == [{"id": 1, "items.id": 10, "items.parts.id": 100}]


def test_dotted_paths_separate_colliding_keys() -> None:
    schema = Schema.model_validate(
        {
            "table": "order_items",
            "columns": [{"field": "id", "column": "order_id"}, {"field": "items.id", "column": "item_id"}],
        }
    )
    rows = Flattener(schema).flatten({"id": 1, "items": [{"id": 10}, {"id": 11}]})
    assert rows == [{"order_id": 1, "item_id": 10}, {"order_id": 1, "item_id": 11}]


def test_bare_name_still_prefers_deepest_occurrence() -> None:
    schema = Schema.model_validate({"table": "t", "columns": ["id"]})
    assert Flattener(schema).flatten({"id": 1, "items": [{"id": 10}]}) == [{"id": 10}]


def test_dropped_base_key_counted_once_per_record(scan_schema: Schema) -> None:
    drops = DropCounter()
    flattener = Flattener(scan_schema, on_drop=drops.add)

    rows = flattener.flatten({**_record(SCANS_IN_RECORD), "secret": "x"})

    assert len(rows) == SCANS_IN_RECORD
    assert drops.snapshot() == {"secret": 1}
