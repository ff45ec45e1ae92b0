"""
Schema-driven flattening of nested records into relational rows.

A record's top-level values are either scalars ("base" fields) or nested
collections (a mapping, or a list whose items are all mappings). Each nested
collection is expanded independently: every element yields one row made of the
base fields plus that element's fields, and rows from sibling collections are
concatenated rather than cross-multiplied. Elements that carry their own nested
collections are expanded first, recursively.

Rows are filtered through the schema last: known fields are renamed to their
column and emitted in schema column order, unknown keys are dropped and
reported (once per record, by field path) to an optional callback. Schema
fields may be dotted paths (`items.id`) to tell apart keys that share a name
across nesting levels.

Usage:
    flattener = Flattener(schema, on_drop=drops.add)
    rows = flattener.flatten({"user": "u1", "fnumbers": [{"fNumber": "F1"}]})
"""

from __future__ import annotations

import threading
from collections import Counter
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional, Tuple

from ingestor.domain.models import FlattenedRow, Record, Schema
from ingestor.utils.logging import get_logger

log = get_logger(__name__)

DropCallback = Callable[[Iterable[str]], None]


def is_nested_collection(value: Any) -> bool:
    """
    True for a mapping or a list/tuple of mappings (empty lists included).
    """
    if isinstance(value, Mapping):
        return True
    if isinstance(value, (list, tuple)):
        return all(isinstance(item, Mapping) for item in value)
    return False


def split_fields(record: Record) -> Tuple[Dict[str, Any], List[Tuple[str, List[Mapping[str, Any]]]]]:
    """
    Partition a record into its base fields and its nested collections.
    """
    base: Dict[str, Any] = {}
    nested: List[Tuple[str, List[Mapping[str, Any]]]] = []
    for key, value in record.items():
        if not is_nested_collection(value):
            base[key] = value
        elif isinstance(value, Mapping):
            nested.append((key, [value]))
        else:
            nested.append((key, list(value)))
    return base, nested


def expand_paths(record: Record) -> List[Dict[str, Any]]:
    """
    Expand a record into unfiltered flat rows keyed by field path.

    A base field keeps its own name; a field reached through collections is
    keyed by the dotted chain of collection names (`items.id`). Base fields
    come first in every row, deeper fields after them.
    """
    base, nested = split_fields(record)
    if not nested:
        return [dict(base)]

    rows: List[Dict[str, Any]] = []
    for name, elements in nested:
        for element in elements:
            for element_row in expand_paths(element):
                merged = dict(base)
                merged.update((f"{name}.{path}", value) for path, value in element_row.items())
                rows.append(merged)
    return rows


def leaf_name(path: str) -> str:
    return path.rsplit(".", 1)[-1]


def expand(record: Record) -> List[Dict[str, Any]]:
    """
    Expand a record into unfiltered flat rows keyed by bare field name.

    On a name collision the deeper field wins.
    """
    rows: List[Dict[str, Any]] = []
    for raw in expand_paths(record):
        row: Dict[str, Any] = {}
        for path, value in raw.items():
            row[leaf_name(path)] = value
        rows.append(row)
    return rows


class DropCounter:
    """Thread-safe tally of record keys discarded by schema filtering."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._counts: Counter[str] = Counter()

    def add(self, keys: Iterable[str]) -> None:
        with self._lock:
            self._counts.update(keys)

    def snapshot(self) -> Dict[str, int]:
        with self._lock:
            return dict(self._counts)


class Flattener:
    """
    Turns one nested record into zero or more schema-filtered rows.

    Schema fields are either bare names or dotted paths. A dotted path
    (`items.id`) matches exactly one position in the record. A bare name
    matches that name at any depth, the deepest occurrence winning, except
    where the occurrence is already claimed by a dotted path.
    """

    def __init__(self, schema: Schema, on_drop: Optional[DropCallback] = None) -> None:
        self.schema = schema
        self._mappings = tuple((m.field, m.column) for m in schema.columns)
        self._paths = frozenset(field for field, _ in self._mappings if "." in field)
        self._names = frozenset(field for field, _ in self._mappings if "." not in field)
        self._on_drop = on_drop

    def flatten(self, record: Record) -> List[FlattenedRow]:
        rows: List[FlattenedRow] = []
        dropped: Dict[str, None] = {}
        for raw in expand_paths(record):
            row, row_dropped = self._project(raw)
            rows.append(row)
            dropped.update(dict.fromkeys(row_dropped))
        if not rows:
            log.debug("Record produced no rows (empty nested collections)")
        if dropped:
            log.debug("Dropping keys absent from schema", extra={"dropped": list(dropped)})
            if self._on_drop is not None:
                self._on_drop(list(dropped))
        return rows

    def _project(self, raw: Mapping[str, Any]) -> Tuple[FlattenedRow, List[str]]:
        by_name: Dict[str, Any] = {}
        dropped: List[str] = []
        for path, value in raw.items():
            if path in self._paths:
                continue
            name = leaf_name(path)
            if name in self._names:
                by_name[name] = value
            else:
                dropped.append(path)

        row: FlattenedRow = {}
        for field, column in self._mappings:
            source = raw if "." in field else by_name
            if field in source:
                row[column] = source[field]
        return row, dropped


__all__ = [
    "DropCounter",
    "Flattener",
    "expand",
    "expand_paths",
    "is_nested_collection",
    "leaf_name",
    "split_fields",
]
