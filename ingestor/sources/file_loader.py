"""
File record sources: JSON and XML documents of nested records.

Supported layouts
-----------------
JSON
    A top-level array of record objects, an object holding the record list
    under `schema.records_key`, a single record object, or several of these
    concatenated (NDJSON / back-to-back objects).
XML
    Every element named `schema.record_tag` is one record. Attributes and leaf
    children become scalar fields (blank text -> None); a leaf tag that repeats
    becomes a list of scalars. Children that have children or attributes
    become nested collections, one record per child.

JSON is read with ijson and XML with `iterparse`, so neither holds more than
the current record in memory. `load_records` materializes the records (bulk
mode); `stream_records` hands them over lazily through a RecordStream
(streaming mode).
"""

from __future__ import annotations

import codecs
import shutil
import xml.etree.ElementTree as ET
from enum import Enum
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple

import ijson

from ingestor.domain.errors import SourceError
from ingestor.domain.models import Record, Schema
from ingestor.sources.record_stream import RecordStream
from ingestor.utils.logging import get_logger

log = get_logger(__name__)

_SNIFF_BYTES = 4096


class FileType(str, Enum):
    JSON = "json"
    XML = "xml"


_SUFFIXES = {
    ".json": FileType.JSON,
    ".ndjson": FileType.JSON,
    ".jsonl": FileType.JSON,
    ".xml": FileType.XML,
}


def detect_file_type(path: Path | str) -> FileType:
    """Detect the document type by suffix, falling back to the first non-blank character."""
    file_path = Path(path)
    by_suffix = _SUFFIXES.get(file_path.suffix.lower())
    if by_suffix is not None:
        return by_suffix

    try:
        with file_path.open("r", encoding="utf-8-sig") as f:
            head = f.read(_SNIFF_BYTES).lstrip()
    except (OSError, UnicodeDecodeError) as exc:
        raise SourceError(f"Cannot read {file_path}: {exc}") from exc

    if head[:1] in ("{", "["):
        return FileType.JSON
    if head[:1] == "<":
        return FileType.XML
    raise SourceError(f"Unsupported file type: {file_path}")


# --------------------------------------------------------------------------- #
# JSON
# --------------------------------------------------------------------------- #
_NESTING = {"start_map": 1, "start_array": 1, "end_map": -1, "end_array": -1}
_CLOSERS = ("end_map", "end_array")


def iter_json_records(path: Path | str, records_key: Optional[str] = "Records") -> Iterator[Record]:
    """
    Stream the records of a JSON document with ijson.

    Only the record being assembled is held in memory, so the first record is
    handed over before the rest of the file has been read.
    """
    file_path = Path(path)
    emitted = 0
    try:
        with file_path.open("rb") as f:
            if f.read(len(codecs.BOM_UTF8)) != codecs.BOM_UTF8:
                f.seek(0)
            events = ijson.parse(f, multiple_values=True, use_float=True)
            for record in _json_records(events, records_key):
                if not isinstance(record, dict):
                    raise SourceError(
                        f"Record {emitted} in {file_path} is {type(record).__name__}, expected an object"
                    )
                emitted += 1
                yield record
    except (ijson.JSONError, UnicodeDecodeError) as exc:
        raise SourceError(f"Malformed JSON in {file_path} after {emitted} records: {exc}") from exc
    except OSError as exc:
        raise SourceError(f"Cannot read {file_path}: {exc}") from exc

    log.debug("JSON document consumed", extra={"file": str(file_path), "records": emitted})


def _json_records(events: Iterable[Tuple[str, str, Any]], records_key: Optional[str]) -> Iterator[Any]:
    """
    Assemble records from ijson parse events.

    Every top-level value is a record, except an array (its items are the
    records) and an object whose `records_key` member is an array (that
    array's items are the records; the object's other members are ignored).
    """
    depth = 0
    records_depth: Optional[int] = None
    record: Optional[ijson.ObjectBuilder] = None
    wrapper: Optional[ijson.ObjectBuilder] = None
    wrapper_key: Optional[str] = None

    for _prefix, event, value in events:
        if record is not None:
            record.event(event, value)
            depth += _NESTING.get(event, 0)
            if depth == records_depth:
                yield record.value
                record = None
            continue

        if wrapper is not None:
            wrapper.event(event, value)
            depth += _NESTING.get(event, 0)
            if depth == 0:
                # No record list inside: the object is itself a record.
                yield wrapper.value
                wrapper = None
            elif depth == 1 and event == "map_key":
                wrapper_key = value
            elif depth == 2 and event == "start_array" and wrapper_key == records_key:
                wrapper = None
                records_depth = 2
            continue

        if depth == 0:
            if event == "start_array":
                records_depth = depth = 1
                continue
            if event == "start_map" and records_key:
                wrapper = ijson.ObjectBuilder()
                wrapper.event(event, value)
                wrapper_key = None
                depth = 1
                continue
            records_depth = 0

        if depth == records_depth and event not in _CLOSERS:
            record = ijson.ObjectBuilder()
            record.event(event, value)
            depth += _NESTING.get(event, 0)
            if depth == records_depth:
                yield record.value
                record = None
            continue

        depth += _NESTING.get(event, 0)
        if records_depth is not None and depth < records_depth:
            records_depth = None


# --------------------------------------------------------------------------- #
# XML
# --------------------------------------------------------------------------- #
def _local_name(tag: str) -> str:
    return tag.rsplit("}", 1)[-1]


def _scalar(text: Optional[str]) -> Optional[str]:
    if text is None:
        return None
    stripped = text.strip()
    return stripped or None


def element_to_record(elem: ET.Element) -> Dict[str, Any]:
    """
    Convert one element into a nested record.

    Children are grouped by tag. A group in which any child has sub-elements
    or attributes becomes a nested collection (one record per child). A group
    of plain leaves becomes a scalar, or a list of scalars when the tag
    repeats. A childless element keeps its own text under its own tag name.
    """
    record: Dict[str, Any] = {_local_name(k): v for k, v in elem.attrib.items()}
    groups: Dict[str, List[ET.Element]] = {}
    for child in elem:
        groups.setdefault(_local_name(child.tag), []).append(child)

    for name, children in groups.items():
        if any(len(child) or child.attrib for child in children):
            record[name] = [element_to_record(child) for child in children]
        elif len(children) == 1:
            record[name] = _scalar(children[0].text)
        else:
            record[name] = [_scalar(child.text) for child in children]

    text = _scalar(elem.text)
    if not len(elem) and text is not None:
        record.setdefault(_local_name(elem.tag), text)
    return record


def iter_xml_records(path: Path | str, record_tag: str = "Record") -> Iterator[Record]:
    file_path = Path(path)
    emitted = 0
    depth = 0
    try:
        for event, elem in ET.iterparse(str(file_path), events=("start", "end")):
            if _local_name(elem.tag) != record_tag:
                continue
            if event == "start":
                depth += 1
                continue
            depth -= 1
            # A record tag nested inside a record belongs to its parent.
            if depth > 0:
                continue
            emitted += 1
            yield element_to_record(elem)
            elem.clear()
    except ET.ParseError as exc:
        raise SourceError(f"Malformed XML in {file_path}: {exc}") from exc
    except OSError as exc:
        raise SourceError(f"Cannot read {file_path}: {exc}") from exc

    log.debug("XML document consumed", extra={"file": str(file_path), "records": emitted})


# --------------------------------------------------------------------------- #
# Entry points
# --------------------------------------------------------------------------- #
def iter_records(path: Path | str, schema: Schema) -> Iterator[Record]:
    """Yield the records of `path` in document order."""
    file_type = detect_file_type(path)
    log.info("Reading records", extra={"file": str(path), "file_type": file_type.value})
    if file_type is FileType.JSON:
        return iter_json_records(path, schema.records_key)
    return iter_xml_records(path, schema.record_tag)


def load_records(path: Path | str, schema: Schema) -> List[Record]:
    """Read every record of `path` into memory."""
    records = list(iter_records(path, schema))
    log.info("Records loaded", extra={"file": str(path), "records": len(records)})
    return records


def stream_records(path: Path | str, schema: Schema, buffer_size: int = 1000) -> RecordStream:
    """Produce the records of `path` lazily on a background thread."""
    return RecordStream(
        lambda: iter_records(path, schema),
        buffer_size=buffer_size,
        name=f"record-producer:{Path(path).name}",
    )


def move_input_file(path: Path | str, destination: Path | str) -> Path:
    """Move an ingested file into `destination`, creating the directory if needed."""
    source = Path(path)
    target_dir = Path(destination)
    target_dir.mkdir(parents=True, exist_ok=True)
    target = target_dir / source.name
    shutil.move(str(source), str(target))
    log.info("Input file moved", extra={"file": str(source), "destination": str(target)})
    return target


__all__ = [
    "FileType",
    "detect_file_type",
    "element_to_record",
    "iter_json_records",
    "iter_records",
    "iter_xml_records",
    "load_records",
    "move_input_file",
    "stream_records",
]
