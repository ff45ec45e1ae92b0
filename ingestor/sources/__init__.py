"""
Record sources: file loaders (JSON/XML) and the lazy producer-backed stream.
"""

from ingestor.sources.file_loader import (
    FileType,
    detect_file_type,
    iter_records,
    load_records,
    move_input_file,
    stream_records,
)
from ingestor.sources.record_stream import RecordStream

__all__ = [
    "FileType",
    "RecordStream",
    "detect_file_type",
    "iter_records",
    "load_records",
    "move_input_file",
    "stream_records",
]
