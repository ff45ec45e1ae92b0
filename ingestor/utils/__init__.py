"""
Utilities package for the data ingestor.

Exports shared helpers for logging and profiling. Keep this package
lightweight and free of domain-specific logic.
"""

from ingestor.utils.logging import configure_logging, get_logger
from ingestor.utils.profiler import ProfileStats, profile_block

__all__ = [
    "configure_logging",
    "get_logger",
    "ProfileStats",
    "profile_block",
]
