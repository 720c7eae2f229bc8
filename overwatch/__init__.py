"""Overwatch: filesystem event reactor.

Watches a directory and, for each event whose path matches the configured
regex, runs an ordered chain of reactors (timestamp, shell file operations,
SQL insert) that share a per-event context.
"""

from overwatch.errors import (
    ConfigurationError,
    ExecutionFailure,
    OverwatchError,
    SqlFailure,
    UnknownReactorKind,
    UnsupportedArchiveType,
)
from overwatch.events import IoEvent

__version__ = "1.0.0"

__all__ = [
    "ConfigurationError",
    "ExecutionFailure",
    "IoEvent",
    "OverwatchError",
    "SqlFailure",
    "UnknownReactorKind",
    "UnsupportedArchiveType",
]
