"""Logging infrastructure for tasklane.

Components receive a Logger instance explicitly rather than writing to the
console directly, which keeps them testable and lets the CLI decide on
verbosity.
"""

from __future__ import annotations

import enum
from abc import ABC, abstractmethod
from typing import Any


class LogLevel(enum.Enum):
    """Log verbosity levels for tasklane diagnostic messages.

    Lower numeric values represent higher severity / less verbosity.
    """

    FATAL = 0  # Only unrecoverable errors (malformed recipes, dependency cycles)
    ERROR = 1  # Fatal errors plus task execution failures
    WARN = 2  # Errors plus degraded behaviour (unreadable cache entries etc.)
    INFO = 3  # Warnings plus normal execution progress (default)
    DEBUG = 4  # Info plus fingerprints, cache decisions, resolved paths
    TRACE = 5  # Debug plus fine-grained scheduling and watch events


class Logger(ABC):
    """Abstract logger used throughout tasklane."""

    @abstractmethod
    def log(self, level: LogLevel = LogLevel.INFO, *args: Any, **kwargs: Any) -> None:
        """Log a message at the given level."""
        ...

    @abstractmethod
    def push_level(self, level: LogLevel) -> None:
        """Temporarily change the active level."""
        ...

    @abstractmethod
    def pop_level(self) -> LogLevel:
        """Restore the previously active level."""
        ...

    def fatal(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.FATAL, *args, **kwargs)

    def error(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.ERROR, *args, **kwargs)

    def warn(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.WARN, *args, **kwargs)

    def info(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.INFO, *args, **kwargs)

    def debug(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.DEBUG, *args, **kwargs)

    def trace(self, *args: Any, **kwargs: Any) -> None:
        self.log(LogLevel.TRACE, *args, **kwargs)


def parse_log_level(value: str) -> LogLevel:
    """Parse a log level name (case-insensitive).

    Raises:
        ValueError: If the name does not match a LogLevel member
    """
    try:
        return LogLevel[value.strip().upper()]
    except KeyError:
        valid = ", ".join(level.name.lower() for level in LogLevel)
        raise ValueError(f"Invalid log level '{value}'. Valid levels: {valid}") from None
