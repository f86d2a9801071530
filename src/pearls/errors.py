"""Error types raised by the pearls storage layers.

The orchestrator re-raises these with the operation and pearl ID prefixed,
so callers can match on type without losing context.
"""

from __future__ import annotations


class PearlsError(Exception):
    """Base class for every error raised by pearls."""


class NotFoundError(PearlsError):
    """A pearl, content file, or config path is absent."""


class AlreadyExistsError(PearlsError):
    """Create was called with an ID that is already in the catalog."""


class ValidationError(PearlsError, ValueError):
    """Malformed ID, type, status, glob, or scope."""


class StorageError(PearlsError):
    """Filesystem or SQLite failure."""


class LogParseError(StorageError):
    """A line of pearls.jsonl could not be parsed."""

    def __init__(self, message: str, line: int = 0) -> None:
        super().__init__(message)
        self.line = line


class EmbedError(PearlsError):
    """The embedding model failed. Never aborts a mutation."""


class ConsistencyError(PearlsError):
    """Drift between the log, the index, and the content tree (doctor only)."""


class ConfigError(PearlsError):
    """config.toml is missing or does not parse."""
