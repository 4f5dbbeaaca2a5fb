"""
Exception hierarchy for tracksync.

Filesystem failures use the builtin ``OSError`` family (``FileNotFoundError``,
``PermissionError``, ...); the classes here cover what the builtins don't.
"""

from pathlib import Path


class TrackSyncError(Exception):
    """Base class for all tracksync errors."""


class ExtractionError(TrackSyncError):
    """Metadata could not be parsed from a single file."""

    def __init__(self, path: Path | str, message: str):
        super().__init__(message)
        self.path = str(path)


class CatalogError(TrackSyncError):
    """The catalog repository rejected an operation."""


class SettingsStoreError(TrackSyncError):
    """Scan settings could not be persisted."""


class ScanInProgressError(TrackSyncError):
    """A full scan was requested while another one is still running."""
