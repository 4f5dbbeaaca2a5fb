"""
Audio file discovery under a root directory.

Supports common audio formats: MP3, FLAC, WAV, OGG, M4A, AAC, WMA, ALAC, OPUS, AIFF
"""

import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_EXTENSIONS: tuple[str, ...] = (
    "mp3",
    "flac",
    "wav",
    "ogg",
    "m4a",
    "aac",
    "wma",
    "alac",
    "opus",
    "aiff",
)


def normalize_extensions(extensions: Iterable[str]) -> set[str]:
    """Lower-case extensions and give each a leading dot ("MP3" -> ".mp3")."""
    return {"." + ext.lower().lstrip(".") for ext in extensions if ext}


def is_excluded(name: str, exclude_patterns: Iterable[str]) -> bool:
    """
    Check a single path segment against exclude patterns.

    Patterns are plain case-insensitive substrings, not globs.
    """
    lowered = name.lower()
    return any(pattern and pattern.lower() in lowered for pattern in exclude_patterns)


class AudioScanner:
    """Scans directories for audio files with accepted formats."""

    def __init__(
        self,
        extensions: Iterable[str] = DEFAULT_EXTENSIONS,
        exclude_patterns: Iterable[str] = (),
        recursive: bool = True,
        follow_symlinks: bool = False,
    ):
        """
        Initialize audio scanner.

        Args:
            extensions: Accepted extensions, with or without leading dot
            exclude_patterns: Substrings that exclude a file or directory name
            recursive: Whether to descend into subdirectories
            follow_symlinks: Whether to follow symbolic links during traversal
        """
        self.extensions = normalize_extensions(extensions)
        self.exclude_patterns = list(exclude_patterns)
        self.recursive = recursive
        self.follow_symlinks = follow_symlinks

    def discover(self, directory: Path | str) -> Iterator[str]:
        """
        Lazily yield absolute paths of accepted audio files under directory.

        Errors are raised on first iteration, not on call.

        Raises:
            FileNotFoundError: If directory does not exist
            NotADirectoryError: If directory is a file
            PermissionError: If directory cannot be read
        """
        root = Path(directory)
        if not root.exists():
            raise FileNotFoundError(f"Directory does not exist: {root}")
        if not root.is_dir():
            raise NotADirectoryError(f"Path is not a directory: {root}")

        logger.debug(f"Scanning directory: {root}")
        yield from self._walk(os.path.abspath(root), top_level=True)

    def _walk(self, directory: str, top_level: bool = False) -> Iterator[str]:
        try:
            entries = sorted(os.scandir(directory), key=lambda e: e.name)
        except PermissionError as e:
            if top_level:
                raise
            # An unreadable subdirectory does not sink the whole root
            logger.warning(f"Permission denied accessing: {e.filename}")
            return

        for entry in entries:
            if is_excluded(entry.name, self.exclude_patterns):
                continue

            if entry.is_symlink() and not self.follow_symlinks:
                logger.debug(f"Skipping symlink: {entry.path}")
                continue

            if entry.is_dir(follow_symlinks=self.follow_symlinks):
                if self.recursive:
                    yield from self._walk(entry.path)
            elif entry.is_file(follow_symlinks=self.follow_symlinks):
                if self._is_supported_format(entry.name):
                    yield entry.path

    def _is_supported_format(self, file_name: str) -> bool:
        """
        Check if file has an accepted audio format extension.

        Args:
            file_name: File name or path to check

        Returns:
            True if file extension is accepted
        """
        return os.path.splitext(file_name)[1].lower() in self.extensions
