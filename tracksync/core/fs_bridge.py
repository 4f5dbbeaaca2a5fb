"""
Filesystem access used by the scanner, extractor and watchers.

Every call may be slow (network mounts, large files) and may fail; callers
treat failures per file. Timeouts are the implementation's concern.
"""

from __future__ import annotations

import logging
import os
from collections.abc import Iterable, Iterator
from dataclasses import dataclass
from typing import Protocol

from tracksync.core.audio_scanner import AudioScanner

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class FileStat:
    """Size and modification time of a file."""

    size: int
    modified_time: float  # epoch seconds


class FilesystemBridge(Protocol):
    """Directory listing, stat and buffered reads."""

    def enumerate(
        self,
        root: str,
        recursive: bool,
        extensions: Iterable[str],
        exclude: Iterable[str],
    ) -> Iterator[str]:
        """Yield accepted audio paths under root; raises OSError if root is inaccessible."""
        ...

    def stat(self, path: str) -> FileStat:
        """Raises FileNotFoundError when the file is gone."""
        ...

    def read_bytes(self, path: str) -> bytes:
        """Raises OSError when the file cannot be read."""
        ...


class LocalFilesystem:
    """FilesystemBridge backed by the local disk."""

    def __init__(self, follow_symlinks: bool = False):
        self.follow_symlinks = follow_symlinks

    def enumerate(
        self,
        root: str,
        recursive: bool,
        extensions: Iterable[str],
        exclude: Iterable[str],
    ) -> Iterator[str]:
        scanner = AudioScanner(
            extensions=extensions,
            exclude_patterns=exclude,
            recursive=recursive,
            follow_symlinks=self.follow_symlinks,
        )
        return scanner.discover(root)

    def stat(self, path: str) -> FileStat:
        st = os.stat(path)
        return FileStat(size=st.st_size, modified_time=st.st_mtime)

    def read_bytes(self, path: str) -> bytes:
        with open(path, "rb") as fh:
            return fh.read()
