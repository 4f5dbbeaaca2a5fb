"""
Track record stored in the catalog.

A track's id is derived from its absolute path only, so it stays stable across
rescans and changes only when the file moves.
"""

from __future__ import annotations

import hashlib
import os
import re
from dataclasses import asdict, dataclass, fields
from pathlib import Path
from typing import Any

TRACK_ID_PREFIX = "local_"
UNKNOWN_ARTIST = "Unknown Artist"
UNKNOWN_ALBUM = "Unknown Album"

# Tried in order against the file stem; the first capture group is the title.
_TITLE_PATTERNS = [
    re.compile(r"^\d+\s*[-.\s]\s*(.+)$"),  # "01 - Title", "01. Title", "01 Title"
    re.compile(r"^(.+?)\s*-\s*.+$"),  # "Title - Artist"
    re.compile(r"^(.+?)_\d+$"),  # "Title_01"
]


def normalize_path(path: Path | str) -> str:
    """Return the absolute, normalized string form used as the catalog key."""
    return os.path.abspath(os.fspath(path))


def make_track_id(path: Path | str) -> str:
    """
    Derive a track id from a file path.

    The id is ``"local_"`` followed by the SHA-1 hex digest of the UTF-8
    (filesystem-encoded) absolute path. It is a one-way function: the path is
    always stored next to the id and never recovered from it.

    Args:
        path: File path, relative paths are made absolute first

    Returns:
        Deterministic track id
    """
    digest = hashlib.sha1(os.fsencode(normalize_path(path))).hexdigest()
    return TRACK_ID_PREFIX + digest


def display_text(text: str) -> str:
    """
    Make text taken from a file name safe to store and print.

    Undecodable name bytes arrive as lone surrogates; they become U+FFFD.
    """
    return text.encode("utf-8", "surrogateescape").decode("utf-8", "replace")


def title_from_filename(path: Path | str) -> str:
    """
    Build a display title from a file name when tags carry none.

    "03 - Innuendo.flac" -> "Innuendo", "Innuendo - Queen.mp3" -> "Innuendo",
    otherwise the bare stem.
    """
    stem = Path(path).stem
    for pattern in _TITLE_PATTERNS:
        match = pattern.match(stem)
        if match and match.group(1).strip():
            return match.group(1).strip()
    return stem


@dataclass
class Track:
    """A catalog entry for one local audio file."""

    id: str
    name: str
    file_path: str
    file_name: str
    file_size: int
    format: str  # container, lower-cased extension without dot
    date_added: float  # epoch seconds
    date_modified: float  # on-disk mtime, epoch seconds
    artist: str = UNKNOWN_ARTIST
    album: str = UNKNOWN_ALBUM
    duration: int = 0  # milliseconds
    codec: str | None = None
    bitrate: int | None = None
    sample_rate: int | None = None
    track_number: int | None = None
    year: int | None = None
    genre: str | None = None
    album_artist: str | None = None
    composer: str | None = None
    comment: str | None = None
    lyrics: str | None = None
    album_art: str | None = None  # data: URI
    play_count: int = 0
    last_played: float | None = None
    source: str = "local"

    @property
    def directory(self) -> str:
        return os.path.dirname(self.file_path)

    def to_dict(self) -> dict[str, Any]:
        """Convert track to dictionary."""
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> Track:
        """Build a Track from a dictionary, ignoring unknown keys."""
        known = {f.name for f in fields(cls)}
        return cls(**{k: v for k, v in data.items() if k in known})
