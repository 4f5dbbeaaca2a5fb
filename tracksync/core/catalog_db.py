"""
SQLite-backed catalog of local tracks.

Stores one row per audio file in a WAL-mode SQLite database. Rows are keyed by
the path-derived track id, and ``file_path`` is unique, so an upsert from a
full scan and one from a watcher on the same file collapse into one row: the
most recent write wins.

Paths are stored as their filesystem bytes, so file names that are not valid
UTF-8 round-trip unchanged.
"""

from __future__ import annotations

import logging
import os
import sqlite3
import threading
from collections.abc import Callable
from dataclasses import fields
from pathlib import Path
from typing import Any, Protocol, TypeVar

from tracksync.core.errors import CatalogError
from tracksync.core.track import Track, normalize_path

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ── Table / column name constants ─────────────────────────────────────────────
_TABLE = "tracks"
_COLS = tuple(f.name for f in fields(Track))

_COL_TYPES = {
    "id": "TEXT PRIMARY KEY",
    "name": "TEXT NOT NULL",
    "file_path": "BLOB UNIQUE NOT NULL",
    "file_name": "TEXT NOT NULL",
    "file_size": "INTEGER NOT NULL",
    "format": "TEXT NOT NULL",
    "date_added": "REAL NOT NULL",
    "date_modified": "REAL NOT NULL",
    "artist": "TEXT NOT NULL",
    "album": "TEXT NOT NULL",
    "duration": "INTEGER NOT NULL DEFAULT 0",
    "bitrate": "INTEGER",
    "sample_rate": "INTEGER",
    "track_number": "INTEGER",
    "year": "INTEGER",
    "play_count": "INTEGER NOT NULL DEFAULT 0",
    "last_played": "REAL",
}

_COLUMN_DEFS = ",\n    ".join(f"{col} {_COL_TYPES.get(col, 'TEXT')}" for col in _COLS)

_DDL = f"""
CREATE TABLE IF NOT EXISTS {_TABLE} (
    {_COLUMN_DEFS}
);
CREATE INDEX IF NOT EXISTS idx_tracks_artist ON {_TABLE} (artist);
CREATE INDEX IF NOT EXISTS idx_tracks_album ON {_TABLE} (album);
CREATE INDEX IF NOT EXISTS idx_tracks_date_added ON {_TABLE} (date_added);
"""

_UPSERT_SQL = (
    f"INSERT OR REPLACE INTO {_TABLE} "
    f"({', '.join(_COLS)}) "
    f"VALUES ({', '.join('?' * len(_COLS))})"
)

_SELECT_SQL = f"SELECT {', '.join(_COLS)} FROM {_TABLE}"
_SELECT_BY_PATH_SQL = f"{_SELECT_SQL} WHERE file_path = ?"
_SELECT_BY_ID_SQL = f"{_SELECT_SQL} WHERE id = ?"
_SELECT_ALL_SQL = f"{_SELECT_SQL} ORDER BY artist, album, track_number, name"

_DELETE_BY_PATH_SQL = f"DELETE FROM {_TABLE} WHERE file_path = ?"
# Prefix match with substr() so '%' and '_' in directory names need no escaping
_DELETE_BY_PREFIX_SQL = f"DELETE FROM {_TABLE} WHERE substr(file_path, 1, ?) = ?"


class CatalogRepository(Protocol):
    """Persistence operations the scanner and watchers depend on."""

    def find_by_path(self, path: str) -> Track | None: ...

    def upsert(self, track: Track) -> None: ...

    def remove_by_path(self, path: str) -> int: ...

    def remove_by_directory(self, root: str) -> int: ...


class LibraryCatalog(CatalogRepository, Protocol):
    """Repository plus the whole-library operations used by rescans and cleanup."""

    def all_tracks(self) -> list[Track]: ...

    def clear(self) -> None: ...


def _path_key(path: str) -> bytes:
    """Filesystem bytes of the absolute path; names need not be valid UTF-8."""
    return os.fsencode(normalize_path(path))


def _row_to_track(row: tuple) -> Track:
    values = dict(zip(_COLS, row, strict=True))
    values["file_path"] = os.fsdecode(values["file_path"])
    return Track(**values)


def _track_to_row(track: Track) -> tuple[Any, ...]:
    return tuple(
        _path_key(track.file_path) if col == "file_path" else getattr(track, col) for col in _COLS
    )


class CatalogDB:
    """
    SQLite implementation of the catalog repository.

    Safe to share between the scan worker pool and watcher threads: every
    statement runs under one lock.

    Usage::

        with CatalogDB(Path("~/.local/share/tracksync/catalog.db").expanduser()) as db:
            db.upsert(track)
            existing = db.find_by_path("/music/a.mp3")
            db.remove_by_directory("/music")
    """

    def __init__(self, db_path: Path) -> None:
        """
        Open (or create) the database and ensure the schema exists.

        Args:
            db_path: Path to the SQLite file. Parent directories are created
                     automatically.

        Raises:
            CatalogError: If the database cannot be opened
        """
        self._db_path = db_path
        self._lock = threading.Lock()
        try:
            db_path.parent.mkdir(parents=True, exist_ok=True)
            self._conn = sqlite3.connect(str(db_path), check_same_thread=False)
            self._conn.execute("PRAGMA journal_mode=WAL")
            self._conn.executescript(_DDL)
            self._conn.commit()
        except (OSError, sqlite3.Error) as e:
            raise CatalogError(f"Cannot open catalog at {db_path}: {e}") from e
        logger.debug(f"Opened catalog {db_path}")

    @property
    def path(self) -> Path:
        return self._db_path

    def _run(self, op: Callable[[sqlite3.Connection], T]) -> T:
        with self._lock:
            try:
                return op(self._conn)
            except sqlite3.Error as e:
                logger.error("Catalog operation failed: %s", e)
                raise CatalogError(str(e)) from e

    def find_by_path(self, path: str) -> Track | None:
        """
        Return the record for path, or None if the file is not catalogued.

        Args:
            path: File path; normalized to an absolute path before lookup
        """
        key = _path_key(path)
        row = self._run(lambda c: c.execute(_SELECT_BY_PATH_SQL, (key,)).fetchone())
        return _row_to_track(row) if row else None

    def get(self, track_id: str) -> Track | None:
        """Return the record with the given id, or None."""
        row = self._run(lambda c: c.execute(_SELECT_BY_ID_SQL, (track_id,)).fetchone())
        return _row_to_track(row) if row else None

    def upsert(self, track: Track) -> None:
        """
        Insert or replace a track, keyed by id (and unique file path).

        Args:
            track: Track to store
        """

        def op(c: sqlite3.Connection) -> None:
            c.execute(_UPSERT_SQL, _track_to_row(track))
            c.commit()

        self._run(op)

    def remove_by_path(self, path: str) -> int:
        """
        Delete the record for one file.

        Returns:
            Number of rows removed (0 or 1)
        """
        key = _path_key(path)

        def op(c: sqlite3.Connection) -> int:
            cur = c.execute(_DELETE_BY_PATH_SQL, (key,))
            c.commit()
            return cur.rowcount

        return self._run(op)

    def remove_by_directory(self, root: str) -> int:
        """
        Delete every record whose file lives under root (at any depth).

        Args:
            root: Root directory

        Returns:
            Number of rows removed
        """
        prefix = _path_key(root).rstrip(os.fsencode(os.sep)) + os.fsencode(os.sep)

        def op(c: sqlite3.Connection) -> int:
            cur = c.execute(_DELETE_BY_PREFIX_SQL, (len(prefix), prefix))
            c.commit()
            return cur.rowcount

        removed = self._run(op)
        logger.info(f"Removed {removed} tracks under {root}")
        return removed

    def all_tracks(self) -> list[Track]:
        """Return every record, ordered by artist, album and track number."""
        rows = self._run(lambda c: c.execute(_SELECT_ALL_SQL).fetchall())
        return [_row_to_track(row) for row in rows]

    def count(self) -> int:
        row = self._run(lambda c: c.execute(f"SELECT COUNT(*) FROM {_TABLE}").fetchone())
        return int(row[0])

    def stats(self) -> dict[str, int]:
        """
        Summarize the catalog.

        Returns:
            Track, album and artist counts plus total duration in milliseconds
        """
        row = self._run(
            lambda c: c.execute(
                f"SELECT COUNT(*), COUNT(DISTINCT album || '|' || artist), "
                f"COUNT(DISTINCT artist), COALESCE(SUM(duration), 0) FROM {_TABLE}"
            ).fetchone()
        )
        tracks, albums, artists, duration = row
        return {
            "total_tracks": tracks,
            "total_albums": albums,
            "total_artists": artists,
            "total_duration": duration,
        }

    def clear(self) -> None:
        """Delete every record."""

        def op(c: sqlite3.Connection) -> None:
            c.execute(f"DELETE FROM {_TABLE}")
            c.commit()

        self._run(op)
        logger.info("Catalog cleared")

    def close(self) -> None:
        """Close the database connection."""
        self._conn.close()

    def __enter__(self) -> CatalogDB:
        return self

    def __exit__(self, *_: object) -> None:
        self.close()
