"""
Unit tests for track module.
"""

import hashlib
import os
from pathlib import Path

import pytest

from tracksync.core.track import (
    TRACK_ID_PREFIX,
    UNKNOWN_ALBUM,
    UNKNOWN_ARTIST,
    Track,
    display_text,
    make_track_id,
    normalize_path,
    title_from_filename,
)


def _make_track(path: str = "/music/a.mp3", **overrides) -> Track:
    values = dict(
        id=make_track_id(path),
        name="A",
        file_path=path,
        file_name=os.path.basename(path),
        file_size=1234,
        format="mp3",
        date_added=1_700_000_000.0,
        date_modified=1_700_000_000.0,
    )
    values.update(overrides)
    return Track(**values)


class TestTrackId:
    def test_id_has_prefix_and_sha1_digest(self) -> None:
        track_id = make_track_id("/music/a.mp3")
        expected = hashlib.sha1(os.fsencode(os.path.abspath("/music/a.mp3"))).hexdigest()
        assert track_id == TRACK_ID_PREFIX + expected
        assert len(track_id) == len(TRACK_ID_PREFIX) + 40

    def test_id_is_deterministic(self) -> None:
        assert make_track_id("/music/a.mp3") == make_track_id("/music/a.mp3")

    def test_distinct_paths_give_distinct_ids(self) -> None:
        assert make_track_id("/music/a.mp3") != make_track_id("/music/b.mp3")

    def test_relative_and_absolute_paths_agree(self, tmp_path: Path, monkeypatch) -> None:
        monkeypatch.chdir(tmp_path)
        assert make_track_id("song.flac") == make_track_id(tmp_path / "song.flac")

    def test_normalize_path_collapses_dot_segments(self) -> None:
        assert normalize_path("/music/rock/../jazz/./a.mp3") == os.path.abspath("/music/jazz/a.mp3")


class TestTitleFromFilename:
    @pytest.mark.parametrize(
        "file_name, expected",
        [
            ("03 - Innuendo.flac", "Innuendo"),
            ("01. Bohemian Rhapsody.mp3", "Bohemian Rhapsody"),
            ("07 Under Pressure.ogg", "Under Pressure"),
            ("Innuendo - Queen.mp3", "Innuendo"),
            ("Innuendo_01.wav", "Innuendo"),
            ("Innuendo.flac", "Innuendo"),
        ],
    )
    def test_patterns(self, file_name: str, expected: str) -> None:
        assert title_from_filename(f"/music/{file_name}") == expected

    def test_full_path_uses_stem_only(self) -> None:
        assert title_from_filename("/music/01 - Album/track.mp3") == "track"


class TestDisplayText:
    def test_plain_text_unchanged(self) -> None:
        assert display_text("Innuendo") == "Innuendo"

    @pytest.mark.skipif(os.name == "nt", reason="POSIX byte file names")
    def test_undecodable_bytes_become_replacement_character(self) -> None:
        assert display_text(os.fsdecode(b"\xff bad")) == "\ufffd bad"


class TestTrack:
    def test_defaults(self) -> None:
        track = _make_track()
        assert track.artist == UNKNOWN_ARTIST
        assert track.album == UNKNOWN_ALBUM
        assert track.duration == 0
        assert track.play_count == 0
        assert track.source == "local"
        assert track.codec is None

    def test_directory(self) -> None:
        assert _make_track("/music/rock/a.mp3").directory == "/music/rock"

    def test_to_dict_and_back(self) -> None:
        track = _make_track(codec="MPEG 1 Layer 3", year=1991, genre="Rock")
        assert Track.from_dict(track.to_dict()) == track

    def test_from_dict_ignores_unknown_keys(self) -> None:
        data = _make_track().to_dict()
        data["rating"] = 5
        assert Track.from_dict(data).name == "A"
