"""
Test helpers: synthetic audio files and a fake watchdog observer.

FLAC files are real (soundfile + mutagen). MP3 files are hand-built streams of
silent MPEG-1 Layer III frames, so their duration is exact without an encoder.
"""

import os
from pathlib import Path
from typing import Any

import numpy as np
import soundfile as sf
from mutagen.flac import FLAC
from mutagen.id3 import ID3, TALB, TIT2, TPE1

from tracksync.core.events import CatalogEvent

_SAMPLE_RATE = 44100
_FLAC_SECONDS = 0.5

# MPEG-1 Layer III, 128 kbps, 44.1 kHz, no CRC, no padding: 417-byte frames
_MP3_HEADER = b"\xff\xfb\x90\x00"
_MP3_FRAME = _MP3_HEADER + bytes(417 - len(_MP3_HEADER))
_MP3_BYTES_PER_SECOND = 128_000 // 8


def write_flac(path: Path, **tags: str) -> Path:
    """Write a 0.5-second silent stereo FLAC file with optional Vorbis comments."""
    path.parent.mkdir(parents=True, exist_ok=True)
    samples = np.zeros((int(_SAMPLE_RATE * _FLAC_SECONDS), 2), dtype=np.float32)
    sf.write(str(path), samples, _SAMPLE_RATE, format="FLAC", subtype="PCM_16")
    if tags:
        audio = FLAC(str(path))
        for key, value in tags.items():
            audio[key] = value
        audio.save()
    return path


def write_mp3(
    path: Path,
    seconds: float = 10.0,
    title: str | None = None,
    artist: str | None = None,
    album: str | None = None,
) -> Path:
    """Write a silent constant-bitrate MP3 stream, optionally with ID3 tags."""
    path.parent.mkdir(parents=True, exist_ok=True)
    n_frames = int(seconds * _MP3_BYTES_PER_SECOND / len(_MP3_FRAME))
    path.write_bytes(_MP3_FRAME * n_frames)

    frames = [
        cls(encoding=3, text=[value])
        for cls, value in ((TIT2, title), (TPE1, artist), (TALB, album))
        if value
    ]
    if frames:
        tags = ID3()
        for frame in frames:
            tags.add(frame)
        tags.save(str(path))
    return path


def touch_later(path: Path, seconds: float = 10.0) -> None:
    """Push a file's mtime forward so it reads as modified."""
    st = os.stat(path)
    os.utime(path, (st.st_atime + seconds, st.st_mtime + seconds))


def events_of(events: list[tuple[CatalogEvent, dict[str, Any]]], kind: CatalogEvent) -> list[dict]:
    """Payloads of the recorded events of one kind, in order."""
    return [payload for event, payload in events if event is kind]


class FakeObserver:
    """Stands in for a watchdog Observer; events are dispatched by hand."""

    def __init__(self) -> None:
        self.scheduled: list[tuple[Any, str, bool]] = []
        self.started = False
        self.stopped = False
        self.joined = False

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        self.scheduled.append((handler, path, recursive))

    def start(self) -> None:
        self.started = True

    def stop(self) -> None:
        self.stopped = True

    def join(self, timeout: float | None = None) -> None:
        self.joined = True


class FailingObserver(FakeObserver):
    """Observer whose subscription cannot be created."""

    def schedule(self, handler: Any, path: str, recursive: bool = False) -> None:
        raise OSError("inotify watch limit reached")
