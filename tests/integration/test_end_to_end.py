"""
End-to-end scan scenarios against real files on disk.

A library root holds a valid 4-minute MP3 and a zero-byte MP3. A full scan
must report progress at 50% and 100%, complete with exactly one error naming
the broken file, and leave exactly one record in the catalog.
"""

from pathlib import Path

import pytest
from helpers import FakeObserver, events_of, write_flac, write_mp3
from watchdog.events import FileCreatedEvent, FileDeletedEvent

from tracksync.core.catalog_db import CatalogDB
from tracksync.core.events import CatalogEvent
from tracksync.core.settings_manager import ScanSettings


@pytest.fixture()
def library(music_dir: Path) -> Path:
    write_mp3(music_dir / "a.mp3", seconds=240, title="Four Minutes", artist="Tester")
    (music_dir / "b.mp3").touch()
    return music_dir


class TestFullScanScenario:
    def test_one_valid_one_corrupt(self, services, library: Path) -> None:
        services.settings_manager.update(music_directories=[str(library)])
        services.events.clear()

        summary = services.orchestrator.scan_all()

        progress = events_of(services.events, CatalogEvent.SCAN_PROGRESS)
        assert [p["progress"] for p in progress] == [50.0, 100.0]

        completed = events_of(services.events, CatalogEvent.SCAN_COMPLETED)
        assert len(completed) == 1
        assert len(completed[0]["errors"]) == 1
        assert "b.mp3" in completed[0]["errors"][0]

        assert summary.added == 1
        (track,) = services.catalog.all_tracks()
        assert track.file_path == str(library / "a.mp3")
        assert track.name == "Four Minutes"
        assert track.artist == "Tester"
        assert track.duration == pytest.approx(240_000, abs=1000)
        assert track.codec == "MPEG 1 Layer 3"

    def test_catalog_survives_reopen(self, services, library: Path) -> None:
        services.settings_manager.update(music_directories=[str(library)])
        services.orchestrator.scan_all()
        db_path = services.catalog.path

        with CatalogDB(db_path) as reopened:
            assert reopened.count() == 1
            assert reopened.find_by_path(str(library / "a.mp3")) is not None

    def test_rescan_after_fixing_broken_file(self, services, library: Path) -> None:
        services.settings_manager.update(music_directories=[str(library)])
        services.orchestrator.scan_all()

        write_mp3(library / "b.mp3", seconds=30)
        summary = services.orchestrator.scan_all()

        assert summary.errors == []
        assert summary.added == 1
        assert summary.skipped == 1
        assert services.catalog.count() == 2


class TestLibraryLifecycle:
    def test_add_watch_edit_remove(self, services, music_dir: Path, observers) -> None:
        write_flac(music_dir / "rock" / "01 - Opener.flac")
        write_flac(music_dir / "rock" / "02 - Closer.flac")

        services.orchestrator.add_directory(str(music_dir))
        assert services.catalog.count() == 2
        assert isinstance(observers[0], FakeObserver)
        handler = observers[0].scheduled[0][0]

        fresh = write_flac(music_dir / "jazz" / "Take Five - Brubeck.flac")
        handler.dispatch(FileCreatedEvent(str(fresh)))
        track = services.catalog.find_by_path(str(fresh))
        assert track is not None
        assert track.name == "Take Five"

        gone = music_dir / "rock" / "02 - Closer.flac"
        gone.unlink()
        handler.dispatch(FileDeletedEvent(str(gone)))
        assert services.catalog.count() == 2

        # A full scan after watcher updates changes nothing
        summary = services.orchestrator.scan_all()
        assert summary.upserts == 0
        assert summary.skipped == 2

        removed = services.orchestrator.remove_directory(str(music_dir))
        assert removed == 2
        assert services.catalog.count() == 0
        assert observers[0].stopped is True

    def test_disabling_watch_tears_down_watchers(self, services, music_dir: Path, observers):
        services.orchestrator.add_directory(str(music_dir))
        assert services.watch_manager.watched_roots == [str(music_dir)]

        services.settings_manager.update(watch_for_changes=False)

        assert services.watch_manager.watched_roots == []
        assert observers[0].stopped is True

        services.settings_manager.update(watch_for_changes=True)
        assert services.watch_manager.watched_roots == [str(music_dir)]

    def test_exclude_change_restarts_watchers_with_new_filter(
        self, services, music_dir: Path, observers
    ) -> None:
        services.orchestrator.add_directory(str(music_dir))
        services.settings_manager.update(exclude_patterns=["demo"])

        assert len(observers) == 2
        handler = observers[1].scheduled[0][0]
        demo = write_flac(music_dir / "demo" / "take1.flac")
        handler.dispatch(FileCreatedEvent(str(demo)))

        assert services.catalog.count() == 0

    def test_watch_settings_round_trip(self, services, music_dir: Path) -> None:
        services.orchestrator.add_directory(str(music_dir))
        services.settings_manager.update(include_subdirectories=False)

        stored = services.settings_manager.settings
        assert stored == ScanSettings(
            music_directories=[str(music_dir)], include_subdirectories=False
        )
