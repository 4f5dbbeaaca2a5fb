"""Shared fixtures: a temporary catalog and a fully wired set of services."""

from pathlib import Path
from types import SimpleNamespace
from typing import Any

import pytest
from helpers import FakeObserver

from tracksync.core.catalog_db import CatalogDB
from tracksync.core.events import CatalogEvent, EventBus
from tracksync.core.fs_bridge import LocalFilesystem
from tracksync.core.metadata_extractor import MetadataExtractor
from tracksync.core.scan_orchestrator import ScanOrchestrator
from tracksync.core.settings_manager import SettingsManager
from tracksync.core.watch_manager import WatchManager


@pytest.fixture()
def observers() -> list[FakeObserver]:
    """Every FakeObserver created by the observer_factory fixture."""
    return []


@pytest.fixture()
def observer_factory(observers: list[FakeObserver]):
    def _factory() -> FakeObserver:
        observer = FakeObserver()
        observers.append(observer)
        return observer

    return _factory


@pytest.fixture()
def catalog(tmp_path: Path):
    db = CatalogDB(tmp_path / "state" / "catalog.db")
    yield db
    db.close()


@pytest.fixture()
def music_dir(tmp_path: Path) -> Path:
    path = tmp_path / "music"
    path.mkdir()
    return path


@pytest.fixture()
def services(tmp_path: Path, catalog: CatalogDB, observer_factory):
    """
    EventBus, catalog, extractor, watchers (fake observers, no debounce),
    settings and orchestrator wired together the way the CLI wires them.

    ``services.events`` records every published (event, payload) pair.
    """
    event_bus = EventBus()
    events: list[tuple[CatalogEvent, dict[str, Any]]] = []
    event_bus.subscribe_all(lambda event, payload: events.append((event, payload)))

    bridge = LocalFilesystem()
    extractor = MetadataExtractor(bridge, catalog)
    watch_manager = WatchManager(
        extractor, catalog, event_bus, observer_factory=observer_factory, debounce_seconds=0
    )
    settings_manager = SettingsManager(
        tmp_path / "state" / "settings.yaml", watch_manager, event_bus
    )
    orchestrator = ScanOrchestrator(
        settings_manager, catalog, extractor, watch_manager, event_bus, bridge, max_workers=2
    )

    yield SimpleNamespace(
        event_bus=event_bus,
        events=events,
        bridge=bridge,
        catalog=catalog,
        extractor=extractor,
        watch_manager=watch_manager,
        settings_manager=settings_manager,
        orchestrator=orchestrator,
    )
    orchestrator.shutdown()
