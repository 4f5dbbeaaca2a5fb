"""
Full-scan state machine tying discovery, change detection, extraction,
watching and the catalog together.

A scan runs Idle -> Counting -> Scanning -> Idle. Counting walks every root
only to size the progress bar; Scanning walks them again and feeds each file
through a bounded worker pool. Progress advances after every file, whether it
was skipped as unchanged, parsed, or failed.

Errors come in three severities:

- per file: recorded in ScanProgress.errors, the scan goes on
- per root: enumeration failure recorded as a scan error, other roots go on
- catalog: the scan is aborted, scanError is published and the error propagates
"""

from __future__ import annotations

import logging
import threading
import time
from collections.abc import Callable, Iterable, Iterator
from concurrent.futures import FIRST_COMPLETED, Future, ThreadPoolExecutor, wait
from dataclasses import dataclass, field, replace
from enum import Enum
from typing import Any, TypeVar

from tracksync.core.catalog_db import LibraryCatalog
from tracksync.core.errors import CatalogError, ScanInProgressError
from tracksync.core.events import CatalogEvent, EventBus
from tracksync.core.fs_bridge import FilesystemBridge
from tracksync.core.metadata_extractor import Extraction, MetadataExtractor
from tracksync.core.settings_manager import ScanSettings, SettingsManager
from tracksync.core.track import normalize_path
from tracksync.core.watch_manager import WatchManager

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


class ScanState(Enum):
    IDLE = "idle"
    COUNTING = "counting"
    SCANNING = "scanning"


@dataclass
class ScanProgress:
    """Progress information for a scan operation."""

    is_scanning: bool = False
    total_files: int = 0
    scanned_files: int = 0
    current_file: str = ""
    errors: list[str] = field(default_factory=list)

    @property
    def progress_percent(self) -> float:
        if self.total_files == 0:
            return 0.0
        return (self.scanned_files / self.total_files) * 100

    def reset(self) -> None:
        self.is_scanning = False
        self.total_files = 0
        self.scanned_files = 0
        self.current_file = ""
        self.errors = []


@dataclass
class ScanSummary:
    """Totals of a finished scan."""

    total_files: int = 0
    scanned_files: int = 0
    added: int = 0
    updated: int = 0
    skipped: int = 0
    errors: list[str] = field(default_factory=list)
    duration_seconds: float = 0.0

    @property
    def upserts(self) -> int:
        return self.added + self.updated

    @property
    def outcome(self) -> str:
        return "with-errors" if self.errors else "success"


def bounded_map(
    executor: ThreadPoolExecutor,
    fn: Callable[[T], R],
    items: Iterable[T],
    max_in_flight: int,
) -> Iterator[tuple[T, Future[R]]]:
    """
    Submit fn(item) for each item, keeping at most max_in_flight pending.

    Yields (item, completed future) pairs in completion order; items are
    pulled from the iterable lazily, so a huge directory never sits in memory
    as a list of futures.
    """
    pending: dict[Future[R], T] = {}
    source = iter(items)
    exhausted = False

    while pending or not exhausted:
        while not exhausted and len(pending) < max_in_flight:
            try:
                item = next(source)
            except StopIteration:
                exhausted = True
                break
            pending[executor.submit(fn, item)] = item

        if not pending:
            break

        done, _ = wait(pending, return_when=FIRST_COMPLETED)
        for future in done:
            yield pending.pop(future), future


class ScanOrchestrator:
    """
    Drives full scans and directory add/remove against the catalog.

    Usage::

        orchestrator = ScanOrchestrator(settings, catalog, extractor, watchers, bus, bridge)
        orchestrator.startup()
        summary = orchestrator.scan_all()
    """

    def __init__(
        self,
        settings_manager: SettingsManager,
        catalog: LibraryCatalog,
        extractor: MetadataExtractor,
        watch_manager: WatchManager,
        event_bus: EventBus,
        bridge: FilesystemBridge,
        max_workers: int = 4,
    ):
        """
        Initialize scan orchestrator.

        Args:
            settings_manager: Source of roots, formats and flags
            catalog: Catalog repository receiving upserts and removals
            extractor: Per-file metadata extraction
            watch_manager: Watchers started/stopped on add/remove directory
            event_bus: Receives scan and directory events
            bridge: Filesystem access used for enumeration and stat
            max_workers: Size of the extraction thread pool
        """
        self.settings_manager = settings_manager
        self.catalog = catalog
        self.extractor = extractor
        self.watch_manager = watch_manager
        self.event_bus = event_bus
        self.bridge = bridge
        self.max_workers = max(1, max_workers)

        self._executor = ThreadPoolExecutor(
            max_workers=self.max_workers, thread_name_prefix="tracksync-scan"
        )
        self._state_lock = threading.Lock()
        self._state = ScanState.IDLE
        self._progress = ScanProgress()
        self.last_summary: ScanSummary | None = None

        # Roots dropped from settings by any route lose their records too
        self._roots = set(settings_manager.settings.music_directories)
        event_bus.subscribe(CatalogEvent.SETTINGS_UPDATED, self._on_settings_updated)

    @property
    def state(self) -> ScanState:
        return self._state

    @property
    def progress(self) -> ScanProgress:
        """A copy of the current progress."""
        return replace(self._progress, errors=list(self._progress.errors))

    @property
    def is_scanning(self) -> bool:
        return self._state is not ScanState.IDLE

    @property
    def last_outcome(self) -> str | None:
        """"success" or "with-errors" for the last finished scan."""
        return self.last_summary.outcome if self.last_summary else None

    # ── Public operations ────────────────────────────────────────────────────

    def scan_all(self, force_rescan: bool = False) -> ScanSummary:
        """
        Scan every configured root.

        Args:
            force_rescan: Re-parse files even when their fingerprint matches

        Returns:
            ScanSummary of the run

        Raises:
            ScanInProgressError: If a scan is already running
            CatalogError: If the catalog fails mid-scan
        """
        settings = self.settings_manager.settings
        return self._run_scan(settings.music_directories, settings, force_rescan)

    def scan_directory(self, root: str, force_rescan: bool = False) -> ScanSummary:
        """Scan a single root with the current settings."""
        settings = self.settings_manager.settings
        return self._run_scan([normalize_path(root)], settings, force_rescan)

    def add_directory(self, root: str) -> ScanSummary | None:
        """
        Add a root: persist it, start its watcher, and index it if configured.

        Returns:
            The summary of the initial scan, or None when no scan ran
        """
        key = normalize_path(root)
        if not self.settings_manager.add_directory(key):
            logger.info(f"Directory already configured: {key}")
            return None

        settings = self.settings_manager.settings
        if settings.watch_for_changes:
            self.watch_manager.start(key, settings)

        summary = None
        if settings.auto_index_new_files:
            summary = self._run_scan([key], settings, force_rescan=False)

        self.event_bus.emit(CatalogEvent.DIRECTORY_ADDED, directory=key)
        return summary

    def remove_directory(self, root: str) -> int:
        """
        Remove a root: persist, tear down its watcher, drop its records.

        Returns:
            Number of catalog records removed
        """
        key = normalize_path(root)
        # Purged here, not by the settings listener, so the count comes back
        self._roots.discard(key)
        try:
            configured = self.settings_manager.remove_directory(key)
        finally:
            self._roots = set(self.settings_manager.settings.music_directories)
        if not configured:
            logger.info(f"Directory not configured: {key}")
            return 0
        return self._drop_root(key)

    def clear_and_rescan(self) -> ScanSummary:
        """Empty the catalog and force-rescan every root."""
        if self.is_scanning:
            raise ScanInProgressError("Scan already in progress")
        logger.info("Clearing library and rescanning")
        self.catalog.clear()
        return self.scan_all(force_rescan=True)

    def cleanup_orphans(self) -> int:
        """
        Remove records whose file no longer exists.

        Returns:
            Number of records removed
        """
        removed = 0
        for track in self.catalog.all_tracks():
            try:
                self.bridge.stat(track.file_path)
            except FileNotFoundError:
                self.catalog.remove_by_path(track.file_path)
                removed += 1
            except OSError as e:
                # Unreachable is not gone (e.g. an unmounted drive)
                logger.warning(f"Cannot stat {track.file_path}, keeping it: {e}")
        if removed:
            logger.info(f"Removed {removed} orphaned tracks")
        return removed

    def startup(self) -> ScanSummary | None:
        """Apply startup flags: start watchers, then scan if configured."""
        settings = self.settings_manager.settings
        if settings.watch_for_changes:
            self.watch_manager.sync(settings)
        if settings.scan_on_startup and settings.music_directories:
            return self.scan_all()
        return None

    def shutdown(self) -> None:
        """Stop watchers and the worker pool."""
        self.watch_manager.stop_all()
        self._executor.shutdown(wait=True)

    def _drop_root(self, root: str) -> int:
        self.watch_manager.stop(root)
        removed = self.catalog.remove_by_directory(root)
        self.event_bus.emit(CatalogEvent.DIRECTORY_REMOVED, directory=root)
        return removed

    def _on_settings_updated(self, settings: dict[str, Any]) -> None:
        current = set(settings["music_directories"])
        dropped = self._roots - current
        self._roots = current
        for root in sorted(dropped):
            logger.info(f"Directory dropped from settings: {root}")
            self._drop_root(root)

    # ── Scan machinery ───────────────────────────────────────────────────────

    def _run_scan(
        self, roots: list[str], settings: ScanSettings, force_rescan: bool
    ) -> ScanSummary:
        with self._state_lock:
            if self._state is not ScanState.IDLE:
                raise ScanInProgressError("Scan already in progress")
            self._state = ScanState.COUNTING

        started = time.monotonic()
        progress = self._progress
        progress.reset()
        progress.is_scanning = True
        summary = ScanSummary()
        self.event_bus.emit(CatalogEvent.SCAN_STARTED, directories=list(roots))

        try:
            for root in roots:
                self._count_root(root, settings)
            logger.info(f"Found {progress.total_files} audio files in {len(roots)} directories")

            self._state = ScanState.SCANNING
            for root in roots:
                self._scan_root(root, settings, force_rescan, summary)
        except Exception as e:
            logger.error(f"Scan failed: {e}")
            self.event_bus.emit(CatalogEvent.SCAN_ERROR, error=str(e))
            raise
        finally:
            progress.is_scanning = False
            self._state = ScanState.IDLE

        summary.total_files = progress.total_files
        summary.scanned_files = progress.scanned_files
        summary.errors = list(progress.errors)
        summary.duration_seconds = time.monotonic() - started
        self.last_summary = summary

        logger.info(
            "Scan finished: %d added, %d updated, %d unchanged, %d errors",
            summary.added,
            summary.updated,
            summary.skipped,
            len(summary.errors),
        )
        self.event_bus.emit(
            CatalogEvent.SCAN_COMPLETED,
            total_files=summary.total_files,
            scanned_files=summary.scanned_files,
            added=summary.added,
            updated=summary.updated,
            skipped=summary.skipped,
            errors=list(summary.errors),
        )
        return summary

    def _enumerate(self, root: str, settings: ScanSettings) -> Iterator[str]:
        return self.bridge.enumerate(
            root,
            settings.include_subdirectories,
            settings.supported_formats,
            settings.exclude_patterns,
        )

    def _count_root(self, root: str, settings: ScanSettings) -> None:
        try:
            self._progress.total_files += sum(1 for _ in self._enumerate(root, settings))
        except OSError as e:
            # Recorded once, when the scanning pass hits the same failure
            logger.error(f"Failed to count files in {root}: {e}")

    def _scan_root(
        self, root: str, settings: ScanSettings, force_rescan: bool, summary: ScanSummary
    ) -> None:
        progress = self._progress

        def extract(path: str) -> Extraction:
            return self.extractor.extract(path, force=force_rescan)

        try:
            results = bounded_map(
                self._executor, extract, self._enumerate(root, settings), self.max_workers * 2
            )
            for path, future in results:
                progress.current_file = path
                try:
                    extraction = future.result()
                except CatalogError:
                    raise
                except Exception as e:
                    logger.warning(f"Failed to scan file {path}: {e}")
                    progress.errors.append(f"{path}: {e}")
                else:
                    self._record(extraction, summary)

                progress.scanned_files += 1
                self.event_bus.emit(
                    CatalogEvent.SCAN_PROGRESS,
                    progress=progress.progress_percent,
                    current_file=path,
                    scanned_files=progress.scanned_files,
                    total_files=progress.total_files,
                )
        except OSError as e:
            logger.error(f"Failed to scan directory {root}: {e}")
            progress.errors.append(f"Directory {root}: {e}")

    def _record(self, extraction: Extraction, summary: ScanSummary) -> None:
        if not extraction.changed:
            summary.skipped += 1
            return

        track = extraction.track
        is_new = self.catalog.find_by_path(track.file_path) is None
        self.catalog.upsert(track)
        if is_new:
            summary.added += 1
        else:
            summary.updated += 1
        self.event_bus.emit(CatalogEvent.TRACK_SCANNED, track=track)
