"""
Continuous filesystem watching using watchdog.

Each configured root gets its own watchdog Observer wrapped in a
WatcherHandle. Handles live in a table keyed by root path, so a root is
watched at most once and stopping it releases exactly its subscription.

Raw events are translated into catalog operations:

- created  -> extract, upsert, fileAdded
- modified -> extract, upsert, fileChanged
- deleted  -> remove by path, fileRemoved
- moved    -> remove source, then add destination

Every operation is independent; a failure is logged, published as
watcherError, and does not stop the watcher. Missed events are not replayed:
the next full scan reconciles drift.
"""

from __future__ import annotations

import logging
import os
import threading
from collections.abc import Callable
from enum import Enum
from pathlib import Path
from typing import Any

from watchdog.events import FileSystemEvent, FileSystemEventHandler
from watchdog.observers import Observer

from tracksync.core.audio_scanner import is_excluded, normalize_extensions
from tracksync.core.catalog_db import CatalogRepository
from tracksync.core.events import CatalogEvent, EventBus
from tracksync.core.metadata_extractor import MetadataExtractor
from tracksync.core.settings_manager import ScanSettings
from tracksync.core.track import normalize_path

logger = logging.getLogger(__name__)


class FileOperation(Enum):
    """Catalog operation derived from a raw filesystem event."""

    ADDED = "added"
    CHANGED = "changed"
    REMOVED = "removed"


class PathFilter:
    """Decides whether a path under a watched root is relevant."""

    def __init__(self, root: str, extensions: list[str], exclude_patterns: list[str]):
        self.root = root
        self.extensions = normalize_extensions(extensions)
        self.exclude_patterns = list(exclude_patterns)

    def accepts(self, path: str) -> bool:
        """
        Accept audio files whose path below the root has no hidden or excluded segment.

        Args:
            path: Absolute path reported by the observer

        Returns:
            True if the path should reach the catalog
        """
        rel = os.path.relpath(path, self.root)
        if rel == os.curdir or rel.startswith(os.pardir):
            return False
        for part in Path(rel).parts:
            if part.startswith(".") or is_excluded(part, self.exclude_patterns):
                return False
        return os.path.splitext(path)[1].lower() in self.extensions


class _CatalogEventHandler(FileSystemEventHandler):
    """Watchdog handler forwarding accepted file events to the manager."""

    def __init__(self, manager: WatchManager, root: str, path_filter: PathFilter):
        super().__init__()
        self.manager = manager
        self.root = root
        self.path_filter = path_filter

    def _forward(self, raw_path: Any, op: FileOperation) -> None:
        path = os.fsdecode(raw_path)
        if self.path_filter.accepts(path):
            logger.debug(f"File {op.value}: {path}")
            self.manager.submit(self.root, path, op)

    def on_created(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, FileOperation.ADDED)

    def on_modified(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, FileOperation.CHANGED)

    def on_deleted(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, FileOperation.REMOVED)

    def on_moved(self, event: FileSystemEvent) -> None:
        if not event.is_directory:
            self._forward(event.src_path, FileOperation.REMOVED)
            self._forward(event.dest_path, FileOperation.ADDED)


class WatcherHandle:
    """One OS-level subscription for one root directory."""

    def __init__(self, root: str, observer: Any, handler: _CatalogEventHandler, recursive: bool):
        self.root = root
        self.observer = observer
        self.handler = handler
        self.recursive = recursive
        self.closed = False

    def close(self, timeout: float = 5.0) -> None:
        """Stop the observer and wait for its thread."""
        if self.closed:
            return
        self.closed = True
        self.observer.stop()
        self.observer.join(timeout=timeout)


class WatchManager:
    """
    Owns the watcher handles, one per root.

    Usage::

        watchers = WatchManager(extractor, catalog, bus)
        watchers.start("/music", settings)
        ...
        watchers.stop_all()
    """

    def __init__(
        self,
        extractor: MetadataExtractor,
        catalog: CatalogRepository,
        event_bus: EventBus,
        observer_factory: Callable[[], Any] = Observer,
        debounce_seconds: float = 1.0,
    ):
        """
        Initialize watch manager.

        Args:
            extractor: Used to (re)build tracks for added and changed files
            catalog: Receives upserts and removals
            event_bus: Receives fileAdded/fileChanged/fileRemoved/watcherError
            observer_factory: Builds one watchdog observer per root
            debounce_seconds: Quiet period before a path's latest event is applied;
                              0 applies events immediately in the observer thread
        """
        self.extractor = extractor
        self.catalog = catalog
        self.event_bus = event_bus
        self.observer_factory = observer_factory
        self.debounce_seconds = debounce_seconds

        self._lock = threading.RLock()
        self._handles: dict[str, WatcherHandle] = {}
        self._pending: dict[str, tuple[str, FileOperation, threading.Timer]] = {}

    @property
    def watched_roots(self) -> list[str]:
        with self._lock:
            return sorted(self._handles)

    def is_watching(self, root: str) -> bool:
        with self._lock:
            return normalize_path(root) in self._handles

    def start(self, root: str, settings: ScanSettings) -> WatcherHandle | None:
        """
        Start watching root. Watching an already-watched root is a no-op.

        Args:
            root: Root directory
            settings: Supplies recursion, extensions and exclude patterns

        Returns:
            The handle, or None if the subscription could not be created
        """
        key = normalize_path(root)
        with self._lock:
            if key in self._handles:
                logger.debug(f"Path already being watched: {key}")
                return self._handles[key]

            if not os.path.isdir(key):
                self._report_error(key, key, NotADirectoryError(f"Invalid watch path: {key}"))
                return None

            path_filter = PathFilter(key, settings.supported_formats, settings.exclude_patterns)
            handler = _CatalogEventHandler(self, key, path_filter)
            observer = self.observer_factory()
            try:
                observer.schedule(handler, key, recursive=settings.include_subdirectories)
                observer.start()
            except Exception as e:
                self._report_error(key, key, e)
                return None

            handle = WatcherHandle(key, observer, handler, settings.include_subdirectories)
            self._handles[key] = handle

        logger.info(f"Watching path: {key} (recursive={settings.include_subdirectories})")
        return handle

    def stop(self, root: str) -> bool:
        """
        Stop watching root and discard its handle.

        Returns:
            False if root was not being watched
        """
        key = normalize_path(root)
        with self._lock:
            handle = self._handles.pop(key, None)
            for path in [p for p, (r, _, _) in self._pending.items() if r == key]:
                self._pending.pop(path)[2].cancel()
        if handle is None:
            return False
        handle.close()
        logger.info(f"Stopped watching path: {key}")
        return True

    def stop_all(self) -> None:
        """Stop every watcher; pending events are dropped."""
        for root in self.watched_roots:
            self.stop(root)

    def sync(self, settings: ScanSettings, restart: bool = False) -> None:
        """
        Make the set of watchers match settings.

        Args:
            settings: Current scan settings
            restart: Rebuild existing watchers so new filters apply
        """
        if not settings.watch_for_changes:
            self.stop_all()
            return

        wanted = {normalize_path(d) for d in settings.music_directories}
        for root in self.watched_roots:
            if restart or root not in wanted:
                self.stop(root)
        for root in settings.music_directories:
            self.start(root, settings)

    def submit(self, root: str, path: str, op: FileOperation) -> None:
        """Queue op for path, collapsing bursts within the debounce window."""
        if self.debounce_seconds <= 0:
            if self.is_watching(root):
                self.apply(root, path, op)
            return

        with self._lock:
            if root not in self._handles:
                return
            previous = self._pending.pop(path, None)
            if previous is not None:
                previous[2].cancel()
                # A file that was just created stays "added" through its writes
                if previous[1] is FileOperation.ADDED and op is FileOperation.CHANGED:
                    op = FileOperation.ADDED
            timer = threading.Timer(self.debounce_seconds, self._fire, args=(path,))
            timer.daemon = True
            self._pending[path] = (root, op, timer)
            timer.start()

    def _fire(self, path: str) -> None:
        with self._lock:
            entry = self._pending.pop(path, None)
            # The root may have been stopped while this timer was starting
            if entry is not None and entry[0] not in self._handles:
                entry = None
        if entry is not None:
            root, op, _ = entry
            self.apply(root, path, op)

    def flush(self) -> None:
        """Apply every pending debounced event now."""
        with self._lock:
            pending = list(self._pending.items())
            self._pending.clear()
        for path, (root, op, timer) in pending:
            timer.cancel()
            self.apply(root, path, op)

    def apply(self, root: str, path: str, op: FileOperation) -> None:
        """
        Run one catalog operation for a watched path.

        Failures are reported through watcherError and never propagate into
        the observer thread.
        """
        try:
            if op is FileOperation.REMOVED:
                self.catalog.remove_by_path(path)
                self.event_bus.emit(CatalogEvent.FILE_REMOVED, file_path=path)
                return

            extraction = self.extractor.extract(path)
            if extraction.changed:
                self.catalog.upsert(extraction.track)
                self.event_bus.emit(CatalogEvent.TRACK_SCANNED, track=extraction.track)
            if op is FileOperation.ADDED:
                self.event_bus.emit(CatalogEvent.FILE_ADDED, file_path=path)
            else:
                self.event_bus.emit(CatalogEvent.FILE_CHANGED, file_path=path)
        except FileNotFoundError:
            # Created and removed again before we got to it
            logger.debug(f"File vanished before processing: {path}")
        except Exception as e:
            self._report_error(root, path, e)

    def _report_error(self, root: str, path: str, error: Exception) -> None:
        logger.warning(f"Watcher error for {root} ({path}): {error}")
        self.event_bus.emit(
            CatalogEvent.WATCHER_ERROR, directory=root, path=path, error=str(error)
        )
