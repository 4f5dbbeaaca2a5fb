"""
Publish/subscribe notifications for progress display and diagnostics.

Subscribers are plain callables receiving the event payload as a dict. A
subscriber that raises is logged and skipped; delivery to the others goes on.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from enum import Enum
from typing import Any

logger = logging.getLogger(__name__)

Payload = dict[str, Any]
Callback = Callable[[Payload], None]
WildcardCallback = Callable[["CatalogEvent", Payload], None]


class CatalogEvent(Enum):
    """Events published by the scanner, watchers and settings manager."""

    DIRECTORY_ADDED = "directoryAdded"
    DIRECTORY_REMOVED = "directoryRemoved"
    SCAN_STARTED = "scanStarted"
    SCAN_PROGRESS = "scanProgress"
    SCAN_COMPLETED = "scanCompleted"
    SCAN_ERROR = "scanError"
    TRACK_SCANNED = "trackScanned"
    FILE_ADDED = "fileAdded"
    FILE_CHANGED = "fileChanged"
    FILE_REMOVED = "fileRemoved"
    WATCHER_ERROR = "watcherError"
    SETTINGS_UPDATED = "settingsUpdated"


class Subscription:
    """Handle returned by EventBus.subscribe(); call unsubscribe() to detach."""

    def __init__(self, bus: EventBus, event: CatalogEvent | None, callback: Callable):
        self._bus = bus
        self.event = event
        self.callback = callback
        self.active = True

    def unsubscribe(self) -> None:
        """Detach the callback. Calling this more than once is harmless."""
        if self.active:
            self._bus._remove(self)
            self.active = False

    def __enter__(self) -> Subscription:
        return self

    def __exit__(self, *_: object) -> None:
        self.unsubscribe()


class EventBus:
    """Typed event channel with per-event and wildcard subscribers."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._subscribers: dict[CatalogEvent, list[Subscription]] = {}
        self._wildcard: list[Subscription] = []

    def subscribe(self, event: CatalogEvent, callback: Callback) -> Subscription:
        """
        Register callback for one event.

        Args:
            event: Event to listen for
            callback: Called with the payload dict

        Returns:
            Subscription handle
        """
        sub = Subscription(self, event, callback)
        with self._lock:
            self._subscribers.setdefault(event, []).append(sub)
        return sub

    def subscribe_all(self, callback: WildcardCallback) -> Subscription:
        """Register callback for every event; it receives (event, payload)."""
        sub = Subscription(self, None, callback)
        with self._lock:
            self._wildcard.append(sub)
        return sub

    def _remove(self, sub: Subscription) -> None:
        with self._lock:
            bucket = self._wildcard if sub.event is None else self._subscribers.get(sub.event, [])
            if sub in bucket:
                bucket.remove(sub)

    def subscriber_count(self, event: CatalogEvent | None = None) -> int:
        """Number of subscribers for event, or wildcard subscribers when event is None."""
        with self._lock:
            if event is None:
                return len(self._wildcard)
            return len(self._subscribers.get(event, []))

    def emit(self, event: CatalogEvent, **payload: Any) -> None:
        """
        Deliver payload to every subscriber of event, then to wildcard subscribers.

        Runs synchronously in the calling thread.
        """
        with self._lock:
            targets = list(self._subscribers.get(event, []))
            wildcard = list(self._wildcard)

        for sub in targets:
            try:
                sub.callback(payload)
            except Exception:
                logger.exception("Error in %s subscriber %r", event.value, sub.callback)

        for sub in wildcard:
            try:
                sub.callback(event, payload)
            except Exception:
                logger.exception("Error in wildcard subscriber for %s", event.value)

    def clear(self) -> None:
        """Drop every subscriber."""
        with self._lock:
            for subs in self._subscribers.values():
                for sub in subs:
                    sub.active = False
            for sub in self._wildcard:
                sub.active = False
            self._subscribers.clear()
            self._wildcard.clear()
