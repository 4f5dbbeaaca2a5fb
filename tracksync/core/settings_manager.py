"""
Scan settings and their persistence.

Settings live in a single YAML mapping that is rewritten atomically on every
change. Changing a watch-related field restarts or stops the watchers.
"""

from __future__ import annotations

import logging
import os
import tempfile
from dataclasses import asdict, dataclass, field, fields, replace
from pathlib import Path
from typing import TYPE_CHECKING, Any

import yaml

from tracksync.core.audio_scanner import DEFAULT_EXTENSIONS
from tracksync.core.errors import SettingsStoreError
from tracksync.core.events import CatalogEvent, EventBus
from tracksync.core.track import normalize_path

if TYPE_CHECKING:
    from tracksync.core.watch_manager import WatchManager

logger = logging.getLogger(__name__)

DEFAULT_EXCLUDE_PATTERNS = [
    "node_modules",
    ".git",
    "System Volume Information",
    "Thumbs.db",
    ".DS_Store",
]

# Fields whose change alters what the watchers see
_WATCH_FILTER_FIELDS = {"include_subdirectories", "exclude_patterns", "supported_formats"}


@dataclass
class ScanSettings:
    """User-facing scan configuration."""

    music_directories: list[str] = field(default_factory=list)
    include_subdirectories: bool = True
    supported_formats: list[str] = field(default_factory=lambda: list(DEFAULT_EXTENSIONS))
    exclude_patterns: list[str] = field(default_factory=lambda: list(DEFAULT_EXCLUDE_PATTERNS))
    watch_for_changes: bool = True
    scan_on_startup: bool = True
    auto_index_new_files: bool = True

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ScanSettings:
        """
        Build settings from stored data.

        Unknown keys and values of the wrong type are dropped with a warning;
        missing ones take their defaults.
        """
        known = {f.name for f in fields(cls)}
        unknown = set(data) - known
        if unknown:
            logger.warning("Ignoring unknown settings: %s", ", ".join(sorted(unknown)))

        values: dict[str, Any] = {}
        for key in known & set(data):
            try:
                values[key] = check_setting(key, data[key])
            except ValueError as e:
                logger.warning(f"Ignoring stored setting: {e}")
        return cls(**values)


def check_setting(name: str, value: Any) -> Any:
    """
    Validate a value for the ScanSettings field name.

    Flags must be booleans. List fields take a list of strings; a bare string
    is treated as a one-item list.

    Raises:
        ValueError: If the value has the wrong type
    """
    if isinstance(getattr(_DEFAULTS, name), bool):
        if not isinstance(value, bool):
            raise ValueError(f"{name} must be true or false, got {value!r}")
        return value

    if isinstance(value, str):
        value = [value]
    if not isinstance(value, (list, tuple)) or not all(isinstance(v, str) for v in value):
        raise ValueError(f"{name} must be a list of strings, got {value!r}")
    return list(value)


_DEFAULTS = ScanSettings()


class SettingsManager:
    """
    Holds ScanSettings and writes them to disk on every mutation.

    Usage::

        manager = SettingsManager(Path("~/.config/tracksync/settings.yaml").expanduser())
        manager.add_directory("/music")
        manager.update(watch_for_changes=False)
    """

    def __init__(
        self,
        path: Path,
        watch_manager: WatchManager | None = None,
        event_bus: EventBus | None = None,
    ):
        """
        Initialize settings manager and load stored settings.

        Args:
            path: YAML file holding the settings
            watch_manager: Watchers to start/stop when watch fields change
            event_bus: Receives settingsUpdated
        """
        self.path = path
        self.watch_manager = watch_manager
        self.event_bus = event_bus
        self._settings = ScanSettings()
        self.load()

    @property
    def settings(self) -> ScanSettings:
        """A copy of the current settings."""
        return replace(
            self._settings,
            music_directories=list(self._settings.music_directories),
            supported_formats=list(self._settings.supported_formats),
            exclude_patterns=list(self._settings.exclude_patterns),
        )

    def load(self) -> None:
        """Load settings from file, or fall back to defaults."""
        if not self.path.exists():
            logger.info("No settings file found, using defaults")
            self._settings = ScanSettings()
            return

        try:
            with open(self.path) as f:
                data = yaml.safe_load(f) or {}
            if not isinstance(data, dict):
                raise ValueError(f"expected a mapping, got {type(data).__name__}")
            self._settings = ScanSettings.from_dict(data)
            logger.info(f"Loaded settings from {self.path}")
        except (OSError, yaml.YAMLError, ValueError, TypeError) as e:
            logger.error(f"Error loading settings: {e}")
            self._settings = ScanSettings()

    def save(self) -> None:
        """
        Write settings atomically (temp file + rename).

        Raises:
            SettingsStoreError: If the file cannot be written
        """
        tmp_name = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                dir=self.path.parent, prefix=f".{self.path.name}.", suffix=".tmp"
            )
            with os.fdopen(fd, "w") as f:
                yaml.safe_dump(self._settings.to_dict(), f, default_flow_style=False)
            os.replace(tmp_name, self.path)
            tmp_name = None
            logger.debug(f"Saved settings to {self.path}")
        except (OSError, yaml.YAMLError) as e:
            logger.error(f"Error saving settings: {e}")
            raise SettingsStoreError(f"Cannot save settings to {self.path}: {e}") from e
        finally:
            if tmp_name is not None and os.path.exists(tmp_name):
                os.unlink(tmp_name)

    def update(self, **changes: Any) -> ScanSettings:
        """
        Change one or more settings, persist, and adjust watchers.

        Args:
            **changes: ScanSettings field values

        Returns:
            The updated settings (copy)

        Raises:
            ValueError: If a key is not a settings field or a value has the wrong type
            SettingsStoreError: If persisting fails
        """
        known = {f.name for f in fields(ScanSettings)}
        unknown = set(changes) - known
        if unknown:
            raise ValueError(f"Unknown settings: {', '.join(sorted(unknown))}")
        changes = {key: check_setting(key, value) for key, value in changes.items()}

        if "music_directories" in changes:
            changes["music_directories"] = _dedupe(
                normalize_path(d) for d in changes["music_directories"]
            )

        previous = self._settings
        self._settings = replace(previous, **changes)
        try:
            self.save()
        except SettingsStoreError:
            self._settings = previous
            raise

        self._sync_watchers(previous, set(changes))
        self._notify()
        return self.settings

    def add_directory(self, root: str) -> bool:
        """
        Add a root directory.

        Returns:
            False if the root was already configured
        """
        key = normalize_path(root)
        if key in self._settings.music_directories:
            return False
        self.update(music_directories=[*self._settings.music_directories, key])
        return True

    def remove_directory(self, root: str) -> bool:
        """
        Remove a root directory.

        Returns:
            False if the root was not configured
        """
        key = normalize_path(root)
        if key not in self._settings.music_directories:
            return False
        self.update(music_directories=[d for d in self._settings.music_directories if d != key])
        return True

    def _sync_watchers(self, previous: ScanSettings, changed: set[str]) -> None:
        if self.watch_manager is None:
            return
        current = self._settings
        if "watch_for_changes" in changed and not current.watch_for_changes:
            self.watch_manager.stop_all()
        elif "watch_for_changes" in changed and not previous.watch_for_changes:
            self.watch_manager.sync(current)
        elif current.watch_for_changes and changed & _WATCH_FILTER_FIELDS:
            # Filters are baked into each subscription, so rebuild them
            self.watch_manager.sync(current, restart=True)
        elif current.watch_for_changes and "music_directories" in changed:
            self.watch_manager.sync(current)

    def _notify(self) -> None:
        if self.event_bus is not None:
            self.event_bus.emit(CatalogEvent.SETTINGS_UPDATED, settings=self.settings.to_dict())


def _dedupe(items: Any) -> list[str]:
    seen: list[str] = []
    for item in items:
        if item not in seen:
            seen.append(item)
    return seen
