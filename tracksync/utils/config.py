"""
User configuration management.
"""

import logging
from pathlib import Path
from typing import Any

import yaml

logger = logging.getLogger(__name__)


class Config:
    """User configuration manager."""

    DEFAULT_CONFIG_PATH = Path.home() / ".config" / "tracksync" / "config.yaml"

    DEFAULT_CONFIG = {
        "database_path": "~/.local/share/tracksync/catalog.db",
        "settings_path": "~/.config/tracksync/settings.yaml",
        "log_level": "INFO",
        "max_workers": 4,
        "watch_debounce_seconds": 1.0,
        "embed_artwork": True,
    }

    def __init__(self, config_path: Path | None = None):
        """
        Initialize configuration.

        Args:
            config_path: Path to config file (default: ~/.config/tracksync/config.yaml)
        """
        self.config_path = config_path or self.DEFAULT_CONFIG_PATH
        self.config: dict[str, Any] = {}
        self.load()

    def load(self) -> None:
        """Load configuration from file, or fall back to defaults."""
        self.config = self.DEFAULT_CONFIG.copy()
        if self.config_path.exists():
            try:
                with open(self.config_path) as f:
                    data = yaml.safe_load(f) or {}
                if isinstance(data, dict):
                    self.config.update(data)
                    logger.info(f"Loaded config from {self.config_path}")
                else:
                    logger.error(f"Ignoring config {self.config_path}: not a mapping")
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Error loading config: {e}")
        else:
            logger.info("No config file found, using defaults")

    def get(self, key: str, default: Any = None) -> Any:
        """
        Get configuration value.

        Args:
            key: Configuration key
            default: Default value if key not found

        Returns:
            Configuration value
        """
        return self.config.get(key, default)

    def get_database_path(self) -> Path:
        """Path of the SQLite catalog."""
        return Path(self.get("database_path", self.DEFAULT_CONFIG["database_path"])).expanduser()

    def get_settings_path(self) -> Path:
        """Path of the persisted scan settings."""
        return Path(self.get("settings_path", self.DEFAULT_CONFIG["settings_path"])).expanduser()

    def get_max_workers(self) -> int:
        """Size of the extraction worker pool (at least 1)."""
        try:
            return max(1, int(self.get("max_workers", 4)))
        except (TypeError, ValueError):
            logger.warning("Invalid max_workers %r, using 4", self.get("max_workers"))
            return 4

    def get_debounce_seconds(self) -> float:
        """Delay used to collapse bursts of watcher events for one file."""
        try:
            return max(0.0, float(self.get("watch_debounce_seconds", 1.0)))
        except (TypeError, ValueError):
            return 1.0

    def get_log_level(self) -> int:
        """Logging level as a logging module constant."""
        level = logging.getLevelName(str(self.get("log_level", "INFO")).upper())
        return level if isinstance(level, int) else logging.INFO


# Global config instance
_config: Config | None = None


def get_config() -> Config:
    """
    Get global config instance.

    Returns:
        Config instance
    """
    global _config
    if _config is None:
        _config = Config()
    return _config
