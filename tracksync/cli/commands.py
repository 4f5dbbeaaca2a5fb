"""
CLI commands for TrackSync.
"""

import json
import logging
import sys
import time
from dataclasses import dataclass, replace
from pathlib import Path
from typing import Any

import click
import yaml

from tracksync import __version__
from tracksync.core.catalog_db import CatalogDB
from tracksync.core.errors import TrackSyncError
from tracksync.core.events import CatalogEvent, EventBus
from tracksync.core.fs_bridge import LocalFilesystem
from tracksync.core.metadata_extractor import MetadataExtractor
from tracksync.core.scan_orchestrator import ScanOrchestrator, ScanSummary
from tracksync.core.settings_manager import SettingsManager
from tracksync.core.track import normalize_path
from tracksync.core.watch_manager import WatchManager
from tracksync.utils.config import Config, get_config

logger = logging.getLogger(__name__)

_FILE_EVENTS = (CatalogEvent.FILE_ADDED, CatalogEvent.FILE_CHANGED, CatalogEvent.FILE_REMOVED)


@dataclass
class Services:
    """Everything a command needs, wired from one Config."""

    config: Config
    event_bus: EventBus
    catalog: CatalogDB
    settings_manager: SettingsManager
    watch_manager: WatchManager
    orchestrator: ScanOrchestrator

    def close(self) -> None:
        self.orchestrator.shutdown()
        self.catalog.close()


def build_services(config: Config) -> Services:
    """Wire the catalog, extractor, watchers and orchestrator from config."""
    event_bus = EventBus()
    bridge = LocalFilesystem()
    db_path = config.get_database_path()
    db_path.parent.mkdir(parents=True, exist_ok=True)
    catalog = CatalogDB(db_path)

    embed_artwork = bool(config.get("embed_artwork", True))
    extractor = MetadataExtractor(bridge, catalog, embed_artwork=embed_artwork)
    watch_manager = WatchManager(
        extractor, catalog, event_bus, debounce_seconds=config.get_debounce_seconds()
    )
    settings_manager = SettingsManager(config.get_settings_path(), watch_manager, event_bus)
    orchestrator = ScanOrchestrator(
        settings_manager,
        catalog,
        extractor,
        watch_manager,
        event_bus,
        bridge,
        max_workers=config.get_max_workers(),
    )
    return Services(config, event_bus, catalog, settings_manager, watch_manager, orchestrator)


def _fail(message: str) -> None:
    click.echo(f"Error: {message}", err=True)
    sys.exit(1)


def _print_summary(summary: ScanSummary) -> None:
    click.echo(f"Scanned {summary.scanned_files}/{summary.total_files} files")
    click.echo(f"  Added:     {summary.added}")
    click.echo(f"  Updated:   {summary.updated}")
    click.echo(f"  Unchanged: {summary.skipped}")
    if summary.errors:
        click.echo(f"  Errors:    {len(summary.errors)}")
        for error in summary.errors:
            click.echo(f"    {error}", err=True)


def _parse_value(raw: str) -> Any:
    """Interpret a command-line value as YAML so booleans and lists work."""
    try:
        return yaml.safe_load(raw)
    except yaml.YAMLError:
        return raw


@click.group()
@click.version_option(version=__version__)
@click.option(
    "--config",
    "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Config file (default: ~/.config/tracksync/config.yaml)",
)
@click.pass_context
def cli(ctx: click.Context, config_path: Path | None) -> None:
    """TrackSync - keep a music catalog in sync with your folders."""
    config = Config(config_path) if config_path else get_config()
    logging.basicConfig(
        level=config.get_log_level(),
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    try:
        services = build_services(config)
    except (TrackSyncError, OSError) as e:
        _fail(str(e))
    ctx.obj = services
    ctx.call_on_close(services.close)


@cli.command()
@click.option("--force", is_flag=True, help="Re-read every file even if unchanged")
@click.pass_obj
def scan(services: Services, force: bool) -> None:
    """Scan all configured directories."""
    if not services.settings_manager.settings.music_directories:
        _fail("No music directories configured (use `tracksync add DIR`)")

    try:
        summary = services.orchestrator.scan_all(force_rescan=force)
    except TrackSyncError as e:
        _fail(str(e))
    _print_summary(summary)


@cli.command()
@click.argument("directory", type=click.Path(exists=True, file_okay=False, path_type=Path))
@click.pass_obj
def add(services: Services, directory: Path) -> None:
    """
    Add a music directory and index it.

    DIRECTORY: Folder containing audio files
    """
    try:
        summary = services.orchestrator.add_directory(str(directory))
    except TrackSyncError as e:
        _fail(str(e))

    click.echo(f"Added directory: {normalize_path(directory)}")
    if summary is not None:
        _print_summary(summary)


@cli.command()
@click.argument("directory", type=click.Path(path_type=Path))
@click.pass_obj
def remove(services: Services, directory: Path) -> None:
    """
    Remove a music directory and its tracks from the catalog.

    DIRECTORY: Previously added folder
    """
    configured = services.settings_manager.settings.music_directories
    if normalize_path(directory) not in configured:
        _fail(f"Directory not configured: {directory}")

    try:
        removed = services.orchestrator.remove_directory(str(directory))
    except TrackSyncError as e:
        _fail(str(e))
    click.echo(f"Removed directory: {directory} ({removed} tracks)")


@cli.command("list-dirs")
@click.pass_obj
def list_dirs(services: Services) -> None:
    """List configured music directories."""
    directories = services.settings_manager.settings.music_directories
    if not directories:
        click.echo("No music directories configured")
        return
    for directory in directories:
        click.echo(directory)


@cli.command()
@click.pass_obj
def watch(services: Services) -> None:
    """Watch configured directories and update the catalog until interrupted."""
    settings = services.settings_manager.settings
    if not settings.music_directories:
        _fail("No music directories configured (use `tracksync add DIR`)")

    def report(event: CatalogEvent, payload: dict[str, Any]) -> None:
        if event in _FILE_EVENTS:
            click.echo(f"{event.value}: {payload['file_path']}")
        elif event is CatalogEvent.WATCHER_ERROR:
            click.echo(f"Watcher error: {payload['path']}: {payload['error']}", err=True)

    services.event_bus.subscribe_all(report)
    services.watch_manager.sync(replace(settings, watch_for_changes=True))
    if settings.scan_on_startup:
        try:
            _print_summary(services.orchestrator.scan_all())
        except TrackSyncError as e:
            _fail(str(e))

    roots = services.watch_manager.watched_roots
    click.echo(f"Watching {len(roots)} directories (Ctrl+C to stop)")
    try:
        while True:
            time.sleep(1)
    except KeyboardInterrupt:
        click.echo("\nStopping watchers")


@cli.command()
@click.option(
    "--format",
    "-f",
    type=click.Choice(["text", "json"]),
    default="text",
    help="Output format (default: text)",
)
@click.pass_obj
def stats(services: Services, format: str) -> None:
    """Display catalog statistics."""
    data: dict[str, Any] = dict(services.catalog.stats())
    data["directories"] = services.settings_manager.settings.music_directories

    if format == "json":
        click.echo(json.dumps(data, indent=2))
        return

    minutes, seconds = divmod(int(data["total_duration"]) // 1000, 60)
    hours, minutes = divmod(minutes, 60)
    click.echo(f"Tracks:   {data['total_tracks']}")
    click.echo(f"Albums:   {data['total_albums']}")
    click.echo(f"Artists:  {data['total_artists']}")
    click.echo(f"Duration: {hours}:{minutes:02d}:{seconds:02d}")
    click.echo(f"Directories: {len(data['directories'])}")


@cli.command()
@click.pass_obj
def cleanup(services: Services) -> None:
    """Remove catalog entries whose files no longer exist."""
    try:
        removed = services.orchestrator.cleanup_orphans()
    except TrackSyncError as e:
        _fail(str(e))
    click.echo(f"Removed {removed} orphaned tracks")


@cli.group()
def settings() -> None:
    """Show or change scan settings."""
    pass


@settings.command("show")
@click.pass_obj
def settings_show(services: Services) -> None:
    """Print the current scan settings as YAML."""
    click.echo(yaml.safe_dump(services.settings_manager.settings.to_dict(), sort_keys=False))


@settings.command("set")
@click.argument("key")
@click.argument("value")
@click.pass_obj
def settings_set(services: Services, key: str, value: str) -> None:
    """
    Change one scan setting.

    KEY: Setting name (e.g. watch_for_changes)
    VALUE: New value, parsed as YAML (e.g. false, [mp3, flac])
    """
    try:
        services.settings_manager.update(**{key: _parse_value(value)})
    except (ValueError, TrackSyncError) as e:
        _fail(str(e))
    click.echo(f"{key} = {getattr(services.settings_manager.settings, key)!r}")


def main() -> None:
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
