"""Loading and persisting .gitagrip.toml through the event bus."""

import threading
from collections import defaultdict
from collections.abc import Iterable
from pathlib import Path

import logbook

from gitagrip.models.config import AppConfig, ConfigError, get_config_file

from .event_bus import EventBus
from .events import (
    ConfigChanged,
    ConfigLoaded,
    ConfigSaved,
    Error,
    RepoDiscovered,
    ReposDiscoveredBatch,
    ScanCompleted,
)
from .utils import safe_handler

log = logbook.Logger(__name__)

# How deep the first-run directory grouping looks
AUTO_GROUP_DEPTH = 3


def auto_groups(
    base_dir: Path, repo_paths: Iterable[str], max_depth: int = AUTO_GROUP_DEPTH
) -> dict[str, list[str]]:
    """Group working copies by the name of their parent directory.

    Repositories directly inside ``base_dir``, outside it or deeper than
    ``max_depth`` stay ungrouped, and a parent only becomes a group when it
    holds at least two repositories.
    """
    by_parent: dict[str, list[str]] = defaultdict(list)
    for path in repo_paths:
        repo_path = Path(path)
        try:
            depth = len(repo_path.relative_to(base_dir).parts)
        except ValueError:
            continue
        if depth < 2 or depth > max_depth:
            continue
        by_parent[repo_path.parent.name].append(str(repo_path))
    return {
        name: sorted(paths)
        for name, paths in sorted(by_parent.items())
        if len(paths) >= 2
    }


class ConfigService:
    """Owns the AppConfig of one base directory.

    On first run there is no file yet. The directory groups are built from
    the repositories the first scan reports, then the file is created and a
    second ConfigLoaded carries the new groups.
    """

    def __init__(self, bus: EventBus, base_dir: Path) -> None:
        self._bus = bus
        self.base_dir = base_dir
        self.config = AppConfig(base_dir=str(base_dir))
        # Never overwrite a file we failed to parse
        self._writable = True

        self._lock = threading.Lock()
        self._seeding = False
        self._discovered: list[str] = []

        self._unsubscribers = [
            bus.subscribe(ConfigChanged, self._on_config_changed),
        ] + [
            bus.subscribe(event_type, self._on_scan_event)
            for event_type in (RepoDiscovered, ReposDiscoveredBatch, ScanCompleted)
        ]

    @property
    def path(self) -> Path:
        return get_config_file(self.base_dir)

    def load(self) -> AppConfig:
        """Load the config. A missing file is created after the first scan."""
        existed = self.path.exists()
        try:
            self.config = AppConfig.load(self.base_dir)
        except ConfigError as e:
            log.error("{}", e)
            self._writable = False
            self.config = AppConfig(base_dir=str(self.base_dir))
            self._bus.publish(Error(message="Failed to load config, using defaults", cause=e))
        else:
            if self.config.ignored_groups:
                names = ", ".join(repr(name) for name in self.config.ignored_groups)
                log.warning("Ignoring invalid groups in {}: {}", self.path, names)
                self._bus.publish(Error(message=f"Ignored invalid groups in config: {names}"))
            if not existed:
                with self._lock:
                    self._seeding = True
                    self._discovered = []

        self._bus.publish(
            ConfigLoaded(base_dir=self.config.base_dir, groups=dict(self.config.groups))
        )
        return self.config

    def save(self) -> bool:
        """Write the config, publishing Error on failure."""
        if not self._writable:
            log.warning("Not saving {}: it could not be parsed at startup", self.path)
            return False
        try:
            self.config.save()
        except OSError as e:
            log.error("Failed to save {}: {}", self.path, e)
            self._bus.publish(Error(message=f"Failed to save config: {e}", cause=e))
            return False
        log.debug("Saved {}", self.path)
        return True

    def update(self, groups: dict[str, list[str]], group_order: list[str]) -> bool:
        """Replace the persisted grouping and save."""
        with self._lock:
            # A grouping chosen by the user wins over directory groups
            self._seeding = False
        self.config.groups = {name: list(paths) for name, paths in groups.items()}
        self.config.group_order = list(group_order)
        return self.save()

    def close(self) -> None:
        for unsubscribe in self._unsubscribers:
            unsubscribe()

    @safe_handler
    def _on_config_changed(self, event: ConfigChanged) -> None:
        if self.update(event.groups, list(event.group_order)):
            self._bus.publish(ConfigSaved())

    @safe_handler
    def _on_scan_event(self, event: object) -> None:
        with self._lock:
            if not self._seeding:
                return
            if isinstance(event, RepoDiscovered):
                self._discovered.append(event.repo.path)
                return
            if isinstance(event, ReposDiscoveredBatch):
                self._discovered.extend(repo.path for repo in event.repos)
                return
            self._seeding = False
            discovered, self._discovered = self._discovered, []

        groups = auto_groups(self.base_dir, discovered)
        self.config.groups = groups
        self.config.group_order = list(groups)
        log.info("Creating {} with {} directory groups", self.path, len(groups))
        if self.save() and groups:
            self._bus.publish(ConfigLoaded(base_dir=self.config.base_dir, groups=dict(groups)))
