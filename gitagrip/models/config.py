"""Per-directory configuration stored in .gitagrip.toml."""

import tomllib
from dataclasses import dataclass, field
from pathlib import Path

import tomli_w

CONFIG_FILENAME = ".gitagrip.toml"
CONFIG_VERSION = 1


class ConfigError(Exception):
    """Exception raised when the config file cannot be read or parsed."""

    pass


def get_config_file(base_dir: Path) -> Path:
    """Get the configuration file path for a base directory."""
    return base_dir / CONFIG_FILENAME


@dataclass
class AppConfig:
    """Application configuration for one base directory."""

    base_dir: str = ""
    version: int = CONFIG_VERSION

    # Group name -> ordered absolute repository paths
    groups: dict[str, list[str]] = field(default_factory=dict)
    group_order: list[str] = field(default_factory=list)

    # UI settings
    ui_show_ahead_behind: bool = True
    ui_autosave_on_exit: bool = True

    # Group names dropped while loading, never saved
    ignored_groups: list[str] = field(default_factory=list, repr=False, compare=False)

    @property
    def path(self) -> Path:
        return get_config_file(Path(self.base_dir))

    def save(self) -> None:
        """Save configuration to file."""
        with open(self.path, "wb") as f:
            tomli_w.dump(self._to_dict(), f)

    def _to_dict(self) -> dict:
        """Convert to dictionary."""
        data: dict = {
            "version": self.version,
            "base_dir": self.base_dir,
            "groups": {name: list(paths) for name, paths in self.groups.items()},
            "ui": {
                "show_ahead_behind": self.ui_show_ahead_behind,
                "autosave_on_exit": self.ui_autosave_on_exit,
            },
        }
        if self.group_order:
            data["group_order"] = list(self.group_order)
        return data

    @classmethod
    def load(cls, base_dir: Path) -> "AppConfig":
        """Load configuration from the base directory.

        Returns defaults when the file does not exist. Raises ConfigError
        when it exists but cannot be read or parsed.
        """
        config_file = get_config_file(base_dir)
        if not config_file.exists():
            return cls(base_dir=str(base_dir))

        try:
            with open(config_file, "rb") as f:
                data = tomllib.load(f)
        except (OSError, tomllib.TOMLDecodeError) as e:
            raise ConfigError(f"Failed to read {config_file}: {e}") from e

        config = cls._from_dict(data)
        # The file may have been copied from another directory
        config.base_dir = str(base_dir)
        return config

    @classmethod
    def _from_dict(cls, data: dict) -> "AppConfig":
        """Create from dictionary, dropping fields of the wrong type."""
        ui = data.get("ui", {})
        if not isinstance(ui, dict):
            ui = {}

        groups: dict[str, list[str]] = {}
        ignored: list[str] = []
        raw_groups = data.get("groups", {})
        if isinstance(raw_groups, dict):
            for raw_name, paths in raw_groups.items():
                name = raw_name.strip()
                if not name or not isinstance(paths, list):
                    ignored.append(raw_name)
                    continue
                # "work" and "work " are the same group
                groups[name] = _unique_strings(groups.get(name, []) + paths)

        group_order = data.get("group_order", [])
        if not isinstance(group_order, list):
            group_order = []
        group_order = [n.strip() for n in group_order if isinstance(n, str)]

        version = data.get("version", CONFIG_VERSION)
        base_dir = data.get("base_dir", "")

        return cls(
            base_dir=base_dir if isinstance(base_dir, str) else "",
            version=version if isinstance(version, int) else CONFIG_VERSION,
            groups=groups,
            group_order=_unique_strings(group_order),
            ui_show_ahead_behind=_bool(ui.get("show_ahead_behind"), True),
            ui_autosave_on_exit=_bool(ui.get("autosave_on_exit"), True),
            ignored_groups=ignored,
        )

    def ordered_group_names(self) -> list[str]:
        """Group names in persisted order, unknown groups appended by name."""
        names = [name for name in self.group_order if name in self.groups]
        names.extend(sorted(name for name in self.groups if name not in names))
        return names


def _bool(value: object, default: bool) -> bool:
    return value if isinstance(value, bool) else default


def _unique_strings(values: list) -> list[str]:
    seen: list[str] = []
    for value in values:
        if isinstance(value, str) and value and value not in seen:
            seen.append(value)
    return seen
