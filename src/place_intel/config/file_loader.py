"""File-based configuration loading with profile support.

Configuration comes from the project's pyproject.toml (`[tool.place_intel]`)
and from a home file (`~/.config/place_intel.toml`), each optionally with
named profiles.
"""

import os
from pathlib import Path
import tomllib
from typing import Any

from place_intel.core.exceptions import ConfigurationError

_TOOL_TABLE = "place_intel"


class ConfigFileError(ConfigurationError):
    """Raised when configuration file loading fails."""

    def __init__(
        self, file_path: Path, message: str, cause: Exception | None = None
    ) -> None:
        """Initialize with file path, message, and optional cause."""
        self.file_path = file_path
        self.message = message
        self.cause = cause
        super().__init__(f"Config file error in {file_path}: {message}")


def _read_toml(path: Path) -> dict[str, Any]:
    try:
        with path.open(mode="rb") as f:
            return tomllib.load(f)
    except (OSError, tomllib.TOMLDecodeError) as e:
        raise ConfigFileError(path, f"Failed to parse TOML: {e}", cause=e) from e


def _select_profile(
    table: dict[str, Any], profile: str | None, path: Path
) -> dict[str, Any]:
    profiles = table.get("profiles", {})
    if profile:
        if profile not in profiles:
            raise ConfigFileError(
                path,
                f"Profile '{profile}' not found. Available profiles: {list(profiles)}",
            )
        return dict(profiles[profile])
    config = dict(table)
    config.pop("profiles", None)
    return config


class FileConfigLoader:
    """Loads configuration from TOML files with profile support."""

    def load_project_config(
        self, project_root: Path | None = None, profile: str | None = None
    ) -> dict[str, Any]:
        """Load `[tool.place_intel]` (or one of its profiles) from pyproject.toml.

        Returns an empty dict when there is no file or no table.

        Raises:
            ConfigFileError: If the file exists but cannot be parsed, or the
                requested profile is missing.
        """
        pyproject_path = self._find_pyproject_toml(project_root)
        if pyproject_path is None:
            return {}
        table = _read_toml(pyproject_path).get("tool", {}).get(_TOOL_TABLE, {})
        if not table:
            return {}
        return _select_profile(table, profile, pyproject_path)

    def load_home_config(self, profile: str | None = None) -> dict[str, Any]:
        """Load the home file (root level, or `[profiles.<name>]`).

        Raises:
            ConfigFileError: If the file exists but cannot be parsed, or the
                requested profile is missing.
        """
        home_config_path = self._get_home_config_path()
        if not home_config_path.exists():
            return {}
        return _select_profile(_read_toml(home_config_path), profile, home_config_path)

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """List profile names found in the project and home files."""
        profiles: dict[str, list[str]] = {"project": [], "home": []}
        pyproject_path = self._find_pyproject_toml(project_root)
        if pyproject_path is not None:
            try:
                table = _read_toml(pyproject_path).get("tool", {}).get(_TOOL_TABLE, {})
                profiles["project"] = list(table.get("profiles", {}))
            except ConfigFileError:
                pass
        home_path = self._get_home_config_path()
        if home_path.exists():
            try:
                profiles["home"] = list(_read_toml(home_path).get("profiles", {}))
            except ConfigFileError:
                pass
        return profiles

    def _find_pyproject_toml(self, start_dir: Path | None = None) -> Path | None:
        """Find pyproject.toml by searching up from `start_dir` (or the cwd).

        PLACE_INTEL_PYPROJECT_PATH pins the file explicitly.
        """
        override = os.getenv("PLACE_INTEL_PYPROJECT_PATH")
        if override:
            path = Path(override)
            return path if path.exists() else None

        current = Path(start_dir or Path.cwd()).resolve()
        while current != current.parent:
            candidate = current / "pyproject.toml"
            if candidate.exists():
                return candidate
            current = current.parent
        return None

    def _get_home_config_path(self) -> Path:
        """Return the home config path, honoring PLACE_INTEL_CONFIG_HOME."""
        override = os.getenv("PLACE_INTEL_CONFIG_HOME")
        if override:
            return Path(override)
        return Path.home() / ".config" / "place_intel.toml"
