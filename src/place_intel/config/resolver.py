"""Configuration resolution with precedence handling.

Merges configuration from every source in the documented order:
Programmatic > Environment > Project file > Home file > Defaults
"""

import logging
import os
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from place_intel.core.exceptions import ConfigurationError

from .audit import SourceTracker
from .env_loader import EnvironmentConfigLoader
from .file_loader import ConfigFileError, FileConfigLoader
from .schema import PlaceIntelSettings
from .types import ConfigOrigin, ResolvedConfig

log = logging.getLogger(__name__)


class ConfigResolver:
    """Resolves configuration from multiple sources with proper precedence."""

    def __init__(self) -> None:
        """Initialize the configuration resolver."""
        self.file_loader = FileConfigLoader()
        self.env_loader = EnvironmentConfigLoader()

    def resolve(
        self,
        programmatic: dict[str, Any] | None = None,
        *,
        profile: str | None = None,
        use_env_file: str | Path | None = None,
        project_root: Path | None = None,
    ) -> ResolvedConfig:
        """Resolve configuration from all sources with proper precedence.

        Args:
            programmatic: Programmatic overrides (highest precedence).
            profile: Profile name to load from files; defaults to
                PLACE_INTEL_PROFILE.
            use_env_file: Optional .env file to load.
            project_root: Directory to search for pyproject.toml.

        Raises:
            ConfigurationError: If validation fails or the environment is
                malformed.
            ConfigFileError: If the project configuration file is malformed.
        """
        source_tracker = SourceTracker()
        merged_config: dict[str, Any] = {}

        if profile is None:
            profile = self.get_effective_profile()

        def apply(values: dict[str, Any], origin: ConfigOrigin) -> None:
            for field, value in values.items():
                if field in merged_config:  # Only override known fields
                    merged_config[field] = value
                    source_tracker.set_origin(field, origin)

        # Defaults straight from the schema, without reading the environment
        for field, value in PlaceIntelSettings.model_construct().to_dict().items():
            merged_config[field] = value
            source_tracker.set_origin(field, "default")

        try:
            apply(self.file_loader.load_home_config(profile=profile), "file")
        except ConfigFileError as e:
            # Home config errors are non-fatal
            log.warning("Ignoring home configuration: %s", e)

        try:
            apply(
                self.file_loader.load_project_config(
                    project_root=project_root, profile=profile
                ),
                "file",
            )
        except ConfigFileError:
            if profile is None:
                raise
            log.debug("Profile %r not present in project configuration", profile)

        try:
            apply(self.env_loader.load_env_config(env_file=use_env_file), "env")
        except (ValueError, FileNotFoundError) as e:
            raise ConfigurationError(f"Environment configuration error: {e}") from e

        if programmatic:
            apply(programmatic, "programmatic")

        try:
            validated = PlaceIntelSettings.model_validate(merged_config)
        except ValidationError as e:
            raise ConfigurationError(f"Configuration validation failed: {e}") from e

        return ResolvedConfig(
            **validated.to_dict(), origin=source_tracker.get_source_map()
        )

    def get_effective_profile(self) -> str | None:
        """Profile name from PLACE_INTEL_PROFILE, or None."""
        return os.getenv("PLACE_INTEL_PROFILE") or None

    def list_available_profiles(
        self, project_root: Path | None = None
    ) -> dict[str, list[str]]:
        """List profile names from the project and home files."""
        return self.file_loader.list_available_profiles(project_root)
