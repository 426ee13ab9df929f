"""Configuration management for place-intel.

Resolve once, freeze, then flow:
- ResolvedConfig: merged configuration with per-field origin for audit
- FrozenConfig: immutable configuration carried through the pipeline
- SourceMap: where each value came from
"""

from .api import get_effective_profile, list_available_profiles, resolve_config
from .audit import SourceTracker, generate_telemetry_summary
from .env_loader import EnvironmentConfigLoader
from .file_loader import ConfigFileError, FileConfigLoader
from .resolver import ConfigResolver
from .schema import SECRET_FIELDS, PlaceIntelSettings
from .types import ConfigOrigin, FrozenConfig, ResolvedConfig, SourceMap

__all__ = [  # noqa: RUF022
    "resolve_config",
    "list_available_profiles",
    "get_effective_profile",
    "ConfigResolver",
    "ConfigFileError",
    "FileConfigLoader",
    "EnvironmentConfigLoader",
    "PlaceIntelSettings",
    "SECRET_FIELDS",
    "SourceTracker",
    "generate_telemetry_summary",
    "ConfigOrigin",
    "SourceMap",
    "ResolvedConfig",
    "FrozenConfig",
]
