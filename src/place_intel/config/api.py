"""Public API for the configuration system."""

from pathlib import Path
from typing import Any

from .resolver import ConfigResolver
from .types import ResolvedConfig

_resolver = ConfigResolver()


def resolve_config(
    programmatic: dict[str, Any] | None = None,
    *,
    profile: str | None = None,
    use_env_file: str | Path | None = None,
    project_root: Path | None = None,
) -> ResolvedConfig:
    """Resolve configuration from all sources with proper precedence.

    Programmatic > Environment > Project file > Home file > Defaults.

    Example:
        config = resolve_config({"use_real_api": True, "api_key": "..."})
        executor = create_executor(config.to_frozen())
    """
    return _resolver.resolve(
        programmatic=programmatic,
        profile=profile,
        use_env_file=use_env_file,
        project_root=project_root,
    )


def list_available_profiles(project_root: Path | None = None) -> dict[str, list[str]]:
    """List profiles defined in the project and home configuration files."""
    return _resolver.list_available_profiles(project_root)


def get_effective_profile() -> str | None:
    """Return the profile selected through PLACE_INTEL_PROFILE, if any."""
    return _resolver.get_effective_profile()
