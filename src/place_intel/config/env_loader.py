"""Environment variable configuration loading.

Reads PLACE_INTEL_* variables, optionally after loading a .env file. Values
are returned as raw strings; the schema coerces them during resolution.
"""

import os
from pathlib import Path
from typing import Any

from .schema import SECRET_FIELDS, PlaceIntelSettings

ENV_PREFIX = "PLACE_INTEL_"


def env_var_name(field: str) -> str:
    """Environment variable that feeds `field`."""
    return f"{ENV_PREFIX}{field.upper()}"


class EnvironmentConfigLoader:
    """Loads configuration from PLACE_INTEL_* environment variables."""

    def load_env_config(self, env_file: str | Path | None = None) -> dict[str, Any]:
        """Return the configuration fields that are set in the environment.

        Args:
            env_file: Optional .env file whose values are loaded into the
                environment first. Existing variables are not overridden.

        Raises:
            FileNotFoundError: If `env_file` does not exist.
            ValueError: If `env_file` is malformed.
        """
        if env_file:
            self._load_env_file(env_file)

        values: dict[str, Any] = {}
        for field in PlaceIntelSettings.model_fields:
            raw = os.environ.get(env_var_name(field))
            if raw is not None:
                values[field] = raw
        return values

    def _load_env_file(self, env_file: str | Path) -> None:
        """Load KEY=VALUE lines from a .env file into os.environ."""
        env_path = Path(env_file)
        if not env_path.exists():
            raise FileNotFoundError(f"Environment file not found: {env_path}")

        try:
            lines = env_path.read_text(encoding="utf-8").splitlines()
        except OSError as e:
            raise ValueError(f"Failed to read environment file {env_path}: {e}") from e

        for line_num, line in enumerate(lines, 1):
            line = line.strip()
            if not line or line.startswith("#"):
                continue
            if "=" not in line:
                raise ValueError(
                    f"Invalid format at line {line_num}: {line}. "
                    "Expected KEY=VALUE format."
                )
            key, value = (part.strip() for part in line.split("=", 1))
            if len(value) >= 2 and value[0] == value[-1] and value[0] in "\"'":
                value = value[1:-1]
            os.environ.setdefault(key, value)

    def get_env_summary(self) -> dict[str, str]:
        """Current PLACE_INTEL_* variables with secret values redacted."""
        summary = {}
        for field in PlaceIntelSettings.model_fields:
            name = env_var_name(field)
            if name in os.environ:
                summary[name] = (
                    "<redacted>" if field in SECRET_FIELDS else os.environ[name]
                )
        return summary
