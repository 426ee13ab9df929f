"""Configuration source tracking."""

from typing import Any

from .types import ConfigOrigin, SourceMap


class SourceTracker:
    """Tracks the origin of configuration values during resolution."""

    def __init__(self) -> None:
        """Initialize an empty source tracker."""
        self._origins: dict[str, ConfigOrigin] = {}

    def set_origin(self, field: str, origin: ConfigOrigin) -> None:
        """Record the origin of a configuration field."""
        self._origins[field] = origin

    def set_multiple(self, fields: dict[str, Any], origin: ConfigOrigin) -> None:
        """Record the same origin for several fields."""
        for field in fields:
            self._origins[field] = origin

    def get_source_map(self) -> SourceMap:
        """Return a copy of the current source map."""
        return dict(self._origins)


def generate_telemetry_summary(source_map: SourceMap) -> dict[str, int]:
    """Count fields per origin (e.g. {"env": 3, "default": 12})."""
    counts: dict[str, int] = {}
    for origin in source_map.values():
        counts[origin] = counts.get(origin, 0) + 1
    return counts
