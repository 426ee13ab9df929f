"""Core configuration data types.

This module defines the data structures used throughout the configuration
system, following the resolve-once, freeze-then-flow pattern.
"""

from collections.abc import Mapping
from dataclasses import dataclass, fields
from types import MappingProxyType
from typing import Any, Literal, NamedTuple

from .schema import SECRET_FIELDS

# --- Source Tracking Types ---

ConfigOrigin = Literal["programmatic", "env", "file", "default"]
SourceMap = Mapping[str, ConfigOrigin]


def _display(name: str, value: Any) -> str:
    if name not in SECRET_FIELDS or value is None:
        return repr(value)
    if isinstance(value, Mapping):
        # Endpoint names are not secret, their keys are
        return repr({k: "[REDACTED]" for k in value})
    return "'[REDACTED]'" if value else "''"


class ResolvedConfig(NamedTuple):
    """Configuration after resolution from all sources, before freezing.

    Holds the validated, merged result of programmatic overrides, environment
    variables, files and defaults, plus the origin of every field.
    """

    api_key: str | None
    model: str
    use_real_api: bool
    temperature: float
    max_output_tokens: int
    naver_client_id: str | None
    naver_client_secret: str | None
    naver_map_key_id: str | None
    naver_map_key: str | None
    data_go_kr_key: str | None
    sbiz_keys: Mapping[str, str]
    seoul_api_key: str | None
    global_deadline_s: float
    provider_timeout_s: float
    generation_timeout_s: float
    max_concurrency: int
    enrichment_batch_size: int
    neighbor_limit: int
    requests_per_minute: int

    # Audit metadata - where each field value came from
    origin: SourceMap

    def __str__(self) -> str:
        """String representation with secrets redacted for safe logging."""
        parts = [
            f"{name}={_display(name, getattr(self, name))}"
            for name in self._fields
            if name != "origin"
        ]
        parts.append(f"origin={dict(self.origin)!r}")
        return f"ResolvedConfig({', '.join(parts)})"

    def __repr__(self) -> str:
        """Repr with secrets redacted for safe debugging."""
        return self.__str__()

    def to_frozen(self) -> "FrozenConfig":
        """Convert to the immutable configuration used in the pipeline."""
        values = self._asdict()
        values.pop("origin")
        values["sbiz_keys"] = MappingProxyType(dict(values["sbiz_keys"]))
        return FrozenConfig(**values)

    def with_overrides(self, **overrides: object) -> "ResolvedConfig":
        """Create a new ResolvedConfig with programmatic overrides applied.

        Unknown fields are ignored.
        """
        new_values = self._asdict()
        new_origin = dict(self.origin)
        for field, value in overrides.items():
            if field in new_values and field != "origin":
                new_values[field] = value
                new_origin[field] = "programmatic"
        new_values["origin"] = new_origin
        return ResolvedConfig(**new_values)

    def audit(self) -> str:
        """Redacted report of where each field came from, one line per field."""
        lines = []
        for field in self._fields:
            if field == "origin" or field not in self.origin:
                continue
            origin = self.origin[field]
            value = getattr(self, field)
            if field in SECRET_FIELDS:
                if not value:
                    display = f"{origin}:None"
                elif origin == "env":
                    display = "env:[REDACTED]"
                else:
                    display = f"{origin}:<redacted>"
            elif origin == "env":
                display = f"env:PLACE_INTEL_{field.upper()}={value}"
            else:
                display = f"{origin}:{value}"
            lines.append(f"{field}: {display}")
        return "\n".join(lines)


@dataclass(frozen=True)
class FrozenConfig:
    """Immutable configuration attached to commands in the pipeline.

    Contains only field values, no audit metadata. Handlers receive this
    object and read fields as attributes.
    """

    api_key: str | None
    model: str
    use_real_api: bool
    temperature: float
    max_output_tokens: int
    naver_client_id: str | None
    naver_client_secret: str | None
    naver_map_key_id: str | None
    naver_map_key: str | None
    data_go_kr_key: str | None
    sbiz_keys: Mapping[str, str]
    seoul_api_key: str | None
    global_deadline_s: float
    provider_timeout_s: float
    generation_timeout_s: float
    max_concurrency: int
    enrichment_batch_size: int
    neighbor_limit: int
    requests_per_minute: int

    def __str__(self) -> str:
        """String representation with secrets redacted for safe logging."""
        parts = [f"{f.name}={_display(f.name, getattr(self, f.name))}" for f in fields(self)]
        return f"FrozenConfig({', '.join(parts)})"

    def __repr__(self) -> str:
        """Representation with secrets redacted for safe debugging."""
        return self.__str__()

    def sbiz_key(self, endpoint: str) -> str | None:
        """Return the certification key for an sbiz endpoint, if configured.

        A `default` entry applies to endpoints without their own key.
        """
        return self.sbiz_keys.get(endpoint) or self.sbiz_keys.get("default")
