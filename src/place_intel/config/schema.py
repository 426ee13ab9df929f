"""Configuration schema and validation using Pydantic.

This module defines the settings schema that validates and coerces
configuration values from every source (environment, files, programmatic)
into the correct types with proper defaults.
"""

import json
from typing import Annotated, Any

from pydantic import Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

# Fields whose values never appear in logs, reprs or audits.
SECRET_FIELDS = frozenset(
    {
        "api_key",
        "naver_client_secret",
        "naver_map_key",
        "data_go_kr_key",
        "sbiz_keys",
        "seoul_api_key",
    }
)


class PlaceIntelSettings(BaseSettings):
    """Pydantic settings schema for place-intel configuration.

    Handles validation, type coercion and defaults for every configuration
    field. Environment variables use the PLACE_INTEL_ prefix.
    """

    model_config = SettingsConfigDict(
        env_prefix="PLACE_INTEL_",
        env_file=None,  # Only used when explicitly requested
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # --- Generative model ---

    api_key: str | None = Field(default=None, description="Gemini API key")
    model: str = Field(default="gemini-2.5-flash", min_length=1)
    use_real_api: bool = Field(
        default=False,
        description="Call the real model instead of the deterministic mock",
    )
    temperature: float = Field(default=0.4, ge=0.0, le=2.0)
    max_output_tokens: int = Field(default=4096, ge=64)

    # --- Upstream data services ---

    naver_client_id: str | None = None
    naver_client_secret: str | None = None
    naver_map_key_id: str | None = None
    naver_map_key: str | None = None
    data_go_kr_key: str | None = None
    # Raw env strings reach parse_sbiz_keys undecoded
    sbiz_keys: Annotated[dict[str, str], NoDecode] = Field(
        default_factory=dict,
        description="Per-endpoint certification keys for the sbiz open APIs",
    )
    seoul_api_key: str | None = None

    # --- Budgets ---

    global_deadline_s: float = Field(default=45.0, gt=0)
    provider_timeout_s: float = Field(default=8.0, gt=0)
    generation_timeout_s: float = Field(default=30.0, gt=0)
    max_concurrency: int = Field(default=8, ge=1)
    enrichment_batch_size: int = Field(default=3, ge=1)
    neighbor_limit: int = Field(default=4, ge=0)
    requests_per_minute: int = Field(default=120, ge=1)

    @field_validator("sbiz_keys", mode="before")
    @classmethod
    def parse_sbiz_keys(cls, v: Any) -> dict[str, str]:
        """Accept a mapping, a JSON object or a comma separated `name=key` string."""
        if v is None:
            return {}
        if isinstance(v, str) and v.lstrip().startswith("{"):
            return json.loads(v)
        if isinstance(v, str):
            pairs: dict[str, str] = {}
            for item in v.split(","):
                if not item.strip():
                    continue
                if "=" not in item:
                    raise ValueError(
                        f"Invalid sbiz_keys entry {item.strip()!r}; expected name=key"
                    )
                name, key = item.split("=", 1)
                pairs[name.strip()] = key.strip()
            return pairs
        return v

    @model_validator(mode="after")
    def validate_api_key_requirement(self) -> "PlaceIntelSettings":
        """Ensure api_key is provided when use_real_api is True."""
        if self.use_real_api and not self.api_key:
            raise ValueError(
                "api_key is required when use_real_api=True. "
                "Set PLACE_INTEL_API_KEY, provide it in a config file, "
                "or pass it programmatically."
            )
        return self

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary suitable for SourceMap annotation."""
        return {name: getattr(self, name) for name in type(self).model_fields}
