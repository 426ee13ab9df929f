"""Provider protocols, targets and the shared HTTP helper.

A provider fetches one upstream response for one target and turns it into a
tagged payload dataclass; its `normalize` function extracts the indicators.
Provider-native JSON never leaves this package.
"""

from __future__ import annotations

import dataclasses
import logging
import typing

import httpx

from place_intel.core.exceptions import ProviderFailure
from place_intel.core.types import AdminUnit, Coordinate, IndicatorValue

log = logging.getLogger(__name__)

type KeyedBy = typing.Literal["unit", "coordinate"]


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderTarget:
    """What a provider call is about: a unit, a coordinate, or both."""

    coordinate: Coordinate
    unit: AdminUnit | None = None

    def key(self, keyed_by: KeyedBy) -> str:
        """Stable identifier of the target as seen by a provider."""
        if keyed_by == "unit":
            if self.unit is None:
                raise ValueError("unit-keyed provider called without a unit")
            return self.unit.code
        return f"{self.coordinate.lat:.6f},{self.coordinate.lon:.6f}"


@dataclasses.dataclass(frozen=True, slots=True)
class IndicatorSpec:
    """An indicator a provider can supply, with its normalized unit."""

    key: str
    unit: str


@typing.runtime_checkable
class IndicatorProvider(typing.Protocol):
    """An independent upstream data source."""

    provider_id: str
    keyed_by: KeyedBy
    max_attempts: int
    neighbor_sensitive: bool
    indicators: tuple[IndicatorSpec, ...]

    def applies_to(self, target: ProviderTarget) -> bool:
        """False when the upstream has no coverage for `target`."""
        ...

    async def fetch(
        self, target: ProviderTarget, client: httpx.AsyncClient
    ) -> typing.Any:
        """Fetch and parse one response into a payload dataclass."""
        ...

    def normalize(self, payload: typing.Any) -> tuple[IndicatorValue, ...]:
        """Convert a payload into normalized indicator readings."""
        ...


def absent_readings(provider: IndicatorProvider) -> tuple[IndicatorValue, ...]:
    """Placeholders for every indicator of a provider that produced nothing."""
    return tuple(
        IndicatorValue.absent(spec.key, spec.unit, provider.provider_id)
        for spec in provider.indicators
    )


def require_credential(provider_id: str, value: str | None, name: str) -> str:
    """Return `value` or raise a permanent ProviderFailure naming the setting."""
    if not value:
        raise ProviderFailure(provider_id, f"missing credential '{name}'", permanent=True)
    return value


async def get_json(
    client: httpx.AsyncClient,
    provider_id: str,
    url: str,
    *,
    params: typing.Mapping[str, str] | None = None,
    headers: typing.Mapping[str, str] | None = None,
) -> typing.Any:
    """GET `url` and decode JSON.

    Raises:
        ProviderFailure: For a non-JSON body, or a 401/403 (permanent).
        httpx.HTTPError: For transport errors and other error statuses.
    """
    response = await client.get(url, params=params, headers=headers)
    if response.status_code in (401, 403):
        raise ProviderFailure(
            provider_id, f"rejected credentials (HTTP {response.status_code})", permanent=True
        )
    response.raise_for_status()
    try:
        return response.json()
    except ValueError as e:
        raise ProviderFailure(provider_id, f"response is not JSON: {e}") from e


def find_records(data: typing.Any, *keys: str) -> list[dict[str, typing.Any]]:
    """Locate the first list of record dicts under one of `keys` (searched recursively)."""
    if isinstance(data, list):
        return [r for r in data if isinstance(r, dict)]
    if not isinstance(data, dict):
        return []
    for key in keys:
        value = data.get(key)
        if isinstance(value, list):
            return [r for r in value if isinstance(r, dict)]
    for value in data.values():
        if isinstance(value, dict):
            found = find_records(value, *keys)
            if found:
                return found
    return []


def is_transient(error: BaseException) -> bool:
    """Whether retrying `error` could plausibly succeed."""
    if isinstance(error, ProviderFailure):
        return not error.permanent
    if isinstance(error, TimeoutError | httpx.TimeoutException | httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        status = error.response.status_code
        return status == 429 or status >= 500
    text = str(error).lower()
    return (
        "timeout" in text
        or "timed out" in text
        or "429" in text
        or "rate limit" in text
        or "temporarily" in text
        or "unavailable" in text
    )
