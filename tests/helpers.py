"""Fakes for every external collaborator; nothing here touches the network."""

from __future__ import annotations

import asyncio
from collections.abc import Mapping
import dataclasses
import json
import typing

import httpx

from place_intel.config import FrozenConfig, resolve_config
from place_intel.core.exceptions import ProviderFailure
from place_intel.core.schema import SECTION_ORDER
from place_intel.core.types import (
    AdminUnit,
    ConfidenceTier,
    Coordinate,
    IndicatorValue,
    Provenance,
    ResolvedPlace,
    UnitLookup,
)
from place_intel.providers.base import IndicatorSpec, KeyedBy, ProviderTarget
from place_intel.providers.lookups import GeocodeHit, SearchCandidate

GANGNAM = Coordinate(lat=37.497942, lon=127.027621)
CHANGSIN = Coordinate(lat=37.574, lon=127.0109)

YEOKSAM1 = AdminUnit("1168064000", "역삼1동")
YEOKSAM2 = AdminUnit("1168065000", "역삼2동")
SEOCHO4 = AdminUnit("1165062000", "서초4동")
NONHYEON2 = AdminUnit("1168054500", "논현2동")


def make_config(**overrides: typing.Any) -> FrozenConfig:
    """A mock-adapter config with budgets small enough for tests."""
    values: dict[str, typing.Any] = {
        "global_deadline_s": 5.0,
        "provider_timeout_s": 1.0,
        "generation_timeout_s": 1.0,
    }
    values.update(overrides)
    return resolve_config(values).to_frozen()


def make_place(
    *,
    unit: AdminUnit | None = YEOKSAM1,
    neighbors: tuple[AdminUnit, ...] = (),
    confidence: ConfidenceTier = ConfidenceTier.EXACT,
) -> ResolvedPlace:
    return ResolvedPlace(
        name="강남역",
        coordinate=GANGNAM,
        confidence=confidence,
        parents=("서울특별시", "강남구"),
        unit=unit,
        neighbors=neighbors,
        formatted_address="서울특별시 강남구 역삼1동",
    )


class FakeGeocoder:
    """Answers from a fixed table; records every query."""

    def __init__(
        self,
        hits: Mapping[str, GeocodeHit] | None = None,
        *,
        error: Exception | None = None,
    ) -> None:
        self.hits = dict(hits or {})
        self.error = error
        self.calls: list[str] = []

    async def geocode(self, text: str) -> GeocodeHit | None:
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return self.hits.get(text)


class FakeSearch:
    def __init__(self, results: Mapping[str, list[SearchCandidate]] | None = None) -> None:
        self.results = dict(results or {})
        self.calls: list[str] = []

    async def search(self, text: str) -> list[SearchCandidate]:
        self.calls.append(text)
        return list(self.results.get(text, []))


class FakeUnitLookup:
    def __init__(
        self,
        lookup: UnitLookup | None = None,
        *,
        error: Exception | None = None,
        delay: float = 0.0,
    ) -> None:
        self.lookup = lookup
        self.error = error
        self.delay = delay
        self.calls: list[Coordinate] = []

    async def unit_code(self, coordinate: Coordinate) -> UnitLookup | None:
        self.calls.append(coordinate)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return self.lookup


@dataclasses.dataclass(frozen=True, slots=True)
class FakePayload:
    values: Mapping[str, float]


@dataclasses.dataclass
class FakeProvider:
    """Scripted provider.

    `values` maps a target key (unit code or coordinate key) to indicator
    values; `failures` lists exceptions raised on successive calls before
    the scripted value is returned; `delays` maps a target key to a sleep.
    """

    provider_id: str
    indicator_keys: tuple[str, ...] = ("store_count_total",)
    values: dict[str, dict[str, float]] = dataclasses.field(default_factory=dict)
    failures: list[Exception] = dataclasses.field(default_factory=list)
    delays: dict[str, float] = dataclasses.field(default_factory=dict)
    keyed_by: KeyedBy = "unit"
    max_attempts: int = 1
    neighbor_sensitive: bool = False
    covered: bool = True
    unit: str = "stores"
    calls: list[str] = dataclasses.field(default_factory=list)

    @property
    def indicators(self) -> tuple[IndicatorSpec, ...]:
        return tuple(IndicatorSpec(k, self.unit) for k in self.indicator_keys)

    def applies_to(self, target: ProviderTarget) -> bool:
        return self.covered and (self.keyed_by == "coordinate" or target.unit is not None)

    async def fetch(self, target: ProviderTarget, client: httpx.AsyncClient) -> FakePayload:  # noqa: ARG002
        key = target.key(self.keyed_by)
        self.calls.append(key)
        delay = self.delays.get(key, self.delays.get("*", 0.0))
        if delay:
            await asyncio.sleep(delay)
        if self.failures:
            raise self.failures.pop(0)
        if key not in self.values:
            raise ProviderFailure(self.provider_id, f"no data for {key}", permanent=True)
        return FakePayload(values=self.values[key])

    def normalize(self, payload: FakePayload) -> tuple[IndicatorValue, ...]:
        readings = []
        for spec in self.indicators:
            value = payload.values.get(spec.key)
            if value is None:
                readings.append(IndicatorValue.absent(spec.key, spec.unit, self.provider_id))
            else:
                readings.append(
                    IndicatorValue(
                        key=spec.key,
                        value=float(value),
                        unit=spec.unit,
                        provenance=Provenance.MEASURED,
                        provider_id=self.provider_id,
                    )
                )
        return tuple(readings)


class ScriptedAdapter:
    """Generation adapter answering from per-section scripts.

    `holistic` is returned for prompts that target no single section;
    `sections` maps a section to its text. An Exception value is raised, and
    a `delay` applies to every call (or per section via `delays`).
    """

    def __init__(
        self,
        holistic: str | Exception = "{}",
        sections: Mapping[str, str | Exception] | None = None,
        *,
        delay: float = 0.0,
        delays: Mapping[str, float] | None = None,
    ) -> None:
        self.holistic = holistic
        self.sections = dict(sections or {})
        self.delay = delay
        self.delays = dict(delays or {})
        self.calls: list[str] = []

    @staticmethod
    def section_of(prompt: str) -> str | None:
        for section in SECTION_ORDER:
            if f"'{section}' 섹션만" in prompt:
                return section
        return None

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:  # noqa: ARG002
        section = self.section_of(prompt)
        key = section or "holistic"
        self.calls.append(key)
        delay = self.delays.get(key, self.delay)
        if delay:
            await asyncio.sleep(delay)
        answer = self.holistic if section is None else self.sections.get(section, "{}")
        if isinstance(answer, Exception):
            raise answer
        return answer


def all_sections(**per_section: Mapping[str, typing.Any]) -> str:
    """A holistic JSON document with the given section contents."""
    return json.dumps(per_section, ensure_ascii=False)


def neighbor_lookup(primary: AdminUnit, *neighbors: AdminUnit) -> UnitLookup:
    return UnitLookup(unit=primary, neighbors=tuple(neighbors))
