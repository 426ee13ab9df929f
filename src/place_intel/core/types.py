"""Core data types that flow through the pipeline.

This module defines the immutable data structures that represent a request
as it moves from free text, through resolution and provider aggregation, to
the final report. Every type validates its invariants on construction so a
malformed value never reaches a later stage.
"""

from __future__ import annotations

import dataclasses
import enum
import math
import typing

from ._validation import _freeze_mapping, _is_number, _is_tuple_of, _require

# --- Result Monad ---
# A simple, explicit way to handle success and failure states without
# raising exceptions for predictable errors.


@dataclasses.dataclass(frozen=True, slots=True)
class Success[TSuccess]:
    """A successful result in the pipeline."""

    value: TSuccess


@dataclasses.dataclass(frozen=True, slots=True)
class Failure[TFailure]:
    """A failure in the pipeline, containing the error."""

    error: TFailure


type Result[TSuccess, TFailure] = Success[TSuccess] | Failure[TFailure]

# A report leaf: what a section field may hold once sanitized.
type Leaf = str | int | float | bool | list[str]


def is_leaf(value: object) -> bool:
    """Return True when `value` is a display-safe primitive report leaf."""
    if isinstance(value, list):
        return all(isinstance(v, str) for v in value)
    if isinstance(value, float):
        return math.isfinite(value)
    return isinstance(value, str | int | bool)


# --- Enumerations ---


class PrecisionHint(enum.StrEnum):
    """Caller hint about what kind of text the query holds."""

    ADDRESS = "address"
    LANDMARK = "landmark"


class ConfidenceTier(enum.StrEnum):
    """How a place was resolved."""

    EXACT = "exact"
    GEOCODED = "geocoded"
    APPROXIMATE = "approximate"


class Provenance(enum.StrEnum):
    """Where a value came from."""

    MEASURED = "measured"
    ESTIMATED = "estimated"
    ABSENT = "absent"

    @property
    def rank(self) -> int:
        """Ordering used when two values compete for the same slot."""
        return _PROVENANCE_RANK[self]


_PROVENANCE_RANK = {
    Provenance.ABSENT: 0,
    Provenance.ESTIMATED: 1,
    Provenance.MEASURED: 2,
}


class ReportConfidence(enum.StrEnum):
    """Overall trust level attached to a finished report."""

    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


# --- Places ---


@dataclasses.dataclass(frozen=True, slots=True)
class Coordinate:
    """A WGS84 point."""

    lat: float
    lon: float

    def __post_init__(self) -> None:
        """Validate coordinate ranges."""
        _require(
            condition=_is_number(self.lat) and -90.0 <= self.lat <= 90.0,
            message=f"must be a number within [-90, 90], got {self.lat!r}",
            field_name="lat",
        )
        _require(
            condition=_is_number(self.lon) and -180.0 <= self.lon <= 180.0,
            message=f"must be a number within [-180, 180], got {self.lon!r}",
            field_name="lon",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class AdminUnit:
    """An administrative unit (행정동). Providers are keyed by `code`."""

    code: str
    name: str

    def __post_init__(self) -> None:
        """Validate unit identity."""
        _require(
            condition=isinstance(self.code, str) and self.code.strip() != "",
            message="must be a non-empty str",
            field_name="code",
        )
        _require(
            condition=isinstance(self.name, str),
            message="must be a str",
            field_name="name",
            exc=TypeError,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class PlaceQuery:
    """Free text naming a place, plus optional caller hints."""

    text: str
    precision_hint: PrecisionHint | None = None
    # Province name chosen after a Disambiguation was returned.
    selection: str | None = None

    def __post_init__(self) -> None:
        """Validate the query text."""
        _require(
            condition=isinstance(self.text, str) and self.text.strip() != "",
            message="must be a non-empty str",
            field_name="text",
        )
        _require(
            condition=self.precision_hint is None
            or isinstance(self.precision_hint, PrecisionHint),
            message="must be a PrecisionHint or None",
            field_name="precision_hint",
            exc=TypeError,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ResolvedPlace:
    """A canonical place: unit, parent chain, coordinate and how we got there."""

    name: str
    coordinate: Coordinate
    confidence: ConfidenceTier
    parents: tuple[str, ...] = ()
    unit: AdminUnit | None = None
    neighbors: tuple[AdminUnit, ...] = ()
    formatted_address: str | None = None
    query_used: str | None = None

    def __post_init__(self) -> None:
        """Validate resolution invariants."""
        _require(
            condition=isinstance(self.coordinate, Coordinate),
            message="must be a Coordinate",
            field_name="coordinate",
            exc=TypeError,
        )
        _require(
            condition=isinstance(self.confidence, ConfidenceTier),
            message="must be a ConfidenceTier",
            field_name="confidence",
            exc=TypeError,
        )
        _require(
            condition=_is_tuple_of(self.parents, str),
            message="must be a tuple[str, ...]",
            field_name="parents",
            exc=TypeError,
        )
        _require(
            condition=_is_tuple_of(self.neighbors, AdminUnit),
            message="must be a tuple[AdminUnit, ...]",
            field_name="neighbors",
            exc=TypeError,
        )
        _require(
            condition=self.unit is None or self.unit not in self.neighbors,
            message="a unit cannot neighbor itself",
            field_name="neighbors",
        )

    def with_unit(
        self, unit: AdminUnit | None, neighbors: tuple[AdminUnit, ...]
    ) -> ResolvedPlace:
        """Return a copy bound to a (possibly different) canonical unit."""
        return dataclasses.replace(self, unit=unit, neighbors=neighbors)


@dataclasses.dataclass(frozen=True, slots=True)
class PlaceCandidate:
    """One of several same-named places offered back to the caller."""

    name: str
    province: str
    coordinate: Coordinate

    @property
    def selection_key(self) -> str:
        """The value a caller passes back as `selection`."""
        return self.province


@dataclasses.dataclass(frozen=True, slots=True)
class Disambiguation:
    """Returned instead of a place when a short name is ambiguous."""

    text: str
    candidates: tuple[PlaceCandidate, ...]

    def __post_init__(self) -> None:
        """A choice needs at least two distinct options."""
        _require(
            condition=_is_tuple_of(self.candidates, PlaceCandidate)
            and len(self.candidates) >= 2,
            message="must hold at least two PlaceCandidate values",
            field_name="candidates",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class NotFound:
    """Terminal resolution outcome: nothing matched."""

    text: str
    attempted: tuple[str, ...] = ()


type ResolutionOutcome = ResolvedPlace | Disambiguation | NotFound


# --- Provider data ---


@dataclasses.dataclass(frozen=True, slots=True)
class UnitLookup:
    """Answer of the coordinate to administrative-unit lookup."""

    unit: AdminUnit
    neighbors: tuple[AdminUnit, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class ProviderResult:
    """Outcome of one provider call for one target (unit code or coordinate)."""

    provider_id: str
    target: str
    ok: bool
    payload: typing.Any = None
    latency_s: float = 0.0
    attempts: int = 1
    error: str | None = None

    def __post_init__(self) -> None:
        """Successful results carry a payload; failed ones carry an error."""
        _require(
            condition=not self.ok or self.payload is not None,
            message="a successful result must carry a payload",
            field_name="payload",
        )
        _require(
            condition=self.ok or bool(self.error),
            message="a failed result must carry an error description",
            field_name="error",
        )
        _require(
            condition=isinstance(self.attempts, int) and self.attempts >= 0,
            message="must be an int >= 0",
            field_name="attempts",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class IndicatorValue:
    """One normalized indicator. Absent values carry no number."""

    key: str
    value: float | None
    unit: str
    provenance: Provenance
    provider_id: str | None = None
    contributing_units: int = 1
    # "primary", "neighbors" or "reference"
    basis: str = "primary"

    def __post_init__(self) -> None:
        """Absent and valued are mutually exclusive."""
        _require(
            condition=(self.value is None) == (self.provenance is Provenance.ABSENT),
            message="value must be None exactly when provenance is absent",
            field_name="value",
        )
        _require(
            condition=self.value is None
            or (_is_number(self.value) and math.isfinite(self.value)),
            message=f"must be a finite number, got {self.value!r}",
            field_name="value",
        )
        _require(
            condition=isinstance(self.contributing_units, int)
            and self.contributing_units >= 0,
            message="must be an int >= 0",
            field_name="contributing_units",
        )

    @classmethod
    def absent(cls, key: str, unit: str, provider_id: str | None) -> IndicatorValue:
        """Create a placeholder for an indicator no provider could supply."""
        return cls(
            key=key,
            value=None,
            unit=unit,
            provenance=Provenance.ABSENT,
            provider_id=provider_id,
            contributing_units=0,
        )

    def to_dict(self) -> dict[str, typing.Any]:
        """Return a JSON-friendly view."""
        data: dict[str, typing.Any] = {
            "value": self.value,
            "unit": self.unit,
            "provenance": self.provenance.value,
            "basis": self.basis,
            "contributing_units": self.contributing_units,
        }
        if self.provider_id is not None:
            data["provider"] = self.provider_id
        return data


@dataclasses.dataclass(slots=True)
class AggregateRecord:
    """Provider results and normalized indicators for one request.

    Built incrementally as provider calls settle. Merging is commutative: the
    winner for an indicator is decided by provenance rank, then the fixed
    provider priority, then the larger value, so arrival order never matters.
    Call `freeze()` to obtain the finalized, read-only record.
    """

    place: ResolvedPlace
    provider_priority: typing.Mapping[str, int] = dataclasses.field(
        default_factory=dict
    )
    results: dict[str, ProviderResult] = dataclasses.field(default_factory=dict)
    neighbor_results: dict[str, tuple[ProviderResult, ...]] = dataclasses.field(
        default_factory=dict
    )
    normalized_indicators: dict[str, IndicatorValue] = dataclasses.field(
        default_factory=dict
    )
    disabled_providers: tuple[str, ...] = ()
    finalized: bool = False

    def _rank(self, iv: IndicatorValue) -> tuple[int, int, float, str]:
        priority = self.provider_priority.get(
            iv.provider_id or "", len(self.provider_priority)
        )
        value = iv.value if iv.value is not None else -math.inf
        return (iv.provenance.rank, -priority, value, iv.basis)

    def merge(
        self, result: ProviderResult, readings: typing.Iterable[IndicatorValue]
    ) -> None:
        """Record a settled provider result and its normalized readings."""
        _require(
            condition=not self.finalized,
            message="cannot merge into a finalized AggregateRecord",
            field_name="finalized",
            exc=RuntimeError,
        )
        self.results[result.provider_id] = result
        for reading in readings:
            self.offer(reading)

    def offer(self, reading: IndicatorValue) -> bool:
        """Keep `reading` if it outranks the current value; return True if kept."""
        current = self.normalized_indicators.get(reading.key)
        if current is None or self._rank(reading) > self._rank(current):
            self.normalized_indicators[reading.key] = reading
            return True
        return False

    def measured(self, key: str) -> IndicatorValue | None:
        """Return the indicator for `key` only if it is measured."""
        iv = self.normalized_indicators.get(key)
        if iv is not None and iv.provenance is Provenance.MEASURED:
            return iv
        return None

    @property
    def success_ratio(self) -> float:
        """Share of attempted provider calls that succeeded."""
        attempted = [r for r in self.results.values() if r.attempts > 0]
        if not attempted:
            return 0.0
        return sum(1 for r in attempted if r.ok) / len(attempted)

    def freeze(self) -> AggregateRecord:
        """Return a finalized, read-only copy; the builder stays usable."""
        return AggregateRecord(
            place=self.place,
            provider_priority=_freeze_mapping(self.provider_priority) or {},
            results=_freeze_mapping(self.results),  # type: ignore[arg-type]
            neighbor_results=_freeze_mapping(self.neighbor_results),  # type: ignore[arg-type]
            normalized_indicators=_freeze_mapping(self.normalized_indicators),  # type: ignore[arg-type]
            disabled_providers=tuple(self.disabled_providers),
            finalized=True,
        )


# --- Synthesis ---


@dataclasses.dataclass(frozen=True, slots=True)
class SynthesisResponse:
    """Raw text of one generation call (holistic or section enrichment)."""

    kind: typing.Literal["holistic", "enrichment"]
    text: str | None
    ok: bool
    section: str | None = None
    error: str | None = None
    attempts: int = 1
    latency_s: float = 0.0

    def __post_init__(self) -> None:
        """Enrichment responses target exactly one section."""
        _require(
            condition=self.kind in ("holistic", "enrichment"),
            message=f"must be 'holistic' or 'enrichment', got {self.kind!r}",
            field_name="kind",
        )
        _require(
            condition=(self.kind == "enrichment") == (self.section is not None),
            message="enrichment responses name a section; holistic ones do not",
            field_name="section",
        )
        _require(
            condition=not self.ok or isinstance(self.text, str),
            message="a successful response must carry text",
            field_name="text",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class RepairedFragment:
    """A parsed tree plus the repair tier that produced it."""

    tree: typing.Mapping[str, typing.Any]
    tier: int
    section: str | None = None

    def __post_init__(self) -> None:
        """Validate tier range and freeze the tree."""
        _require(
            condition=self.tier in (-1, 0, 1, 2, 3),
            message=f"must be one of -1, 0, 1, 2, 3, got {self.tier!r}",
            field_name="tier",
        )
        _require(
            condition=isinstance(self.tree, typing.Mapping),
            message="must be a Mapping",
            field_name="tree",
            exc=TypeError,
        )
        frozen = _freeze_mapping(self.tree)
        if frozen is not None:
            object.__setattr__(self, "tree", frozen)

    @property
    def is_best_effort(self) -> bool:
        """True when the ladder fell through to field extraction."""
        return self.tier == -1


# --- Report ---

REPORT_SCHEMA_VERSION = "1"


@dataclasses.dataclass(frozen=True, slots=True)
class Report:
    """Final structured report.

    Sections are independently optional; every present leaf is a primitive.
    `provenance` maps "section.field" to the tag of the value that won.
    """

    place: typing.Mapping[str, typing.Any]
    sections: typing.Mapping[str, typing.Mapping[str, Leaf]]
    provenance: typing.Mapping[str, Provenance]
    confidence: ReportConfidence
    partial: bool = False
    degradations: tuple[str, ...] = ()
    indicators: typing.Mapping[str, typing.Mapping[str, typing.Any]] = (
        dataclasses.field(default_factory=dict)
    )
    version: str = REPORT_SCHEMA_VERSION

    def __post_init__(self) -> None:
        """Enforce primitive leaves and freeze nested mappings."""
        for section, fields in self.sections.items():
            _require(
                condition=isinstance(fields, typing.Mapping),
                message="must be a mapping of field to primitive",
                field_name=f"sections.{section}",
                exc=TypeError,
            )
            for name, value in fields.items():
                _require(
                    condition=is_leaf(value),
                    message=f"must be a primitive leaf, got {type(value).__name__}",
                    field_name=f"sections.{section}.{name}",
                    exc=TypeError,
                )
        for key, value in self.place.items():
            _require(
                condition=is_leaf(value),
                message=f"must be a primitive leaf, got {type(value).__name__}",
                field_name=f"place.{key}",
                exc=TypeError,
            )
        _require(
            condition=isinstance(self.confidence, ReportConfidence),
            message="must be a ReportConfidence",
            field_name="confidence",
            exc=TypeError,
        )
        _require(
            condition=_is_tuple_of(self.degradations, str),
            message="must be a tuple[str, ...]",
            field_name="degradations",
            exc=TypeError,
        )
        object.__setattr__(
            self,
            "sections",
            _freeze_mapping({k: _freeze_mapping(v) for k, v in self.sections.items()}),
        )
        object.__setattr__(self, "place", _freeze_mapping(self.place))
        object.__setattr__(self, "provenance", _freeze_mapping(self.provenance))
        object.__setattr__(self, "indicators", _freeze_mapping(self.indicators))

    def field(self, section: str, name: str) -> Leaf | None:
        """Return a section field value, or None when absent."""
        return self.sections.get(section, {}).get(name)

    def to_dict(self) -> dict[str, typing.Any]:
        """Return the fixed, versioned JSON shape."""
        return {
            "version": self.version,
            "place": dict(self.place),
            "sections": {
                name: {k: list(v) if isinstance(v, list) else v for k, v in f.items()}
                for name, f in self.sections.items()
            },
            "provenance": {k: v.value for k, v in self.provenance.items()},
            "indicators": {k: dict(v) for k, v in self.indicators.items()},
            "confidence": self.confidence.value,
            "partial": self.partial,
            "degradations": list(self.degradations),
        }
