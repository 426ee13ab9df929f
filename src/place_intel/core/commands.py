"""Typed command states that flow through the pipeline.

These dataclasses define the shape of a request as each stage transforms
it. The `context` they carry is the one request-owned mutable object: stages
write partial progress there so the executor can finalize from a snapshot
when the global deadline expires or the caller cancels.
"""

from __future__ import annotations

import dataclasses
import typing

from ._validation import _is_tuple_of, _require
from .types import (
    AggregateRecord,
    PlaceQuery,
    RepairedFragment,
    ResolvedPlace,
    SynthesisResponse,
)

if typing.TYPE_CHECKING:
    from place_intel.config import FrozenConfig
    from place_intel.events import ProgressTracker


@dataclasses.dataclass(slots=True)
class RequestContext:
    """Request-owned, incrementally filled state.

    Mutable by design: stages record what has settled so far. Nothing here is
    shared with other requests.
    """

    progress: ProgressTracker
    place: ResolvedPlace | None = None
    aggregate: AggregateRecord | None = None
    holistic: SynthesisResponse | None = None
    enrichments: dict[str, SynthesisResponse] = dataclasses.field(
        default_factory=dict
    )
    degradations: list[str] = dataclasses.field(default_factory=list)

    def record_synthesis(self, response: SynthesisResponse) -> None:
        """Store a settled generation response."""
        # Holistic responses are exactly the ones without a section
        if response.section is None:
            self.holistic = response
        else:
            self.enrichments[response.section] = response


@dataclasses.dataclass(frozen=True, slots=True)
class InitialCommand:
    """The initial state of a request, created by the caller."""

    query: PlaceQuery
    config: FrozenConfig
    context: RequestContext = dataclasses.field(compare=False)

    def __post_init__(self) -> None:
        """Validate InitialCommand invariants."""
        _require(
            condition=isinstance(self.query, PlaceQuery),
            message="must be a PlaceQuery",
            field_name="query",
            exc=TypeError,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class ResolvedCommand:
    """The state after the query has been resolved to a place."""

    initial: InitialCommand
    place: ResolvedPlace


@dataclasses.dataclass(frozen=True, slots=True)
class AggregatedCommand:
    """The state after provider data has been gathered and merged."""

    resolved: ResolvedCommand
    aggregate: AggregateRecord

    def __post_init__(self) -> None:
        """Only finalized aggregates move downstream."""
        _require(
            condition=self.aggregate.finalized,
            message="must be finalized before synthesis",
            field_name="aggregate",
        )


@dataclasses.dataclass(frozen=True, slots=True)
class SynthesizedCommand:
    """The state after all generation calls settled."""

    aggregated: AggregatedCommand
    holistic: SynthesisResponse | None
    enrichments: tuple[SynthesisResponse, ...] = ()

    def __post_init__(self) -> None:
        """Validate response shapes."""
        _require(
            condition=_is_tuple_of(self.enrichments, SynthesisResponse),
            message="must be a tuple[SynthesisResponse, ...]",
            field_name="enrichments",
            exc=TypeError,
        )


@dataclasses.dataclass(frozen=True, slots=True)
class RepairedCommand:
    """The state after raw model text was repaired and sanitized."""

    synthesized: SynthesizedCommand
    holistic: RepairedFragment | None
    enrichments: tuple[RepairedFragment, ...] = ()
    failed_sections: tuple[str, ...] = ()
