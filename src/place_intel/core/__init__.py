"""Core types, commands and exceptions of the place-intel pipeline."""

from .exceptions import (
    ConfigurationError,
    GlobalDeadlineExceeded,
    InvariantViolationError,
    PipelineError,
    PlaceIntelError,
    ProviderFailure,
    ResolutionAmbiguous,
    ResolutionFailure,
    SynthesisFailure,
)
from .types import (
    AdminUnit,
    AggregateRecord,
    ConfidenceTier,
    Coordinate,
    Disambiguation,
    Failure,
    IndicatorValue,
    NotFound,
    PlaceCandidate,
    PlaceQuery,
    PrecisionHint,
    Provenance,
    ProviderResult,
    RepairedFragment,
    Report,
    ReportConfidence,
    ResolvedPlace,
    Result,
    Success,
    SynthesisResponse,
    UnitLookup,
)

__all__ = [  # noqa: RUF022
    # Types
    "AdminUnit",
    "AggregateRecord",
    "ConfidenceTier",
    "Coordinate",
    "Disambiguation",
    "Failure",
    "IndicatorValue",
    "NotFound",
    "PlaceCandidate",
    "PlaceQuery",
    "PrecisionHint",
    "Provenance",
    "ProviderResult",
    "RepairedFragment",
    "Report",
    "ReportConfidence",
    "ResolvedPlace",
    "Result",
    "Success",
    "SynthesisResponse",
    "UnitLookup",
    # Exceptions
    "ConfigurationError",
    "GlobalDeadlineExceeded",
    "InvariantViolationError",
    "PipelineError",
    "PlaceIntelError",
    "ProviderFailure",
    "ResolutionAmbiguous",
    "ResolutionFailure",
    "SynthesisFailure",
]
