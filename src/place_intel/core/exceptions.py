"""Exceptions raised by the place-intel pipeline.

Only resolution outcomes and configuration problems reach callers. Provider,
synthesis and deadline failures are recovered inside the pipeline and show
up as degradations on the final report.
"""

from __future__ import annotations

import typing

if typing.TYPE_CHECKING:
    from place_intel.core.types import Disambiguation


class PlaceIntelError(Exception):
    """Base exception for all place-intel errors."""


class ResolutionFailure(PlaceIntelError):
    """Raised when free text cannot be resolved to a place."""

    def __init__(self, message: str, *, attempted: tuple[str, ...] = ()) -> None:
        super().__init__(message)
        self.attempted = attempted


class ResolutionAmbiguous(PlaceIntelError):
    """Carries a disambiguation choice out of the resolver stage.

    The executor converts this into a returned `Disambiguation` value; it is
    never raised to callers.
    """

    def __init__(self, disambiguation: Disambiguation) -> None:
        names = ", ".join(c.selection_key for c in disambiguation.candidates)
        super().__init__(f"'{disambiguation.text}' is ambiguous between: {names}")
        self.disambiguation = disambiguation


class ProviderFailure(PlaceIntelError):
    """Raised by a data provider for a failed or unusable response.

    `permanent` failures (missing credentials, rejected keys) are not retried.
    """

    def __init__(self, provider_id: str, message: str, *, permanent: bool = False) -> None:
        super().__init__(f"{provider_id}: {message}")
        self.provider_id = provider_id
        self.permanent = permanent


class SynthesisFailure(PlaceIntelError):
    """Raised for a failed or empty generation call."""


class GlobalDeadlineExceeded(PlaceIntelError):
    """Marks a request whose global deadline expired before completion."""


class ConfigurationError(PlaceIntelError):
    """Raised when configuration is invalid or incomplete."""


class PipelineError(PlaceIntelError):
    """Raised when a pipeline stage fails unexpectedly."""

    def __init__(
        self, message: str, handler_name: str, underlying_error: Exception | None
    ) -> None:
        super().__init__(f"Error in handler '{handler_name}': {message}")
        self.handler_name = handler_name
        self.underlying_error = underlying_error


class InvariantViolationError(PlaceIntelError):
    """Raised when an internal contract of the pipeline is broken."""

    def __init__(self, message: str, *, stage_name: str | None = None) -> None:
        prefix = f"[{stage_name}] " if stage_name else ""
        super().__init__(f"{prefix}{message}")
        self.stage_name = stage_name
