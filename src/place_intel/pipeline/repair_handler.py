"""Output repair stage of the pipeline."""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging

from place_intel.core.commands import RepairedCommand, SynthesizedCommand
from place_intel.core.exceptions import PlaceIntelError
from place_intel.core.schema import REPORT_SECTIONS, SECTION_ORDER
from place_intel.core.types import (
    RepairedFragment,
    Result,
    Success,
    SynthesisResponse,
)
from place_intel.pipeline.base import BaseAsyncHandler
from place_intel.pipeline.repair import repair
from place_intel.pipeline.sanitize import sanitize
from place_intel.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

_HOLISTIC_FIELDS = {s: tuple(REPORT_SECTIONS[s]) for s in SECTION_ORDER}


def repair_holistic(response: SynthesisResponse | None) -> RepairedFragment | None:
    """Repair and sanitize a holistic response; None when the call failed."""
    if response is None or not response.ok:
        return None
    fragment = repair(response.text, _HOLISTIC_FIELDS)
    return RepairedFragment(tree=sanitize(fragment.tree, REPORT_SECTIONS), tier=fragment.tier)


def repair_enrichment(response: SynthesisResponse) -> RepairedFragment | None:
    """Repair and sanitize one enrichment fragment; None when nothing usable."""
    section = response.section
    if not response.ok or section not in REPORT_SECTIONS:
        return None
    fragment = repair(response.text, tuple(REPORT_SECTIONS[section]), section=section)
    tree: Mapping[str, object] = fragment.tree
    # Models sometimes wrap the fragment in its section name
    wrapped = tree.get(section)
    if isinstance(wrapped, Mapping) and not any(k in REPORT_SECTIONS[section] for k in tree):
        tree = wrapped
    fields = sanitize(tree, REPORT_SECTIONS[section])
    fields = {k: v for k, v in fields.items() if k in REPORT_SECTIONS[section]}
    if not fields:
        return None
    return RepairedFragment(tree=fields, tier=fragment.tier, section=section)


def repair_responses(
    holistic: SynthesisResponse | None,
    enrichments: Iterable[SynthesisResponse],
    sections: Iterable[str] = SECTION_ORDER,
) -> tuple[RepairedFragment | None, tuple[RepairedFragment, ...], tuple[str, ...]]:
    """Repair every response; sections without a usable fragment are failed."""
    by_section = {r.section: r for r in enrichments}
    repaired: list[RepairedFragment] = []
    failed: list[str] = []
    for section in sections:
        response = by_section.get(section)
        fragment = repair_enrichment(response) if response is not None else None
        if fragment is None:
            failed.append(section)
        else:
            repaired.append(fragment)
    return repair_holistic(holistic), tuple(repaired), tuple(failed)


class OutputRepairer(BaseAsyncHandler[SynthesizedCommand, RepairedCommand, PlaceIntelError]):
    """Turns raw model text into sanitized fragments via the repair ladder."""

    def __init__(self, *, telemetry: TelemetryContextProtocol | None = None) -> None:
        self._telemetry = telemetry or TelemetryContext()

    @property
    def stage_name(self) -> str:
        return "repair"

    async def handle(
        self, command: SynthesizedCommand
    ) -> Result[RepairedCommand, PlaceIntelError]:
        """Repair holistic and enrichment responses; never fails."""
        with self._telemetry("repair.responses"):
            holistic, enrichments, failed = repair_responses(
                command.holistic, command.enrichments
            )
        if holistic is not None:
            self._telemetry.gauge("repair.holistic_tier", holistic.tier)
        if failed:
            log.debug("Sections without a usable enrichment: %s", failed)
        return Success(
            RepairedCommand(
                synthesized=command,
                holistic=holistic,
                enrichments=enrichments,
                failed_sections=failed,
            )
        )
