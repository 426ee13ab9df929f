"""Report building stage: deterministic override and confidence scoring.

Merge order, later wins:

1. per-section defaults (reference estimates)
2. holistic model fields
3. enrichment fields, each scoped to its own section
4. measured indicators, via the indicator bindings
5. aggregate-derived fallback text for empty narrative fields

A provenance ledger records the tag of every value written. Once a field is
measured no later step may overwrite it with an estimate.
"""

from __future__ import annotations

from collections.abc import Iterable, Mapping
import logging
from types import MappingProxyType
import typing

from place_intel.core.commands import RepairedCommand
from place_intel.core.exceptions import PlaceIntelError
from place_intel.core.schema import (
    INDICATOR_BINDINGS,
    PRIMARY_TEXT_FIELD,
    REPORT_SECTIONS,
    SECTION_ORDER,
    FieldKind,
    normalize_label,
)
from place_intel.core.types import (
    AggregateRecord,
    ConfidenceTier,
    Leaf,
    Provenance,
    RepairedFragment,
    Report,
    ReportConfidence,
    ResolvedPlace,
    Result,
    Success,
)
from place_intel.pipeline.base import BaseAsyncHandler
from place_intel.pipeline.normalize import tidy_number
from place_intel.reference import ReferenceData

log = logging.getLogger(__name__)

SECTION_TITLES: typing.Mapping[str, str] = MappingProxyType(
    {
        "overview": "상권 개요",
        "footfall": "유동인구",
        "competition": "경쟁 현황",
        "sales": "매출",
        "delivery": "배달",
        "startup": "창업 동향",
        "opportunities": "기회와 위험",
        "recommendation": "추천",
    }
)

_INDICATOR_LABELS = {
    "store_count_total": "전체 점포 수",
    "store_count_food": "음식점 수",
    "store_count_radius": "반경 500m 점포 수",
    "floating_population": "월 유동인구",
    "avg_sales": "월 평균 매출",
    "delivery_orders": "월 배달 주문",
    "openings": "월 개업 수",
    "closures": "월 폐업 수",
}


def _section_indicators(section: str) -> list[str]:
    return [key for key, (s, _) in INDICATOR_BINDINGS.items() if s == section]


def fallback_text(section: str, aggregate: AggregateRecord) -> str:
    """Narrative built only from measured data, or a static notice."""
    place = aggregate.place.name
    facts = []
    for key in _section_indicators(section):
        iv = aggregate.measured(key)
        if iv is None or iv.value is None:
            continue
        fact = f"{_INDICATOR_LABELS.get(key, key)} {tidy_number(iv.value):,}"
        if iv.basis == "neighbors":
            fact += f" (인접 {iv.contributing_units}개 동 평균)"
        facts.append(fact)
    title = SECTION_TITLES.get(section, section)
    if facts:
        return f"{place} {title}: " + ", ".join(facts) + "."
    return f"{place}의 {title} 분석 데이터를 확보하지 못했습니다."


def score_confidence(
    place: ResolvedPlace,
    aggregate: AggregateRecord,
    holistic: RepairedFragment | None,
    enrichment_failures: int,
    *,
    partial: bool,
) -> ReportConfidence:
    """Points for resolution, provider coverage, holistic parse and enrichments."""
    points = 0
    if place.confidence in (ConfidenceTier.EXACT, ConfidenceTier.GEOCODED):
        points += 1
    ratio = aggregate.success_ratio
    if ratio >= 0.7:
        points += 2
    elif ratio >= 0.4:
        points += 1
    if holistic is not None and holistic.tier >= 0:
        points += 1
    if enrichment_failures == 0:
        points += 1

    if points >= 5:
        confidence = ReportConfidence.HIGH
    elif points >= 3:
        confidence = ReportConfidence.MEDIUM
    else:
        confidence = ReportConfidence.LOW
    if partial and confidence is ReportConfidence.HIGH:
        confidence = ReportConfidence.MEDIUM
    return confidence


def place_summary(place: ResolvedPlace) -> dict[str, Leaf]:
    summary: dict[str, Leaf | None] = {
        "name": place.name,
        "unit_code": place.unit.code if place.unit else None,
        "unit_name": place.unit.name if place.unit else None,
        "parents": list(place.parents) if place.parents else None,
        "lat": place.coordinate.lat,
        "lon": place.coordinate.lon,
        "confidence": place.confidence.value,
        "formatted_address": place.formatted_address,
    }
    return {k: v for k, v in summary.items() if v is not None}


class _Ledger:
    """Section fields plus the provenance of whoever wrote them."""

    def __init__(self) -> None:
        self.sections: dict[str, dict[str, Leaf]] = {s: {} for s in SECTION_ORDER}
        self.provenance: dict[str, Provenance] = {}

    def put(self, section: str, field: str, value: Leaf, provenance: Provenance) -> bool:
        key = f"{section}.{field}"
        if (
            self.provenance.get(key) is Provenance.MEASURED
            and provenance is not Provenance.MEASURED
        ):
            return False
        self.sections[section][field] = value
        self.provenance[key] = provenance
        return True


def _accept(section: str, field: str, value: typing.Any) -> Leaf | None:
    kind = REPORT_SECTIONS[section].get(field)
    if kind is FieldKind.NUMBER:
        ok = isinstance(value, int | float) and not isinstance(value, bool)
        return value if ok else None
    if kind is FieldKind.TEXT_LIST:
        return list(value) if isinstance(value, list) and value else None
    if kind is FieldKind.TEXT:
        if not isinstance(value, str) or not value:
            return None
        return normalize_label(section, field, value)
    return None


class ReportBuilder(BaseAsyncHandler[RepairedCommand, Report, PlaceIntelError]):
    """Merges model output with measured data into the final Report."""

    def __init__(self, reference: ReferenceData) -> None:
        self._reference = reference

    @property
    def stage_name(self) -> str:
        return "finalize"

    async def handle(self, command: RepairedCommand) -> Result[Report, PlaceIntelError]:
        """Build the report; this stage cannot fail on data problems."""
        aggregated = command.synthesized.aggregated
        context = aggregated.resolved.initial.context
        context.progress.plan(self.stage_name, 1)
        report = self.finalize(
            aggregated.aggregate,
            command.holistic,
            command.enrichments,
            failed_sections=command.failed_sections,
            holistic_error=_holistic_error(command),
            degradations=context.degradations,
        )
        context.progress.task_done(self.stage_name, "report ready")
        return Success(report)

    def finalize(
        self,
        aggregate: AggregateRecord,
        holistic: RepairedFragment | None,
        enrichments: Iterable[RepairedFragment] = (),
        *,
        failed_sections: Iterable[str] = (),
        holistic_error: str | None = None,
        partial: bool = False,
        degradations: Iterable[str] = (),
    ) -> Report:
        """Apply the merge order and score confidence."""
        place = aggregate.place
        ledger = _Ledger()
        notes = list(degradations)
        failed = tuple(failed_sections)

        # 1. defaults
        province = place.parents[0] if place.parents else None
        ledger.put(
            "startup",
            "estimated_startup_cost",
            self._reference.startup_cost(province),
            Provenance.ESTIMATED,
        )

        # 2. holistic
        if holistic is not None:
            for section in SECTION_ORDER:
                fields = holistic.tree.get(section)
                if isinstance(fields, Mapping):
                    self._merge_fields(ledger, section, fields)
            if holistic.is_best_effort:
                notes.append("holistic response recovered by field extraction")
        else:
            notes.append(f"holistic synthesis failed: {holistic_error or 'no response'}")

        # 3. enrichment, scoped to its own section
        for fragment in enrichments:
            if fragment.section in REPORT_SECTIONS:
                self._merge_fields(ledger, fragment.section, fragment.tree)

        # 4. measured indicators
        for key, (section, field) in INDICATOR_BINDINGS.items():
            iv = aggregate.measured(key)
            if iv is not None and iv.value is not None:
                ledger.put(section, field, tidy_number(iv.value), Provenance.MEASURED)

        # 5. fallback text
        for section in SECTION_ORDER:
            primary = PRIMARY_TEXT_FIELD[section]
            if ledger.sections[section].get(primary):
                continue
            ledger.put(section, primary, fallback_text(section, aggregate), Provenance.ESTIMATED)
            if section in failed:
                notes.append(f"enrichment failed for {section}; used fallback text")

        for pid, result in sorted(aggregate.results.items()):
            if not result.ok and result.attempts > 0:
                notes.append(f"provider {pid} failed: {result.error}")
        if aggregate.disabled_providers:
            notes.append(
                "unit lookup unavailable; disabled: " + ", ".join(aggregate.disabled_providers)
            )

        confidence = score_confidence(place, aggregate, holistic, len(failed), partial=partial)
        return Report(
            place=place_summary(place),
            sections={s: f for s, f in ledger.sections.items() if f},
            provenance=ledger.provenance,
            confidence=confidence,
            partial=partial,
            degradations=tuple(dict.fromkeys(notes)),
            indicators={k: iv.to_dict() for k, iv in sorted(aggregate.normalized_indicators.items())},
        )

    def _merge_fields(
        self, ledger: _Ledger, section: str, fields: Mapping[str, typing.Any]
    ) -> None:
        for field, value in fields.items():
            if field not in REPORT_SECTIONS[section]:
                continue
            accepted = _accept(section, field, value)
            if accepted is not None:
                ledger.put(section, field, accepted, Provenance.ESTIMATED)


def _holistic_error(command: RepairedCommand) -> str | None:
    response = command.synthesized.holistic
    return response.error if response is not None else None
