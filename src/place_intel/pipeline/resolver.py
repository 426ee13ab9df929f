"""Place resolution stage of the pipeline."""

from __future__ import annotations

import logging
import re

from place_intel.core.commands import InitialCommand, ResolvedCommand
from place_intel.core.exceptions import (
    PlaceIntelError,
    ResolutionAmbiguous,
    ResolutionFailure,
)
from place_intel.core.types import (
    ConfidenceTier,
    Disambiguation,
    Failure,
    NotFound,
    PlaceCandidate,
    PlaceQuery,
    PrecisionHint,
    ResolutionOutcome,
    ResolvedPlace,
    Result,
    Success,
)
from place_intel.pipeline.base import BaseAsyncHandler
from place_intel.projection import from_naver_native
from place_intel.providers.lookups import (
    GeocodeHit,
    Geocoder,
    PlaceSearch,
    SearchCandidate,
)
from place_intel.reference import GazetteerEntry, ReferenceData
from place_intel.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

_LOT_NUMBER_RE = re.compile(r"\s*\d+(-\d+)?$")
_STATION_SUFFIX = "역"


def query_expansions(text: str, reference: ReferenceData) -> list[str]:
    """Alternative spellings of `text` to geocode, in a fixed order.

    The raw text itself is not included.
    """
    text = " ".join(text.split())
    tokens = text.split(" ")
    variants: list[str] = []

    # 서울 -> 서울특별시
    if tokens[0] in reference.provinces:
        variants.append(" ".join([reference.provinces[tokens[0]], *tokens[1:]]))

    # 성수동 -> 서울특별시 성동구 성수동
    for i, token in enumerate(tokens):
        qualified = reference.neighborhoods.get(token)
        if qualified is not None:
            variants.append(" ".join([*tokens[:i], qualified, *tokens[i + 1 :]]))
            break

    # 창신동 407-4 -> 창신동
    stripped = _LOT_NUMBER_RE.sub("", text)
    if stripped and stripped != text:
        variants.append(stripped)

    # 강남역 <-> 강남
    if text.endswith(_STATION_SUFFIX) and len(text) > 1:
        variants.append(text[: -len(_STATION_SUFFIX)])
    else:
        variants.append(text + _STATION_SUFFIX)

    return [v for v in dict.fromkeys(variants) if v and v != text]


class PlaceResolver(BaseAsyncHandler[InitialCommand, ResolvedCommand, PlaceIntelError]):
    """Resolves free text into a canonical place.

    Strategies, first success wins: curated gazetteer (exact), structured
    geocoding of the text and its expansions (geocoded), free-text place
    search (approximate). The place is published on the request context as
    soon as it has a coordinate; binding its administrative unit is the
    aggregation stage's first call.
    """

    def __init__(
        self,
        reference: ReferenceData,
        geocoder: Geocoder | None = None,
        searcher: PlaceSearch | None = None,
        *,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        self._reference = reference
        self._geocoder = geocoder
        self._searcher = searcher
        self._telemetry = telemetry or TelemetryContext()

    @property
    def stage_name(self) -> str:
        return "resolve"

    async def handle(
        self, command: InitialCommand
    ) -> Result[ResolvedCommand, PlaceIntelError]:
        """Resolve the command's query; ambiguity and misses become failures."""
        context = command.context
        context.progress.plan(self.stage_name, 1)
        try:
            outcome = await self.resolve(command.query)
        except PlaceIntelError as e:
            return Failure(e)

        if isinstance(outcome, Disambiguation):
            return Failure(ResolutionAmbiguous(outcome))
        if isinstance(outcome, NotFound):
            return Failure(
                ResolutionFailure(
                    f"Could not resolve '{outcome.text}' to a place",
                    attempted=outcome.attempted,
                )
            )
        context.place = outcome
        context.progress.task_done(self.stage_name, outcome.name)
        context.progress.stage_done(self.stage_name)
        return Success(ResolvedCommand(initial=command, place=outcome))

    async def resolve(self, query: PlaceQuery) -> ResolutionOutcome:
        """Return a place, a disambiguation choice, or NotFound."""
        text = " ".join(query.text.split())

        if query.precision_hint is not PrecisionHint.ADDRESS:
            entries = self._reference.lookup(text)
            if query.selection is not None:
                wanted = self._reference.provinces.get(query.selection, query.selection)
                entries = tuple(e for e in entries if e.province == wanted)
            provinces = {e.province for e in entries}
            if len(provinces) > 1:
                return self._disambiguation(text, entries)
            if entries:
                with self._telemetry("resolve.gazetteer"):
                    place = self._from_gazetteer(entries[0], text)
                return place

        attempts = [text, *query_expansions(text, self._reference)]

        hit, used = await self._geocode_first(attempts)
        if hit is not None:
            place = self._from_geocode(query.text, hit, used, ConfidenceTier.GEOCODED)
            return place

        place = await self._search(query.text, attempts)
        if place is not None:
            return place

        log.debug("No strategy resolved '%s' (tried %d spellings)", text, len(attempts))
        return NotFound(text=query.text, attempted=tuple(attempts))

    # --- Strategies ---

    def _from_gazetteer(self, entry: GazetteerEntry, text: str) -> ResolvedPlace:
        return ResolvedPlace(
            name=entry.name,
            coordinate=entry.coordinate,
            confidence=ConfidenceTier.EXACT,
            parents=entry.parents,
            formatted_address=entry.address,
            query_used=text,
        )

    def _disambiguation(
        self, text: str, entries: tuple[GazetteerEntry, ...]
    ) -> Disambiguation:
        first_per_province: dict[str, GazetteerEntry] = {}
        for entry in entries:
            first_per_province.setdefault(entry.province, entry)
        return Disambiguation(
            text=text,
            candidates=tuple(
                PlaceCandidate(name=e.name, province=e.province, coordinate=e.coordinate)
                for e in first_per_province.values()
            ),
        )

    async def _geocode_first(
        self, attempts: list[str]
    ) -> tuple[GeocodeHit | None, str | None]:
        if self._geocoder is None:
            return None, None
        for candidate in attempts:
            hit = await self._geocode(candidate)
            if hit is not None:
                return hit, candidate
        return None, None

    async def _geocode(self, text: str) -> GeocodeHit | None:
        geocoder = self._geocoder
        if geocoder is None:
            return None
        with self._telemetry("resolve.geocode"):
            try:
                return await geocoder.geocode(text)
            except Exception as e:
                log.debug("Geocoding '%s' failed: %s", text, e)
                self._telemetry.count("resolve.geocode_error")
                return None

    def _from_geocode(
        self,
        name: str,
        hit: GeocodeHit,
        used: str | None,
        confidence: ConfidenceTier,
    ) -> ResolvedPlace:
        return ResolvedPlace(
            name=name,
            coordinate=hit.coordinate,
            confidence=confidence,
            parents=tuple(hit.admin_units[:2]),
            formatted_address=hit.formatted_address or None,
            query_used=used,
        )

    async def _search(self, name: str, attempts: list[str]) -> ResolvedPlace | None:
        if self._searcher is None:
            return None
        for candidate_text in attempts:
            with self._telemetry("resolve.search"):
                try:
                    candidates = await self._searcher.search(candidate_text)
                except Exception as e:
                    log.debug("Place search for '%s' failed: %s", candidate_text, e)
                    continue
            if not candidates:
                continue
            place = await self._from_candidate(name, candidates[0], candidate_text)
            if place is not None:
                return place
        return None

    async def _from_candidate(
        self, name: str, candidate: SearchCandidate, used: str
    ) -> ResolvedPlace | None:
        if candidate.address and self._geocoder is not None:
            hit = await self._geocode(candidate.address)
            if hit is not None:
                return self._from_geocode(
                    candidate.name or name, hit, used, ConfidenceTier.APPROXIMATE
                )
        if candidate.native_x and candidate.native_y:
            coordinate = from_naver_native(candidate.native_x, candidate.native_y)
            if coordinate is None:
                log.debug("Unusable native coordinate for '%s'", candidate.name)
                return None
            return ResolvedPlace(
                name=candidate.name or name,
                coordinate=coordinate,
                confidence=ConfidenceTier.APPROXIMATE,
                formatted_address=candidate.address,
                query_used=used,
            )
        return None
