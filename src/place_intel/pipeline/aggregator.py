"""Provider aggregation stage of the pipeline.

The unit-code lookup runs first and alone; every other provider then runs
concurrently through the shared worker pool. Each provider call has its own
timeout, rate limiter and retry budget, and a failure only ever affects that
provider's indicators. Results merge into the request's `AggregateRecord` as
they settle, so a forced finalization sees everything that arrived.
"""

from __future__ import annotations

import asyncio
from collections.abc import Iterable, Sequence
import logging
import math
import random
import time

import httpx

from place_intel.core.commands import AggregatedCommand, ResolvedCommand
from place_intel.core.exceptions import InvariantViolationError, PlaceIntelError
from place_intel.core.types import (
    AdminUnit,
    AggregateRecord,
    Failure,
    IndicatorValue,
    Provenance,
    ProviderResult,
    ResolvedPlace,
    Result,
    Success,
)
from place_intel.events import ProgressTracker
from place_intel.pipeline.base import BaseAsyncHandler
from place_intel.pipeline.rate_limiter import RateLimiterRegistry
from place_intel.pipeline.worker_pool import WorkerPool
from place_intel.providers.base import (
    IndicatorProvider,
    ProviderTarget,
    absent_readings,
    is_transient,
)
from place_intel.providers.lookups import UnitCodeLookup
from place_intel.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

UNIT_LOOKUP_UNAVAILABLE = "unit lookup unavailable"
NOT_APPLICABLE = "no coverage for this place"

type Readings = tuple[IndicatorValue, ...]


def _describe(error: BaseException, timeout_s: float) -> str:
    if isinstance(error, TimeoutError):
        return f"timed out after {timeout_s:g}s"
    return str(error) or type(error).__name__


class ProviderAggregator(
    BaseAsyncHandler[ResolvedCommand, AggregatedCommand, PlaceIntelError]
):
    """Gathers provider data for a resolved place into an AggregateRecord."""

    def __init__(
        self,
        providers: Sequence[IndicatorProvider],
        client: httpx.AsyncClient,
        *,
        pool: WorkerPool,
        limiters: RateLimiterRegistry,
        unit_lookup: UnitCodeLookup | None = None,
        provider_timeout_s: float = 8.0,
        neighbor_limit: int = 4,
        backoff_base_s: float = 0.2,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        ids = [p.provider_id for p in providers]
        if len(set(ids)) != len(ids):
            raise ValueError(f"Duplicate provider ids: {ids}")
        self._providers = tuple(providers)
        self._priority = {pid: i for i, pid in enumerate(ids)}
        self._client = client
        self._pool = pool
        self._limiters = limiters
        self._unit_lookup = unit_lookup
        self._provider_timeout_s = provider_timeout_s
        self._neighbor_limit = neighbor_limit
        self._backoff_base_s = backoff_base_s
        self._telemetry = telemetry or TelemetryContext()

    @property
    def stage_name(self) -> str:
        return "aggregate"

    @property
    def providers(self) -> tuple[IndicatorProvider, ...]:
        return self._providers

    async def handle(
        self, command: ResolvedCommand
    ) -> Result[AggregatedCommand, PlaceIntelError]:
        """Aggregate provider data; provider failures never fail the stage."""
        context = command.initial.context
        builder = self.new_record(command.place)
        context.aggregate = builder
        try:
            await self.collect(builder, context.progress, context.degradations)
        except PlaceIntelError as e:
            return Failure(e)
        context.place = builder.place
        context.progress.stage_done(self.stage_name)
        return Success(AggregatedCommand(resolved=command, aggregate=builder.freeze()))

    def new_record(self, place: ResolvedPlace) -> AggregateRecord:
        """Create an empty builder ranked by this aggregator's provider order."""
        return AggregateRecord(place=place, provider_priority=dict(self._priority))

    async def aggregate(
        self, place: ResolvedPlace, progress: ProgressTracker | None = None
    ) -> AggregateRecord:
        """Convenience wrapper: collect into a new record and freeze it."""
        builder = self.new_record(place)
        await self.collect(builder, progress or ProgressTracker())
        return builder.freeze()

    async def collect(
        self,
        record: AggregateRecord,
        progress: ProgressTracker,
        degradations: list[str] | None = None,
    ) -> None:
        """Fill `record` in place as provider calls settle.

        A failed unit lookup is described in `degradations` when given.
        """
        place = await self._ensure_unit(record.place, degradations)
        record.place = place

        active: list[IndicatorProvider] = []
        disabled: list[str] = []
        for provider in self._providers:
            if place.unit is None and provider.keyed_by == "unit":
                disabled.append(provider.provider_id)
                record.merge(
                    ProviderResult(
                        provider_id=provider.provider_id,
                        target="",
                        ok=False,
                        attempts=0,
                        error=UNIT_LOOKUP_UNAVAILABLE,
                    ),
                    absent_readings(provider),
                )
            else:
                active.append(provider)
        if disabled:
            log.debug("Unit unknown; disabled unit-keyed providers: %s", disabled)
            record.disabled_providers = tuple(disabled)

        progress.plan(self.stage_name, len(active))
        with self._telemetry("aggregate.providers", count=len(active)):
            await asyncio.gather(
                *(self._run_provider(p, place, record, progress) for p in active)
            )
        self._telemetry.gauge("aggregate.success_ratio", record.success_ratio)

    # --- Prerequisite ---

    async def _ensure_unit(
        self, place: ResolvedPlace, degradations: list[str] | None
    ) -> ResolvedPlace:
        if place.unit is not None or self._unit_lookup is None:
            return place
        with self._telemetry("aggregate.unit_lookup"):
            try:
                async with asyncio.timeout(self._provider_timeout_s):
                    lookup = await self._unit_lookup.unit_code(place.coordinate)
            except Exception as e:
                message = _describe(e, self._provider_timeout_s)
                log.debug("Unit lookup failed for '%s': %s", place.name, message)
                if degradations is not None:
                    degradations.append(f"unit lookup failed: {message}")
                return place
        if lookup is None:
            return place
        neighbors = tuple(n for n in lookup.neighbors if n != lookup.unit)
        return place.with_unit(lookup.unit, neighbors)

    # --- Provider calls ---

    async def _run_provider(
        self,
        provider: IndicatorProvider,
        place: ResolvedPlace,
        record: AggregateRecord,
        progress: ProgressTracker,
    ) -> None:
        target = ProviderTarget(coordinate=place.coordinate, unit=place.unit)
        result, readings = await self._call(provider, target)
        record.merge(result, readings)
        progress.task_done(self.stage_name, provider.provider_id)

        wanted = self._neighbor_keys(provider, readings)
        if wanted and place.neighbors and self._neighbor_limit > 0:
            await self._expand_neighbors(provider, place, record, progress, wanted)

    async def _call(
        self, provider: IndicatorProvider, target: ProviderTarget
    ) -> tuple[ProviderResult, Readings]:
        """Call one provider for one target with its retry budget."""
        pid = provider.provider_id
        if not provider.applies_to(target):
            result = ProviderResult(
                provider_id=pid, target="", ok=False, attempts=0, error=NOT_APPLICABLE
            )
            return result, absent_readings(provider)

        key = target.key(provider.keyed_by)
        max_attempts = max(1, provider.max_attempts)
        start = time.perf_counter()
        attempts = 0
        error: BaseException | None = None
        with self._telemetry("aggregate.provider", provider=pid):
            while attempts < max_attempts:
                attempts += 1
                try:
                    payload, readings = await self._pool.run(
                        lambda: self._attempt(provider, target)
                    )
                except Exception as e:
                    error = e
                    if attempts < max_attempts and is_transient(e):
                        self._telemetry.count("aggregate.retry", provider=pid)
                        await asyncio.sleep(self._backoff(attempts))
                        continue
                    break
                result = ProviderResult(
                    provider_id=pid,
                    target=key,
                    ok=True,
                    payload=payload,
                    latency_s=time.perf_counter() - start,
                    attempts=attempts,
                )
                return result, readings

        if error is None:
            raise InvariantViolationError(
                f"provider {pid} ended without a result or an error", stage_name=self.stage_name
            )
        message = _describe(error, self._provider_timeout_s)
        log.debug("Provider %s failed for %s after %d attempt(s): %s", pid, key, attempts, message)
        self._telemetry.count("aggregate.provider_failure", provider=pid)
        result = ProviderResult(
            provider_id=pid,
            target=key,
            ok=False,
            latency_s=time.perf_counter() - start,
            attempts=attempts,
            error=message,
        )
        return result, absent_readings(provider)

    async def _attempt(
        self, provider: IndicatorProvider, target: ProviderTarget
    ) -> tuple[object, Readings]:
        async with self._limiters.get(provider.provider_id).request_context():
            async with asyncio.timeout(self._provider_timeout_s):
                payload = await provider.fetch(target, self._client)
        return payload, tuple(provider.normalize(payload))

    def _backoff(self, attempt: int) -> float:
        return self._backoff_base_s * (2 ** (attempt - 1)) * (1 + 0.25 * random.random())

    # --- Neighbor expansion ---

    def _neighbor_keys(
        self, provider: IndicatorProvider, readings: Iterable[IndicatorValue]
    ) -> set[str]:
        """Indicator keys whose primary reading is zero or missing."""
        if not provider.neighbor_sensitive or provider.keyed_by != "unit":
            return set()
        by_key = {r.key: r for r in readings}
        wanted = set()
        for spec in provider.indicators:
            reading = by_key.get(spec.key)
            if reading is None or reading.value is None or reading.value == 0:
                wanted.add(spec.key)
        return wanted

    async def _expand_neighbors(
        self,
        provider: IndicatorProvider,
        place: ResolvedPlace,
        record: AggregateRecord,
        progress: ProgressTracker,
        wanted: set[str],
    ) -> None:
        neighbors = place.neighbors[: self._neighbor_limit]
        progress.plan(self.stage_name, len(neighbors))

        async def one(unit: AdminUnit) -> tuple[ProviderResult, Readings]:
            outcome = await self._call(
                provider, ProviderTarget(coordinate=place.coordinate, unit=unit)
            )
            progress.task_done(self.stage_name, f"{provider.provider_id}@{unit.code}")
            return outcome

        with self._telemetry("aggregate.neighbors", provider=provider.provider_id):
            outcomes = await asyncio.gather(*(one(n) for n in neighbors))
        record.neighbor_results[provider.provider_id] = tuple(r for r, _ in outcomes)

        for spec in provider.indicators:
            if spec.key not in wanted:
                continue
            values = [
                r.value
                for _, readings in outcomes
                for r in readings
                if r.key == spec.key and r.value is not None
            ]
            if not values:
                continue
            record.offer(
                IndicatorValue(
                    key=spec.key,
                    value=math.fsum(values) / len(values),
                    unit=spec.unit,
                    provenance=Provenance.MEASURED,
                    provider_id=provider.provider_id,
                    contributing_units=len(values),
                    basis="neighbors",
                )
            )
