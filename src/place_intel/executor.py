"""The primary user-facing entry point for the pipeline.

The executor owns the resources shared across requests (worker pool, rate
limiters, HTTP client, reference tables) and runs each request through the
stage handlers in order. A global per-request deadline caps the whole run: on
expiry the request is finalized from whatever data it has gathered, marked
partial, instead of failing.
"""

from __future__ import annotations

import asyncio
from collections.abc import Sequence
import logging
from time import perf_counter
from typing import TYPE_CHECKING, Any, Self

import httpx

from place_intel.config import FrozenConfig, resolve_config
from place_intel.core.commands import InitialCommand, RequestContext
from place_intel.core.exceptions import (
    ConfigurationError,
    GlobalDeadlineExceeded,
    InvariantViolationError,
    PipelineError,
    PlaceIntelError,
    ResolutionAmbiguous,
    ResolutionFailure,
)
from place_intel.core.types import (
    AggregateRecord,
    Disambiguation,
    Failure,
    PlaceQuery,
    PrecisionHint,
    Report,
    Result,
    Success,
)
from place_intel.events import ProgressListener, ProgressStream, ProgressTracker
from place_intel.pipeline.adapters import GenerationAdapter, MockAdapter
from place_intel.pipeline.aggregator import ProviderAggregator
from place_intel.pipeline.rate_limiter import RateLimiterRegistry
from place_intel.pipeline.repair_handler import OutputRepairer, repair_responses
from place_intel.pipeline.report_builder import ReportBuilder
from place_intel.pipeline.resolver import PlaceResolver
from place_intel.pipeline.synthesizer import NarrativeSynthesizer
from place_intel.pipeline.worker_pool import WorkerPool
from place_intel.providers import (
    Geocoder,
    IndicatorProvider,
    NaverGeocoder,
    NaverLocalSearch,
    PlaceSearch,
    SbizUnitLookup,
    UnitCodeLookup,
    default_providers,
)
from place_intel.reference import ReferenceData, load_reference_data
from place_intel.telemetry import TelemetryContext, TelemetryContextProtocol

if TYPE_CHECKING:
    from place_intel.pipeline.base import BaseAsyncHandler

log = logging.getLogger(__name__)

USER_AGENT = "place-intel"

type Outcome = Report | Disambiguation


class ReportRequest:
    """Handle for one in-flight report.

    Iterate `progress.subscribe()` for progress events, await `result()` for
    the outcome, or call `cancel()` to stop early.
    """

    def __init__(
        self,
        task: asyncio.Task[Outcome],
        context: RequestContext,
        executor: PlaceIntelExecutor,
    ) -> None:
        self._task = task
        self._context = context
        self._executor = executor

    @property
    def progress(self) -> ProgressStream:
        return self._context.progress.stream

    def done(self) -> bool:
        return self._task.done()

    async def result(self) -> Outcome:
        """Wait for the report (or disambiguation choice)."""
        return await self._task

    async def cancel(self) -> Report | None:
        """Cancel every outstanding call.

        Returns the finished report if the request already completed, a
        partial report built from the data gathered so far, or None when
        nothing coherent exists yet.
        """
        if self._task.done() and not self._task.cancelled():
            if self._task.exception() is None:
                outcome = self._task.result()
                return outcome if isinstance(outcome, Report) else None
            return None
        self._task.cancel()
        await asyncio.gather(self._task, return_exceptions=True)
        report = self._executor.finalize_snapshot(self._context, "request cancelled")
        self._context.progress.stream.close()
        return report


class PlaceIntelExecutor:
    """Executes report requests through a pipeline of handlers."""

    def __init__(
        self,
        config: FrozenConfig,
        *,
        reference: ReferenceData | None = None,
        geocoder: Geocoder | None = None,
        searcher: PlaceSearch | None = None,
        unit_lookup: UnitCodeLookup | None = None,
        providers: Sequence[IndicatorProvider] | None = None,
        adapter: GenerationAdapter | None = None,
        http_client: httpx.AsyncClient | None = None,
        pool: WorkerPool | None = None,
        limiters: RateLimiterRegistry | None = None,
        telemetry: TelemetryContextProtocol | None = None,
        pipeline_handlers: Sequence[Any] | None = None,
    ) -> None:
        """Initialize the executor with configuration.

        Every collaborator can be injected; anything omitted is built from
        `config`. The HTTP client is closed by `aclose()` only when the
        executor created it.
        """
        self.config = config
        self._owns_client = http_client is None
        self._client = http_client or httpx.AsyncClient(
            timeout=httpx.Timeout(config.provider_timeout_s),
            headers={"User-Agent": USER_AGENT},
            follow_redirects=True,
        )
        self._reference = reference or load_reference_data()
        self._pool = pool or WorkerPool(config.max_concurrency)
        self._limiters = limiters or RateLimiterRegistry(config.requests_per_minute)
        self._telemetry = telemetry or TelemetryContext()
        self._report_builder = ReportBuilder(self._reference)

        handlers = list(
            pipeline_handlers
            or self._build_default_pipeline(
                geocoder=geocoder,
                searcher=searcher,
                unit_lookup=unit_lookup,
                providers=providers,
                adapter=adapter,
            )
        )
        if not handlers:
            raise ValueError("Pipeline may not be empty; provide at least one handler.")
        self._pipeline = handlers

    def _build_default_pipeline(
        self,
        *,
        geocoder: Geocoder | None,
        searcher: PlaceSearch | None,
        unit_lookup: UnitCodeLookup | None,
        providers: Sequence[IndicatorProvider] | None,
        adapter: GenerationAdapter | None,
    ) -> list[Any]:
        config = self.config
        if geocoder is None and config.naver_map_key_id and config.naver_map_key:
            geocoder = NaverGeocoder(self._client, config.naver_map_key_id, config.naver_map_key)
        if searcher is None and config.naver_client_id and config.naver_client_secret:
            searcher = NaverLocalSearch(
                self._client, config.naver_client_id, config.naver_client_secret
            )
        if unit_lookup is None:
            unit_lookup = SbizUnitLookup(self._client)
        if providers is None:
            providers = default_providers(config)
        if adapter is None:
            adapter = self._build_adapter(config)

        return [
            PlaceResolver(
                self._reference,
                geocoder,
                searcher,
                telemetry=self._telemetry,
            ),
            ProviderAggregator(
                providers,
                self._client,
                pool=self._pool,
                limiters=self._limiters,
                unit_lookup=unit_lookup,
                provider_timeout_s=config.provider_timeout_s,
                neighbor_limit=config.neighbor_limit,
                telemetry=self._telemetry,
            ),
            NarrativeSynthesizer(
                adapter,
                pool=self._pool,
                temperature=config.temperature,
                max_tokens=config.max_output_tokens,
                generation_timeout_s=config.generation_timeout_s,
                enrichment_batch_size=config.enrichment_batch_size,
                telemetry=self._telemetry,
            ),
            OutputRepairer(telemetry=self._telemetry),
            self._report_builder,
        ]

    @staticmethod
    def _build_adapter(config: FrozenConfig) -> GenerationAdapter:
        if not config.use_real_api:
            return MockAdapter()
        # Deferred so the mock path never imports the SDK
        from place_intel.pipeline.adapters.gemini import GoogleGenAIAdapter

        if config.api_key is None:
            raise ConfigurationError("api_key is required when use_real_api=True")
        return GoogleGenAIAdapter(config.api_key, config.model)

    # --- Lifecycle ---

    async def aclose(self) -> None:
        """Release the HTTP client if this executor created it."""
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> Self:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    # --- Requests ---

    def _new_command(
        self,
        query: str,
        precision_hint: PrecisionHint | str | None,
        selection: str | None,
        progress: ProgressListener | None,
    ) -> InitialCommand:
        hint = PrecisionHint(precision_hint) if precision_hint is not None else None
        stream = ProgressStream()
        if progress is not None:
            stream.add_listener(progress)
        context = RequestContext(progress=ProgressTracker(stream))
        return InitialCommand(
            query=PlaceQuery(text=query, precision_hint=hint, selection=selection),
            config=self.config,
            context=context,
        )

    def submit(
        self,
        query: str,
        precision_hint: PrecisionHint | str | None = None,
        *,
        selection: str | None = None,
        progress: ProgressListener | None = None,
    ) -> ReportRequest:
        """Start a report in the background and return a cancellable handle.

        Must be called from within a running event loop.
        """
        command = self._new_command(query, precision_hint, selection, progress)
        task = asyncio.create_task(self._run(command))
        return ReportRequest(task, command.context, self)

    async def execute(
        self,
        query: str,
        precision_hint: PrecisionHint | str | None = None,
        *,
        selection: str | None = None,
        progress: ProgressListener | None = None,
    ) -> Outcome:
        """Build a report for `query`.

        Returns:
            The report, or a Disambiguation when the name is ambiguous.

        Raises:
            ResolutionFailure: If the text cannot be resolved to a place, or
                resolution had not finished when the deadline expired.
        """
        command = self._new_command(query, precision_hint, selection, progress)
        return await self._run(command)

    async def _run(self, command: InitialCommand) -> Outcome:
        context = command.context
        deadline = self.config.global_deadline_s
        body = asyncio.ensure_future(self._run_pipeline(command))
        try:
            done, _ = await asyncio.wait({body}, timeout=deadline)
        except asyncio.CancelledError:
            body.cancel()
            await asyncio.gather(body, return_exceptions=True)
            context.progress.stream.close()
            raise

        try:
            if body in done:
                return body.result()

            body.cancel()
            await asyncio.gather(body, return_exceptions=True)
            self._telemetry.count("pipeline.deadline_exceeded")
            expired = GlobalDeadlineExceeded(f"global deadline of {deadline:g}s exceeded")
            report = self.finalize_snapshot(context, str(expired))
            if report is None:
                log.warning("Deadline expired before '%s' was resolved", command.query.text)
                raise ResolutionFailure(
                    f"Could not resolve '{command.query.text}' before the deadline"
                ) from expired
            log.warning("Deadline expired for '%s'; finalizing partial report", command.query.text)
            context.progress.finish("partial report")
            return report
        finally:
            context.progress.stream.close()

    async def _run_pipeline(self, command: InitialCommand) -> Outcome:
        current: Any = command
        last_stage_name = None
        ctx = self._telemetry

        for handler in self._pipeline:
            last_stage_name = handler.stage_name
            with ctx("pipeline.stage", stage=last_stage_name):
                start = perf_counter()
                result: Result[Any, PlaceIntelError] = await handler.handle(current)
                duration = perf_counter() - start
            log.debug("Stage %s finished in %.3fs", last_stage_name, duration)

            # Guard: handlers must return Success|Failure
            if not isinstance(result, Success | Failure):
                ctx.count("pipeline.invariant_violation", stage=last_stage_name)
                raise InvariantViolationError(
                    "Handler returned a non-Result value; expected Success|Failure.",
                    stage_name=last_stage_name,
                )

            if isinstance(result, Failure):
                error = result.error
                if isinstance(error, ResolutionAmbiguous):
                    return error.disambiguation
                if isinstance(error, ResolutionFailure):
                    raise error
                ctx.count("pipeline.error", stage=last_stage_name)
                raise PipelineError(str(error), last_stage_name, error)
            current = result.value

        if not isinstance(current, Report):
            ctx.count("pipeline.invariant_violation", stage=last_stage_name or "unknown_stage")
            raise InvariantViolationError(
                "Executor ended without a Report; ensure the final stage is ReportBuilder.",
                stage_name=last_stage_name,
            )
        command.context.progress.finish()
        return current

    def finalize_snapshot(self, context: RequestContext, reason: str) -> Report | None:
        """Build a partial report from a request's settled state, if it has a place."""
        place = context.place
        if place is None:
            return None
        if context.aggregate is not None:
            aggregate = context.aggregate.freeze()
        else:
            aggregate = AggregateRecord(place=place).freeze()
        holistic, enrichments, failed = repair_responses(
            context.holistic, context.enrichments.values()
        )
        holistic_error = context.holistic.error if context.holistic is not None else None
        return self._report_builder.finalize(
            aggregate,
            holistic,
            enrichments,
            failed_sections=failed,
            holistic_error=holistic_error or "not finished",
            partial=True,
            degradations=[*context.degradations, reason],
        )

    @property
    def stage_names(self) -> tuple[str, ...]:
        """Return the current pipeline's stage names in execution order."""
        return tuple(h.stage_name for h in self._pipeline)

    @property
    def raw_pipeline(self) -> tuple[BaseAsyncHandler[Any, Any, PlaceIntelError], ...]:
        """Return the handlers as constructed (read-only view)."""
        return tuple(self._pipeline)


def create_executor(config: FrozenConfig | None = None, **kwargs: Any) -> PlaceIntelExecutor:
    """Create an executor, resolving configuration when none is given.

    This is the only place where ambient configuration is resolved.
    """
    final_config = config if config is not None else resolve_config().to_frozen()
    return PlaceIntelExecutor(final_config, **kwargs)


async def generate_report(
    query: str,
    precision_hint: PrecisionHint | str | None = None,
    *,
    selection: str | None = None,
    config: FrozenConfig | None = None,
    progress: ProgressListener | None = None,
) -> Outcome:
    """One-shot convenience: build a report with a short-lived executor."""
    async with create_executor(config) as executor:
        return await executor.execute(
            query, precision_hint, selection=selection, progress=progress
        )
