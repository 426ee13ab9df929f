"""Narrative synthesis stage of the pipeline.

One holistic call covers the whole report while section-scoped enrichment
calls run beside it in fixed-size batches. Every call has its own timeout
and one retry; a failed call is recorded as a failed response, never raised.
"""

from __future__ import annotations

import asyncio
import logging
import time
import typing

from place_intel.core.commands import (
    AggregatedCommand,
    RequestContext,
    SynthesizedCommand,
)
from place_intel.core.exceptions import PlaceIntelError, SynthesisFailure
from place_intel.core.schema import SECTION_ORDER
from place_intel.core.types import AggregateRecord, Result, Success, SynthesisResponse
from place_intel.events import ProgressTracker
from place_intel.pipeline.adapters.base import GenerationAdapter
from place_intel.pipeline.base import BaseAsyncHandler
from place_intel.pipeline.worker_pool import WorkerPool
from place_intel.prompts import enrichment_prompt, holistic_prompt
from place_intel.telemetry import TelemetryContext, TelemetryContextProtocol

log = logging.getLogger(__name__)

# --- Telemetry scopes ---
T_SYNTH_CALL = "synthesize.call"
T_SYNTH_RETRY = "synthesize.retry"
T_SYNTH_FAILURE = "synthesize.failure"


class NarrativeSynthesizer(
    BaseAsyncHandler[AggregatedCommand, SynthesizedCommand, PlaceIntelError]
):
    """Issues the holistic and enrichment generation calls."""

    def __init__(
        self,
        adapter: GenerationAdapter,
        *,
        pool: WorkerPool,
        temperature: float = 0.4,
        max_tokens: int = 4096,
        generation_timeout_s: float = 30.0,
        enrichment_batch_size: int = 3,
        max_attempts: int = 2,
        sections: typing.Sequence[str] = SECTION_ORDER,
        telemetry: TelemetryContextProtocol | None = None,
    ) -> None:
        if enrichment_batch_size < 1:
            raise ValueError("enrichment_batch_size must be >= 1")
        self._adapter = adapter
        self._pool = pool
        self._temperature = temperature
        self._max_tokens = max_tokens
        self._timeout_s = generation_timeout_s
        self._batch_size = enrichment_batch_size
        self._max_attempts = max(1, max_attempts)
        self._sections = tuple(sections)
        self._telemetry = telemetry or TelemetryContext()

    @property
    def stage_name(self) -> str:
        return "synthesize"

    async def handle(
        self, command: AggregatedCommand
    ) -> Result[SynthesizedCommand, PlaceIntelError]:
        """Run every generation call; individual failures stay in the responses."""
        context = command.resolved.initial.context
        holistic, enrichments = await self.synthesize(command.aggregate, context)
        context.progress.stage_done(self.stage_name)
        return Success(
            SynthesizedCommand(
                aggregated=command, holistic=holistic, enrichments=tuple(enrichments)
            )
        )

    async def synthesize(
        self, aggregate: AggregateRecord, context: RequestContext | None = None
    ) -> tuple[SynthesisResponse, list[SynthesisResponse]]:
        """Return the holistic response and one enrichment response per section."""
        if context is None:
            context = RequestContext(progress=ProgressTracker())
        context.progress.plan(self.stage_name, 1 + len(self._sections))

        holistic, enrichments = await asyncio.gather(
            self._call("holistic", None, holistic_prompt(aggregate), context),
            self._enrich(aggregate, context),
        )
        failed = [r.section for r in enrichments if not r.ok]
        if failed:
            log.debug("Enrichment failed for sections: %s", failed)
        return holistic, enrichments

    async def _enrich(
        self, aggregate: AggregateRecord, context: RequestContext
    ) -> list[SynthesisResponse]:
        responses: list[SynthesisResponse] = []
        for start in range(0, len(self._sections), self._batch_size):
            batch = self._sections[start : start + self._batch_size]
            responses.extend(
                await asyncio.gather(
                    *(
                        self._call(
                            "enrichment", s, enrichment_prompt(s, aggregate), context
                        )
                        for s in batch
                    )
                )
            )
        return responses

    async def _call(
        self,
        kind: typing.Literal["holistic", "enrichment"],
        section: str | None,
        prompt: str,
        context: RequestContext,
    ) -> SynthesisResponse:
        start = time.perf_counter()
        attempts = 0
        error: Exception | None = None
        text: str | None = None
        with self._telemetry(T_SYNTH_CALL, kind=kind, section=section):
            while attempts < self._max_attempts:
                attempts += 1
                try:
                    text = await self._pool.run(lambda: self._generate(prompt))
                    break
                except Exception as e:
                    error = e
                    if attempts < self._max_attempts:
                        self._telemetry.count(T_SYNTH_RETRY, kind=kind)
                        log.debug("Retrying %s call (%s): %s", kind, section or "all", e)

        latency = time.perf_counter() - start
        if text is not None:
            response = SynthesisResponse(
                kind=kind,
                text=text,
                ok=True,
                section=section,
                attempts=attempts,
                latency_s=latency,
            )
        else:
            self._telemetry.count(T_SYNTH_FAILURE, kind=kind)
            message = (
                f"timed out after {self._timeout_s:g}s"
                if isinstance(error, TimeoutError)
                else str(error) or type(error).__name__
            )
            response = SynthesisResponse(
                kind=kind,
                text=None,
                ok=False,
                section=section,
                error=message,
                attempts=attempts,
                latency_s=latency,
            )
        context.record_synthesis(response)
        context.progress.task_done(self.stage_name, section or kind)
        return response

    async def _generate(self, prompt: str) -> str:
        async with asyncio.timeout(self._timeout_s):
            text = await self._adapter.generate(
                prompt, temperature=self._temperature, max_tokens=self._max_tokens
            )
        if not text or not text.strip():
            raise SynthesisFailure("model returned an empty response")
        return text
