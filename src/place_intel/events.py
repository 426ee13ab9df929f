"""Progress events published while a report is built.

Progress is driven by task completion, weighted per stage, and is monotonic.
Publishing never blocks the pipeline: subscribers read from their own
unbounded queue and listener errors are logged, not raised.
"""

from __future__ import annotations

import asyncio
from collections.abc import AsyncIterator, Callable
import dataclasses
import logging
from types import MappingProxyType
import typing

log = logging.getLogger(__name__)

STAGE_WEIGHTS: typing.Mapping[str, float] = MappingProxyType(
    {
        "resolve": 0.10,
        "aggregate": 0.40,
        "synthesize": 0.40,
        "finalize": 0.10,
    }
)


@dataclasses.dataclass(frozen=True, slots=True)
class ProgressEvent:
    """One progress update; `fraction` is within [0, 1]."""

    fraction: float
    stage: str
    message: str = ""


type ProgressListener = Callable[[ProgressEvent], None]

_CLOSED = object()


class ProgressStream:
    """Fan-out of progress events to async subscribers and callbacks."""

    def __init__(self) -> None:
        self._queues: list[asyncio.Queue[typing.Any]] = []
        self._listeners: list[ProgressListener] = []
        self._history: list[ProgressEvent] = []
        self._closed = False

    @property
    def history(self) -> tuple[ProgressEvent, ...]:
        """Every event published so far."""
        return tuple(self._history)

    @property
    def closed(self) -> bool:
        return self._closed

    def add_listener(self, listener: ProgressListener) -> None:
        """Register a callback invoked synchronously for each event."""
        self._listeners.append(listener)

    def publish(self, event: ProgressEvent) -> None:
        """Deliver an event to every subscriber and listener."""
        if self._closed:
            return
        self._history.append(event)
        for queue in self._queues:
            queue.put_nowait(event)
        for listener in self._listeners:
            try:
                listener(event)
            except Exception as e:
                log.error("Progress listener failed: %s", e, exc_info=True)

    def close(self) -> None:
        """End the stream; subscribers finish after draining their queue."""
        if self._closed:
            return
        self._closed = True
        for queue in self._queues:
            queue.put_nowait(_CLOSED)

    async def subscribe(self) -> AsyncIterator[ProgressEvent]:
        """Iterate events from now until the stream closes.

        Events already published are replayed first.
        """
        queue: asyncio.Queue[typing.Any] = asyncio.Queue()
        for event in self._history:
            queue.put_nowait(event)
        if self._closed:
            queue.put_nowait(_CLOSED)
        else:
            self._queues.append(queue)
        try:
            while True:
                item = await queue.get()
                if item is _CLOSED:
                    return
                yield item
        finally:
            if queue in self._queues:
                self._queues.remove(queue)


class ProgressTracker:
    """Turns per-stage task counts into a monotonic overall fraction."""

    def __init__(
        self,
        stream: ProgressStream | None = None,
        weights: typing.Mapping[str, float] = STAGE_WEIGHTS,
    ) -> None:
        self.stream = stream or ProgressStream()
        self._weights = weights
        self._planned: dict[str, int] = dict.fromkeys(weights, 0)
        self._done: dict[str, int] = dict.fromkeys(weights, 0)
        self._complete: set[str] = set()
        self._fraction = 0.0

    @property
    def fraction(self) -> float:
        return self._fraction

    def plan(self, stage: str, tasks: int) -> None:
        """Announce `tasks` more units of work for `stage`."""
        self._planned[stage] += tasks

    def task_done(self, stage: str, message: str = "") -> None:
        """Mark one unit of work for `stage` as finished."""
        self._done[stage] = min(self._done[stage] + 1, self._planned[stage])
        self._publish(stage, message)

    def stage_done(self, stage: str, message: str = "") -> None:
        """Mark `stage` complete regardless of remaining tasks."""
        self._complete.add(stage)
        self._publish(stage, message)

    def finish(self, message: str = "done") -> None:
        """Publish 1.0 and close the stream."""
        self._complete.update(self._weights)
        self._publish("finalize", message)
        self.stream.close()

    def _stage_fraction(self, stage: str) -> float:
        if stage in self._complete:
            return 1.0
        planned = self._planned[stage]
        return self._done[stage] / planned if planned else 0.0

    def _publish(self, stage: str, message: str) -> None:
        value = sum(w * self._stage_fraction(s) for s, w in self._weights.items())
        value = min(1.0, round(value, 6))
        # Work can be planned after earlier tasks finished; never go backwards.
        if value < self._fraction:
            value = self._fraction
        self._fraction = value
        self.stream.publish(ProgressEvent(fraction=value, stage=stage, message=message))
