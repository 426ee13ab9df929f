"""Telemetry context and reporter interfaces.

Near-zero overhead when disabled; scoped timings and metrics when enabled
with PLACE_INTEL_TELEMETRY=1 and at least one reporter.
"""

from collections import deque
from collections.abc import Iterator
from contextlib import AbstractContextManager, contextmanager
from contextvars import ContextVar
from dataclasses import dataclass
import logging
import os
import time
from types import TracebackType
from typing import Any, Protocol, Self, runtime_checkable

log = logging.getLogger(__name__)

# Per-task scope stack so concurrent provider calls nest correctly
_scope_stack_var: ContextVar[tuple[str, ...]] = ContextVar("scope_stack", default=())


def telemetry_enabled() -> bool:
    """Return True when telemetry is switched on through the environment."""
    return os.getenv("PLACE_INTEL_TELEMETRY") == "1"


@runtime_checkable
class TelemetryReporter(Protocol):
    """Duck-typed protocol for telemetry reporters."""

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None: ...  # noqa: D102
    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None: ...  # noqa: D102


@dataclass(frozen=True, slots=True)
class _NoOpTelemetryContext:
    """Immutable, stateless no-op context."""

    def __call__(self, name: str, **metadata: Any) -> Self:  # noqa: ARG002
        return self

    def __enter__(self) -> Self:
        return self

    def __exit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> bool | None:
        return None

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        pass

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        pass

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        pass


class _EnabledTelemetryContext:
    """Telemetry context that forwards scopes and metrics to reporters."""

    __slots__ = ("reporters",)

    def __init__(self, *reporters: TelemetryReporter):
        self.reporters = reporters

    def __call__(
        self, name: str, **metadata: Any
    ) -> AbstractContextManager["_EnabledTelemetryContext"]:
        return self._scope(name, **metadata)

    @contextmanager
    def _scope(self, name: str, **metadata: Any) -> Iterator["_EnabledTelemetryContext"]:
        if not name or not isinstance(name, str):
            raise ValueError("Scope name must be a non-empty string")

        stack = _scope_stack_var.get()
        token = _scope_stack_var.set((*stack, name))
        start = time.perf_counter()
        try:
            yield self
        finally:
            duration = time.perf_counter() - start
            _scope_stack_var.reset(token)
            self._emit(
                "record_timing",
                ".".join((*stack, name)),
                duration,
                depth=len(stack),
                parent_scope=".".join(stack) or None,
                **metadata,
            )

    def _emit(self, method: str, scope: str, value: Any, **metadata: Any) -> None:
        for reporter in self.reporters:
            try:
                getattr(reporter, method)(scope, value, **metadata)
            except Exception as e:
                log.error(
                    "Telemetry reporter '%s' failed: %s",
                    type(reporter).__name__,
                    e,
                    exc_info=True,
                )

    def metric(self, name: str, value: Any, **metadata: Any) -> None:
        """Record a metric within the current scope."""
        stack = _scope_stack_var.get()
        self._emit(
            "record_metric",
            ".".join((*stack, name)),
            value,
            depth=len(stack),
            parent_scope=".".join(stack) or None,
            **metadata,
        )

    def count(self, name: str, increment: int = 1, **metadata: Any) -> None:
        """Record a counter metric."""
        self.metric(name, increment, metric_type="counter", **metadata)

    def gauge(self, name: str, value: float, **metadata: Any) -> None:
        """Record a gauge metric."""
        self.metric(name, value, metric_type="gauge", **metadata)


_NO_OP_SINGLETON = _NoOpTelemetryContext()

type TelemetryContextProtocol = _EnabledTelemetryContext | _NoOpTelemetryContext


def TelemetryContext(*reporters: TelemetryReporter) -> TelemetryContextProtocol:  # noqa: N802
    """Return a telemetry context.

    Returns the shared no-op instance unless telemetry is enabled and at
    least one reporter is given.
    """
    if reporters and telemetry_enabled():
        return _EnabledTelemetryContext(*reporters)
    return _NO_OP_SINGLETON


class InMemoryReporter:
    """Reporter that keeps recent timings and metrics in memory."""

    def __init__(self, max_entries_per_scope: int = 1000):
        self.max_entries = max_entries_per_scope
        self.timings: dict[str, deque[tuple[float, dict[str, Any]]]] = {}
        self.metrics: dict[str, deque[tuple[Any, dict[str, Any]]]] = {}

    def record_timing(self, scope: str, duration: float, **metadata: Any) -> None:
        self.timings.setdefault(scope, deque(maxlen=self.max_entries)).append(
            (duration, metadata)
        )

    def record_metric(self, scope: str, value: Any, **metadata: Any) -> None:
        self.metrics.setdefault(scope, deque(maxlen=self.max_entries)).append(
            (value, metadata)
        )

    def get_report(self) -> str:
        """Flat text summary of everything recorded."""
        lines = ["=== Telemetry Report ==="]
        for scope, entries in sorted(self.timings.items()):
            total = sum(d for d, _ in entries)
            lines.append(f"{scope:<40} | Calls: {len(entries):<4} | Total: {total:.3f}s")
        for scope, values in sorted(self.metrics.items()):
            total = sum(v for v, _ in values if isinstance(v, int | float))
            lines.append(f"{scope:<40} | Count: {len(values):<4} | Total: {total:,.0f}")
        return "\n".join(lines)
