"""Pipeline stages, shared concurrency primitives and text repair."""

from .aggregator import ProviderAggregator
from .base import BaseAsyncHandler
from .rate_limiter import AsyncRateLimiter, RateLimiterRegistry
from .repair import repair
from .repair_handler import OutputRepairer, repair_responses
from .report_builder import ReportBuilder
from .resolver import PlaceResolver, query_expansions
from .sanitize import sanitize
from .synthesizer import NarrativeSynthesizer
from .worker_pool import WorkerPool

__all__ = [  # noqa: RUF022
    # Stages
    "BaseAsyncHandler",
    "PlaceResolver",
    "ProviderAggregator",
    "NarrativeSynthesizer",
    "OutputRepairer",
    "ReportBuilder",
    # Shared resources
    "WorkerPool",
    "AsyncRateLimiter",
    "RateLimiterRegistry",
    # Pure helpers
    "query_expansions",
    "repair",
    "repair_responses",
    "sanitize",
]
