"""Upstream data providers and place lookups."""

from .base import (
    IndicatorProvider,
    IndicatorSpec,
    ProviderTarget,
    absent_readings,
    is_transient,
)
from .indicators import (
    FloatingPopulationPayload,
    MetricSpec,
    ProviderPayload,
    SbizMetricPayload,
    SbizOpenApiProvider,
    SeoulFloatingPopulationProvider,
    StoreCountPayload,
    StoreCountProvider,
)
from .lookups import (
    GeocodeHit,
    Geocoder,
    NaverGeocoder,
    NaverLocalSearch,
    PlaceSearch,
    SbizUnitLookup,
    SearchCandidate,
    UnitCodeLookup,
)
from .registry import default_providers

__all__ = [  # noqa: RUF022
    # Protocols and helpers
    "IndicatorProvider",
    "IndicatorSpec",
    "ProviderTarget",
    "absent_readings",
    "is_transient",
    "default_providers",
    # Indicator providers
    "StoreCountProvider",
    "SbizOpenApiProvider",
    "SeoulFloatingPopulationProvider",
    "MetricSpec",
    "ProviderPayload",
    "StoreCountPayload",
    "SbizMetricPayload",
    "FloatingPopulationPayload",
    # Lookups
    "Geocoder",
    "PlaceSearch",
    "UnitCodeLookup",
    "GeocodeHit",
    "SearchCandidate",
    "NaverGeocoder",
    "NaverLocalSearch",
    "SbizUnitLookup",
]
