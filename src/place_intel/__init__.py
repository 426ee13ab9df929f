"""Commercial-district reports for Korean places."""

import importlib.metadata
import logging

from place_intel.config import FrozenConfig, resolve_config
from place_intel.core.exceptions import (
    ConfigurationError,
    PlaceIntelError,
    ResolutionFailure,
)
from place_intel.core.types import (
    ConfidenceTier,
    Disambiguation,
    PlaceCandidate,
    PrecisionHint,
    Provenance,
    Report,
    ReportConfidence,
)
from place_intel.events import ProgressEvent, ProgressStream
from place_intel.executor import (
    PlaceIntelExecutor,
    ReportRequest,
    create_executor,
    generate_report,
)
from place_intel.reference import ReferenceData, load_reference_data
from place_intel.telemetry import TelemetryContext, TelemetryReporter

# Version handling
try:
    __version__ = importlib.metadata.version("place-intel")
except importlib.metadata.PackageNotFoundError:
    __version__ = "development"

# Null handler so applications without logging configured see no warnings
logging.getLogger(__name__).addHandler(logging.NullHandler())

# Public API
__all__ = [  # noqa: RUF022
    # Entry points
    "generate_report",
    "create_executor",
    "PlaceIntelExecutor",
    "ReportRequest",
    # Configuration
    "resolve_config",
    "FrozenConfig",
    # Results
    "Report",
    "Disambiguation",
    "PlaceCandidate",
    "PrecisionHint",
    "ConfidenceTier",
    "Provenance",
    "ReportConfidence",
    # Progress
    "ProgressEvent",
    "ProgressStream",
    # Reference data
    "ReferenceData",
    "load_reference_data",
    # Telemetry (extension points)
    "TelemetryContext",
    "TelemetryReporter",
    # Exceptions
    "PlaceIntelError",
    "ResolutionFailure",
    "ConfigurationError",
]
