"""Prompt assembly for report generation."""

from .assembler import (
    ENRICHMENT_SPECS,
    FORMAT_CONTRACT,
    EnrichmentSpec,
    enrichment_prompt,
    holistic_prompt,
    indicator_lines,
)

__all__ = [
    "ENRICHMENT_SPECS",
    "FORMAT_CONTRACT",
    "EnrichmentSpec",
    "enrichment_prompt",
    "holistic_prompt",
    "indicator_lines",
]
