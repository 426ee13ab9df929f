"""Report section schema, closed label sets and indicator bindings."""

from __future__ import annotations

import enum
from types import MappingProxyType
import typing


class FieldKind(enum.StrEnum):
    """Expected shape of a report field after sanitization."""

    TEXT = "text"
    NUMBER = "number"
    TEXT_LIST = "text_list"


type SectionSchema = typing.Mapping[str, FieldKind]

_T, _N, _L = FieldKind.TEXT, FieldKind.NUMBER, FieldKind.TEXT_LIST

REPORT_SECTIONS: typing.Mapping[str, SectionSchema] = MappingProxyType(
    {
        "overview": MappingProxyType(
            {"summary": _T, "district_type": _T, "headline": _T}
        ),
        "footfall": MappingProxyType(
            {
                "monthly_floating_population": _N,
                "peak_time": _T,
                "main_age_group": _T,
                "commentary": _T,
            }
        ),
        "competition": MappingProxyType(
            {
                "total_store_count": _N,
                "food_store_count": _N,
                "radius_store_count": _N,
                "saturation": _T,
                "commentary": _T,
            }
        ),
        "sales": MappingProxyType(
            {"avg_monthly_sales": _N, "sales_trend": _T, "commentary": _T}
        ),
        "delivery": MappingProxyType(
            {"monthly_delivery_orders": _N, "delivery_share": _T, "commentary": _T}
        ),
        "startup": MappingProxyType(
            {
                "monthly_openings": _N,
                "monthly_closures": _N,
                "estimated_startup_cost": _N,
                "survival_outlook": _T,
                "commentary": _T,
            }
        ),
        "opportunities": MappingProxyType(
            {"strengths": _L, "risks": _L, "commentary": _T}
        ),
        "recommendation": MappingProxyType(
            {"verdict": _T, "recommended_concepts": _L, "commentary": _T}
        ),
    }
)

SECTION_ORDER: tuple[str, ...] = tuple(REPORT_SECTIONS)

# The narrative field each section must always carry.
PRIMARY_TEXT_FIELD: typing.Mapping[str, str] = MappingProxyType(
    {s: ("summary" if s == "overview" else "commentary") for s in SECTION_ORDER}
)

CLOSED_LABELS: typing.Mapping[tuple[str, str], tuple[str, ...]] = MappingProxyType(
    {
        ("overview", "district_type"): (
            "주거형",
            "오피스형",
            "대학가",
            "관광형",
            "역세권",
            "복합형",
        ),
        ("competition", "saturation"): ("낮음", "보통", "높음", "과밀"),
        ("recommendation", "verdict"): ("추천", "조건부 추천", "보류"),
    }
)

# Indicator key -> (section, field) it authoritatively fills when measured.
INDICATOR_BINDINGS: typing.Mapping[str, tuple[str, str]] = MappingProxyType(
    {
        "store_count_total": ("competition", "total_store_count"),
        "store_count_food": ("competition", "food_store_count"),
        "store_count_radius": ("competition", "radius_store_count"),
        "floating_population": ("footfall", "monthly_floating_population"),
        "avg_sales": ("sales", "avg_monthly_sales"),
        "delivery_orders": ("delivery", "monthly_delivery_orders"),
        "openings": ("startup", "monthly_openings"),
        "closures": ("startup", "monthly_closures"),
    }
)


def all_field_names(section: str | None = None) -> tuple[str, ...]:
    """Field names of one section, or of every section (deduplicated)."""
    if section is not None:
        return tuple(REPORT_SECTIONS[section])
    seen: dict[str, None] = {}
    for fields in REPORT_SECTIONS.values():
        seen.update(dict.fromkeys(fields))
    return tuple(seen)


def normalize_label(section: str, field: str, value: str) -> str | None:
    """Map free text onto a closed label, or None when it matches none.

    Exact matches win; otherwise the longest label contained in the text.
    """
    labels = CLOSED_LABELS.get((section, field))
    if labels is None:
        return value
    text = value.strip()
    if text in labels:
        return text
    contained = [label for label in labels if label in text]
    if not contained:
        return None
    return max(contained, key=len)
