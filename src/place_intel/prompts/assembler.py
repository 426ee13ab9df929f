"""Prompt assembly for the holistic and section enrichment calls.

Prompts embed aggregate data as plain text lines and close with a fixed
formatting contract so the model's JSON is predictable enough for the
repair ladder and the sanitizer.
"""

from __future__ import annotations

import dataclasses
from types import MappingProxyType
import typing

from place_intel.core.schema import (
    CLOSED_LABELS,
    REPORT_SECTIONS,
    SECTION_ORDER,
    FieldKind,
)
from place_intel.core.types import AggregateRecord, IndicatorValue, Provenance

_KIND_HINT = {
    FieldKind.TEXT: "문자열",
    FieldKind.NUMBER: "정수 (원 단위, 쉼표/약어 없이)",
    FieldKind.TEXT_LIST: "문자열 배열",
}

FORMAT_CONTRACT = """\
출력 규칙:
- JSON 객체 하나만 출력한다. 코드 블록, 설명 문장, 주석을 붙이지 않는다.
- 숫자 필드는 일반 정수로 쓴다. 금액은 원(KRW) 단위 정수다.
- '1.2M', '3억', '2천만원', '1,234' 같은 축약/구분 표기를 숫자 필드에 쓰지 않는다.
- 목록 필드는 문자열 배열로 쓴다.
- 값이 없으면 필드를 생략한다. null 을 쓰지 않는다.
- 제공된 측정값과 다른 수치를 지어내지 않는다."""


@dataclasses.dataclass(frozen=True, slots=True)
class EnrichmentSpec:
    """What one section-scoped enrichment call sees."""

    section: str
    indicator_keys: tuple[str, ...]
    # Sibling sections whose indicators are included as context
    cross_refs: tuple[str, ...]
    focus: str


ENRICHMENT_SPECS: typing.Mapping[str, EnrichmentSpec] = MappingProxyType(
    {
        "overview": EnrichmentSpec(
            "overview",
            ("store_count_total", "floating_population", "tourist_visits"),
            ("competition", "footfall"),
            "상권의 성격과 한 줄 요약",
        ),
        "footfall": EnrichmentSpec(
            "footfall",
            ("floating_population",),
            ("overview",),
            "유동인구 규모, 주요 시간대와 연령층",
        ),
        "competition": EnrichmentSpec(
            "competition",
            ("store_count_total", "store_count_food", "store_count_radius"),
            ("footfall",),
            "점포 밀도와 경쟁 강도",
        ),
        "sales": EnrichmentSpec(
            "sales",
            ("avg_sales",),
            ("competition", "delivery"),
            "평균 매출 수준과 추세",
        ),
        "delivery": EnrichmentSpec(
            "delivery",
            ("delivery_orders",),
            ("sales",),
            "배달 수요와 매출 내 비중",
        ),
        "startup": EnrichmentSpec(
            "startup",
            ("openings", "closures"),
            ("competition",),
            "개업/폐업 흐름과 생존 전망",
        ),
        "opportunities": EnrichmentSpec(
            "opportunities",
            ("sns_mentions", "tourist_visits"),
            ("footfall", "competition"),
            "기회 요인과 위험 요인",
        ),
        "recommendation": EnrichmentSpec(
            "recommendation",
            ("avg_sales", "openings", "closures"),
            ("competition", "sales"),
            "창업 추천 여부와 추천 업종",
        ),
    }
)


def _format_value(iv: IndicatorValue) -> str:
    if iv.provenance is Provenance.ABSENT or iv.value is None:
        return "데이터 없음"
    value = f"{iv.value:,.0f}" if abs(iv.value) >= 100 else f"{iv.value:g}"
    note = iv.provenance.value
    if iv.basis == "neighbors":
        note += f", 인접 {iv.contributing_units}개 동 평균"
    return f"{value} {iv.unit} ({note})"


def indicator_lines(
    aggregate: AggregateRecord, keys: typing.Iterable[str] | None = None
) -> list[str]:
    """Render indicators as `- key: value unit (provenance)` lines."""
    indicators = aggregate.normalized_indicators
    wanted = list(keys) if keys is not None else sorted(indicators)
    lines = []
    for key in wanted:
        iv = indicators.get(key)
        lines.append(f"- {key}: {_format_value(iv) if iv is not None else '데이터 없음'}")
    return lines


def describe_place(aggregate: AggregateRecord) -> str:
    place = aggregate.place
    parts = [f"장소: {place.name}"]
    if place.formatted_address:
        parts.append(f"주소: {place.formatted_address}")
    if place.unit is not None:
        parts.append(f"행정동: {place.unit.name} ({place.unit.code})")
    parts.append(f"좌표: {place.coordinate.lat:.6f}, {place.coordinate.lon:.6f}")
    return "\n".join(parts)


def _section_schema_lines(section: str) -> list[str]:
    lines = []
    for name, kind in REPORT_SECTIONS[section].items():
        hint = _KIND_HINT[kind]
        labels = CLOSED_LABELS.get((section, name))
        if labels:
            hint += ", 다음 중 하나: " + " / ".join(labels)
        lines.append(f'  "{name}": {hint}')
    return lines


def holistic_prompt(aggregate: AggregateRecord) -> str:
    """One prompt covering every report section."""
    schema = []
    for section in SECTION_ORDER:
        schema.append(f'"{section}": {{')
        schema.extend(_section_schema_lines(section))
        schema.append("}")
    return "\n\n".join(
        [
            "당신은 한국 상권 분석가다. 아래 데이터로 창업 상권 보고서를 작성하라.",
            describe_place(aggregate),
            "측정 데이터:\n" + "\n".join(indicator_lines(aggregate)),
            "다음 섹션을 모두 포함하는 JSON 객체를 작성하라:\n" + "\n".join(schema),
            FORMAT_CONTRACT,
        ]
    )


def enrichment_prompt(section: str, aggregate: AggregateRecord) -> str:
    """A narrow prompt for one section, with its data slice and cross-references."""
    spec = ENRICHMENT_SPECS[section]
    blocks = [
        f"당신은 한국 상권 분석가다. '{section}' 섹션만 작성하라. 초점: {spec.focus}.",
        describe_place(aggregate),
        "관련 데이터:\n" + "\n".join(indicator_lines(aggregate, spec.indicator_keys)),
    ]
    for ref in spec.cross_refs:
        ref_keys = ENRICHMENT_SPECS[ref].indicator_keys
        blocks.append(f"참고 ({ref}):\n" + "\n".join(indicator_lines(aggregate, ref_keys)))
    blocks.append(
        "다음 필드만 담은 JSON 객체를 작성하라:\n{\n"
        + "\n".join(_section_schema_lines(section))
        + "\n}"
    )
    blocks.append(FORMAT_CONTRACT)
    return "\n\n".join(blocks)
