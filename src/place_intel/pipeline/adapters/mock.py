"""Deterministic adapter used for tests and offline runs (no network)."""

from __future__ import annotations

import json
import re
import typing

from place_intel.core.schema import SECTION_ORDER

_PLACE_RE = re.compile(r"^장소: (.+)$", re.MULTILINE)
_SECTION_RE = re.compile(r"'(\w+)' 섹션만")


def _fragment(section: str, place: str) -> dict[str, typing.Any]:
    texts: dict[str, dict[str, typing.Any]] = {
        "overview": {
            "summary": f"{place} 일대는 유동인구와 점포가 고르게 분포한 상권이다.",
            "district_type": "복합형",
            "headline": f"{place} 상권 개요",
        },
        "footfall": {
            "peak_time": "18-21시",
            "main_age_group": "30대",
            "commentary": f"{place}의 유동인구는 저녁 시간대에 집중된다.",
        },
        "competition": {
            "saturation": "보통",
            "commentary": "동종 업종 점포 수는 평균 수준이다.",
        },
        "sales": {
            "sales_trend": "보합",
            "commentary": "평균 매출은 최근 분기 대비 큰 변화가 없다.",
        },
        "delivery": {
            "delivery_share": "중간",
            "commentary": "배달 주문은 주말 저녁에 몰린다.",
        },
        "startup": {
            "survival_outlook": "보통",
            "commentary": "개업과 폐업이 비슷한 속도로 일어난다.",
        },
        "opportunities": {
            "strengths": ["접근성이 좋다", "저녁 수요가 꾸준하다"],
            "risks": ["임대료 상승 가능성"],
            "commentary": "차별화된 콘셉트라면 진입 여지가 있다.",
        },
        "recommendation": {
            "verdict": "조건부 추천",
            "recommended_concepts": ["소규모 카페", "테이크아웃 전문점"],
            "commentary": "초기 비용을 통제할 수 있다면 진입을 고려할 만하다.",
        },
    }
    return texts[section]


class MockAdapter:
    """Returns fixed, well-formed JSON derived from the prompt.

    Enrichment prompts get the fragment for their section; anything else gets
    a holistic object covering every section.
    """

    async def generate(self, prompt: str, *, temperature: float, max_tokens: int) -> str:  # noqa: ARG002
        match = _PLACE_RE.search(prompt)
        place = match.group(1).strip() if match else "대상지"
        section = _SECTION_RE.search(prompt)
        if section and section.group(1) in SECTION_ORDER:
            body: dict[str, typing.Any] = _fragment(section.group(1), place)
        else:
            body = {s: _fragment(s, place) for s in SECTION_ORDER}
        return json.dumps(body, ensure_ascii=False)
