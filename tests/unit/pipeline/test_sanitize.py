import pytest

from place_intel.core.schema import REPORT_SECTIONS
from place_intel.core.types import is_leaf
from place_intel.pipeline.sanitize import sanitize, to_number, to_text, to_text_list

pytestmark = pytest.mark.unit

MESSY_TREES = [
    {
        "overview": {
            "summary": {"text": "  역세권 상권  ", "score": 3},
            "district_type": ["역세권"],
            "headline": None,
        },
        "competition": {
            "total_store_count": "1,234개",
            "food_store_count": {"value": "3백"},
            "saturation": {"label": "높음"},
            "commentary": "",
        },
        "sales": {"avg_monthly_sales": "3억 2천만원", "sales_trend": 12.50},
        "opportunities": {
            "strengths": "- 접근성\n- 유동인구\n\n",
            "risks": [{"name": "임대료"}, None, "경쟁"],
        },
        "startup": {"monthly_openings": "많음", "survival_outlook": True},
        "unknown_section": {"x": 1},
    },
    {
        "recommendation": {
            "verdict": "추천",
            "recommended_concepts": ("카페", {"title": "분식"}),
            "commentary": {"nested": {"deep": ["a"]}},
        },
        "delivery": {"monthly_delivery_orders": float("nan"), "extra_field": {"k": "v"}},
    },
    {},
]


def _leaves(tree):
    for value in tree.values():
        if isinstance(value, dict):
            yield from _leaves(value)
        else:
            yield value


@pytest.mark.parametrize("tree", MESSY_TREES)
def test_sanitize_is_idempotent(tree):
    once = sanitize(tree, REPORT_SECTIONS)
    assert sanitize(once, REPORT_SECTIONS) == once


@pytest.mark.parametrize("tree", MESSY_TREES)
def test_every_leaf_is_primitive(tree):
    assert all(is_leaf(v) for v in _leaves(sanitize(tree, REPORT_SECTIONS)))


def test_coercions_follow_field_kinds():
    out = sanitize(MESSY_TREES[0], REPORT_SECTIONS)
    assert out["overview"]["summary"] == "역세권 상권"
    assert out["overview"]["district_type"] == "역세권"
    assert "headline" not in out["overview"]
    assert out["competition"]["total_store_count"] == 1234
    assert out["competition"]["food_store_count"] == 300
    assert out["competition"]["saturation"] == "높음"
    assert "commentary" not in out["competition"]
    assert out["sales"]["avg_monthly_sales"] == 320_000_000
    assert out["sales"]["sales_trend"] == "12.5"
    assert out["opportunities"]["strengths"] == ["접근성", "유동인구"]
    assert out["opportunities"]["risks"] == ["임대료", "경쟁"]
    # Unreadable numbers stay as text; the report builder rejects them
    assert out["startup"]["monthly_openings"] == "많음"
    assert out["startup"]["survival_outlook"] == "true"


def test_empty_sections_dropped():
    assert sanitize({"sales": {"commentary": "  "}}, REPORT_SECTIONS) == {}


def test_to_text_fallbacks():
    assert to_text({"a": "x", "b": 2}) == "x, 2"
    assert to_text({"a": {"b": 1}}) == '{"a": {"b": 1}}'
    assert to_text([]) is None
    assert to_text(float("inf")) is None


def test_to_number_and_list_helpers():
    assert to_number({"amount": "5만"}) == 50_000
    assert to_number({"other": 1}) is None
    assert to_text_list("1. 첫째\n2) 둘째") == ["첫째", "둘째"]
    assert to_text_list(7) == ["7"]
