import pytest

from place_intel.core.schema import PRIMARY_TEXT_FIELD, SECTION_ORDER
from place_intel.core.types import (
    AggregateRecord,
    ConfidenceTier,
    IndicatorValue,
    Provenance,
    ProviderResult,
    RepairedFragment,
    ReportConfidence,
    SynthesisResponse,
    is_leaf,
)
from place_intel.pipeline.repair_handler import repair_enrichment, repair_responses
from place_intel.pipeline.report_builder import (
    ReportBuilder,
    fallback_text,
    score_confidence,
)
from tests.helpers import YEOKSAM1, all_sections, make_place

pytestmark = pytest.mark.unit

SEOUL_STARTUP_COST = 114_750_000


def _aggregate(
    measured: dict[str, float] | None = None,
    *,
    failed: tuple[str, ...] = (),
    place=None,
    disabled: tuple[str, ...] = (),
) -> AggregateRecord:
    record = AggregateRecord(place=place or make_place(), disabled_providers=disabled)
    for key, value in (measured or {}).items():
        pid = f"src_{key}"
        record.merge(
            ProviderResult(pid, YEOKSAM1.code, ok=True, payload=value),
            [IndicatorValue(key, value, "count", Provenance.MEASURED, pid)],
        )
    for pid in failed:
        record.merge(ProviderResult(pid, YEOKSAM1.code, ok=False, error="boom"), [])
    return record.freeze()


def _holistic(tree, tier: int = 0) -> RepairedFragment:
    return RepairedFragment(tree=tree, tier=tier)


@pytest.fixture
def builder(reference) -> ReportBuilder:
    return ReportBuilder(reference)


class TestMergeOrder:
    def test_measured_value_beats_model_numbers(self, builder):
        holistic = _holistic({"competition": {"total_store_count": 999, "commentary": "c"}})
        enrichment = RepairedFragment(
            tree={"total_store_count": 555}, tier=0, section="competition"
        )
        report = builder.finalize(
            _aggregate({"store_count_total": 120.0}), holistic, [enrichment]
        )
        assert report.sections["competition"]["total_store_count"] == 120
        assert report.provenance["competition.total_store_count"] is Provenance.MEASURED

    def test_enrichment_overrides_holistic_within_its_section(self, builder):
        holistic = _holistic(
            {"sales": {"commentary": "holistic"}, "delivery": {"commentary": "holistic"}}
        )
        enrichment = RepairedFragment(
            tree={"commentary": "enriched", "verdict": "추천"}, tier=0, section="sales"
        )
        report = builder.finalize(_aggregate(), holistic, [enrichment])
        assert report.sections["sales"]["commentary"] == "enriched"
        assert report.sections["delivery"]["commentary"] == "holistic"
        assert "verdict" not in report.sections["sales"]

    def test_startup_cost_default_from_reference(self, builder):
        report = builder.finalize(_aggregate(), _holistic({}))
        assert report.sections["startup"]["estimated_startup_cost"] == SEOUL_STARTUP_COST
        assert report.provenance["startup.estimated_startup_cost"] is Provenance.ESTIMATED

    def test_model_may_replace_startup_cost_estimate(self, builder):
        holistic = _holistic({"startup": {"estimated_startup_cost": 90_000_000}})
        report = builder.finalize(_aggregate(), holistic)
        assert report.sections["startup"]["estimated_startup_cost"] == 90_000_000


class TestFieldAcceptance:
    def test_closed_labels_normalized_or_dropped(self, builder):
        holistic = _holistic(
            {
                "overview": {"summary": "s", "district_type": "전형적인 역세권 상권"},
                "competition": {"saturation": "판단 어려움", "commentary": "c"},
            }
        )
        report = builder.finalize(_aggregate(), holistic)
        assert report.sections["overview"]["district_type"] == "역세권"
        assert "saturation" not in report.sections["competition"]

    def test_number_fields_reject_text(self, builder):
        holistic = _holistic({"sales": {"avg_monthly_sales": "많음", "commentary": "c"}})
        report = builder.finalize(_aggregate(), holistic)
        assert "avg_monthly_sales" not in report.sections["sales"]
        assert "sales.avg_monthly_sales" not in report.provenance

    def test_unknown_sections_and_fields_ignored(self, builder):
        holistic = _holistic({"weather": {"commentary": "맑음"}, "sales": {"mood": "좋음"}})
        report = builder.finalize(_aggregate(), holistic)
        assert "weather" not in report.sections
        assert "mood" not in report.sections["sales"]


class TestFallback:
    def test_total_provider_failure_still_yields_every_section(self, builder):
        aggregate = _aggregate(failed=("p0", "p1", "p2"))
        report = builder.finalize(
            aggregate, None, failed_sections=SECTION_ORDER, holistic_error="quota"
        )

        assert set(report.sections) == set(SECTION_ORDER)
        for section in SECTION_ORDER:
            text = report.sections[section][PRIMARY_TEXT_FIELD[section]]
            assert text.endswith("분석 데이터를 확보하지 못했습니다.")
        assert report.confidence is ReportConfidence.LOW
        assert "holistic synthesis failed: quota" in report.degradations
        assert "provider p1 failed: boom" in report.degradations
        assert "enrichment failed for sales; used fallback text" in report.degradations

    def test_fallback_text_uses_measured_facts(self, builder):
        aggregate = _aggregate({"store_count_total": 120.0})
        assert fallback_text("competition", aggregate) == "강남역 경쟁 현황: 전체 점포 수 120."
        report = builder.finalize(aggregate, None)
        assert report.sections["competition"]["commentary"].startswith("강남역 경쟁 현황")

    def test_fallback_text_mentions_neighbor_basis(self):
        record = AggregateRecord(place=make_place())
        record.offer(
            IndicatorValue(
                "store_count_food",
                15.0,
                "stores",
                Provenance.MEASURED,
                "sbiz_store_count",
                contributing_units=2,
                basis="neighbors",
            )
        )
        text = fallback_text("competition", record.freeze())
        assert text == "강남역 경쟁 현황: 음식점 수 15 (인접 2개 동 평균)."

    def test_fallback_only_fills_empty_primary_fields(self, builder):
        holistic = _holistic({"sales": {"commentary": "모델 설명"}})
        report = builder.finalize(_aggregate(), holistic, failed_sections=("sales",))
        assert report.sections["sales"]["commentary"] == "모델 설명"
        assert not any("sales" in note for note in report.degradations)


class TestConfidence:
    def test_everything_good_is_high(self, builder):
        report = builder.finalize(_aggregate({"avg_sales": 1.0}), _holistic({}))
        assert report.confidence is ReportConfidence.HIGH
        assert not report.partial

    def test_partial_report_is_capped_at_medium(self, builder):
        report = builder.finalize(_aggregate({"avg_sales": 1.0}), _holistic({}), partial=True)
        assert report.confidence is ReportConfidence.MEDIUM
        assert report.partial

    @pytest.mark.parametrize(
        ("confidence", "ok", "failed", "tier", "enrich_failures", "expected"),
        [
            (ConfidenceTier.EXACT, 1, 0, 0, 0, ReportConfidence.HIGH),
            (ConfidenceTier.APPROXIMATE, 1, 0, 0, 0, ReportConfidence.MEDIUM),
            (ConfidenceTier.GEOCODED, 1, 1, 0, 0, ReportConfidence.MEDIUM),
            (ConfidenceTier.GEOCODED, 1, 2, -1, 3, ReportConfidence.LOW),
            (ConfidenceTier.EXACT, 0, 0, None, 0, ReportConfidence.LOW),
        ],
    )
    def test_points(self, confidence, ok, failed, tier, enrich_failures, expected):
        measured = {f"k{i}": 1.0 for i in range(ok)}
        aggregate = _aggregate(
            measured,
            failed=tuple(f"f{i}" for i in range(failed)),
            place=make_place(confidence=confidence),
        )
        holistic = None if tier is None else _holistic({}, tier)
        result = score_confidence(
            aggregate.place, aggregate, holistic, enrich_failures, partial=False
        )
        assert result is expected


class TestDegradations:
    def test_best_effort_holistic_is_noted_and_scores_lower(self, builder):
        report = builder.finalize(_aggregate({"avg_sales": 1.0}), _holistic({}, tier=-1))
        assert "holistic response recovered by field extraction" in report.degradations
        assert report.confidence is ReportConfidence.MEDIUM

    def test_disabled_providers_listed(self, builder):
        aggregate = _aggregate(disabled=("sbiz_store_count", "sbiz_sales"))
        report = builder.finalize(aggregate, _holistic({}))
        assert (
            "unit lookup unavailable; disabled: sbiz_store_count, sbiz_sales"
            in report.degradations
        )

    def test_upstream_degradations_kept_once(self, builder):
        report = builder.finalize(
            _aggregate(), _holistic({}), degradations=("deadline", "deadline")
        )
        assert report.degradations.count("deadline") == 1


class TestWithRepair:
    def test_fenced_holistic_with_trailing_comma(self, builder):
        raw = '```json\n{"overview": {"summary": "요약", "headline": "제목",}}\n```'
        response = SynthesisResponse(kind="holistic", text=raw, ok=True)
        holistic, enrichments, failed = repair_responses(response, [])

        assert holistic.tier == 1
        assert failed == SECTION_ORDER
        report = builder.finalize(_aggregate(), holistic, enrichments, failed_sections=failed)
        assert dict(report.sections["overview"]) == {"summary": "요약", "headline": "제목"}

    def test_enrichment_wrapped_in_section_name_is_unwrapped(self):
        response = SynthesisResponse(
            kind="enrichment",
            text=all_sections(sales={"commentary": "감싼 응답", "sales_trend": "상승"}),
            ok=True,
            section="sales",
        )
        fragment = repair_enrichment(response)
        assert fragment.section == "sales"
        assert dict(fragment.tree) == {"commentary": "감싼 응답", "sales_trend": "상승"}

    def test_enrichment_without_known_fields_is_failed(self):
        good = SynthesisResponse(
            kind="enrichment", text='{"commentary": "ok"}', ok=True, section="sales"
        )
        useless = SynthesisResponse(
            kind="enrichment", text='{"unrelated": 1}', ok=True, section="delivery"
        )
        errored = SynthesisResponse(
            kind="enrichment", text=None, ok=False, section="startup", error="boom"
        )
        _, fragments, failed = repair_responses(
            None, [good, useless, errored], ("sales", "delivery", "startup")
        )
        assert [f.section for f in fragments] == ["sales"]
        assert failed == ("delivery", "startup")

    def test_report_leaves_are_primitive(self, builder):
        holistic = _holistic(
            {"opportunities": {"strengths": ["접근성"], "commentary": "c"}}
        )
        report = builder.finalize(_aggregate({"avg_sales": 32_000_000.0}), holistic)
        for fields in report.sections.values():
            assert all(is_leaf(v) for v in fields.values())
        assert report.indicators["avg_sales"]["provenance"] == "measured"
        assert report.place["unit_code"] == YEOKSAM1.code
