import itertools

import httpx
import pytest

from place_intel.core.exceptions import ProviderFailure
from place_intel.core.types import Provenance
from place_intel.events import ProgressTracker
from place_intel.pipeline.aggregator import (
    NOT_APPLICABLE,
    UNIT_LOOKUP_UNAVAILABLE,
    ProviderAggregator,
)
from place_intel.pipeline.rate_limiter import RateLimiterRegistry
from place_intel.pipeline.worker_pool import WorkerPool
from tests.helpers import (
    SEOCHO4,
    YEOKSAM1,
    YEOKSAM2,
    FakeProvider,
    FakeUnitLookup,
    make_place,
    neighbor_lookup,
)

pytestmark = pytest.mark.unit

COORD_KEY = "37.497942,127.027621"


def _aggregator(providers, client, **kwargs) -> ProviderAggregator:
    kwargs.setdefault("backoff_base_s", 0.0)
    return ProviderAggregator(
        providers,
        client,
        pool=kwargs.pop("pool", WorkerPool(8)),
        limiters=RateLimiterRegistry(1000),
        **kwargs,
    )


def _scripted_providers(delays: tuple[float, float, float]) -> list[FakeProvider]:
    return [
        FakeProvider(
            "stores_a",
            ("store_count_total", "store_count_food"),
            values={YEOKSAM1.code: {"store_count_total": 120, "store_count_food": 40}},
            delays={"*": delays[0]},
        ),
        FakeProvider(
            "stores_b",
            ("store_count_total",),
            values={YEOKSAM1.code: {"store_count_total": 150}},
            delays={"*": delays[1]},
        ),
        FakeProvider(
            "broken",
            ("store_count_food", "avg_sales"),
            delays={"*": delays[2]},
        ),
    ]


@pytest.mark.asyncio
async def test_merge_is_commutative_over_arrival_orders():
    outcomes = []
    async with httpx.AsyncClient() as client:
        for delays in itertools.permutations((0.0, 0.01, 0.02)):
            record = await _aggregator(_scripted_providers(delays), client).aggregate(
                make_place()
            )
            outcomes.append(dict(record.normalized_indicators))

    assert all(o == outcomes[0] for o in outcomes)
    first = outcomes[0]
    # Earlier providers win ties between measured values
    assert first["store_count_total"].value == 120
    assert first["store_count_total"].provider_id == "stores_a"
    assert first["store_count_food"].provenance is Provenance.MEASURED
    assert first["avg_sales"].provenance is Provenance.ABSENT


@pytest.mark.asyncio
async def test_zero_primary_count_uses_neighbor_mean():
    provider = FakeProvider(
        "store_food",
        ("store_count_food",),
        values={
            YEOKSAM1.code: {"store_count_food": 0},
            YEOKSAM2.code: {"store_count_food": 10},
            SEOCHO4.code: {"store_count_food": 20},
        },
        neighbor_sensitive=True,
    )
    place = make_place(neighbors=(YEOKSAM2, SEOCHO4))
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(place)

    iv = record.normalized_indicators["store_count_food"]
    assert iv.value == 15
    assert iv.provenance is Provenance.MEASURED
    assert iv.contributing_units == 2
    assert iv.basis == "neighbors"
    assert len(record.neighbor_results["store_food"]) == 2
    assert sorted(provider.calls) == sorted([YEOKSAM1.code, YEOKSAM2.code, SEOCHO4.code])


@pytest.mark.asyncio
async def test_missing_primary_value_also_expands_and_counts_only_answers():
    provider = FakeProvider(
        "store_food",
        ("store_count_food",),
        values={YEOKSAM2.code: {"store_count_food": 8}},
        neighbor_sensitive=True,
    )
    place = make_place(neighbors=(YEOKSAM2, SEOCHO4))
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(place)

    iv = record.normalized_indicators["store_count_food"]
    assert iv.value == 8
    assert iv.contributing_units == 1
    assert not record.results["store_food"].ok


@pytest.mark.asyncio
async def test_nonzero_primary_does_not_expand():
    provider = FakeProvider(
        "store_food",
        ("store_count_food",),
        values={YEOKSAM1.code: {"store_count_food": 3}},
        neighbor_sensitive=True,
    )
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(
            make_place(neighbors=(YEOKSAM2,))
        )
    assert provider.calls == [YEOKSAM1.code]
    assert record.neighbor_results == {}


@pytest.mark.asyncio
async def test_neighbor_limit_caps_expansion():
    provider = FakeProvider(
        "store_food",
        ("store_count_food",),
        values={YEOKSAM1.code: {"store_count_food": 0}},
        neighbor_sensitive=True,
    )
    async with httpx.AsyncClient() as client:
        await _aggregator([provider], client, neighbor_limit=1).aggregate(
            make_place(neighbors=(YEOKSAM2, SEOCHO4))
        )
    assert provider.calls == [YEOKSAM1.code, YEOKSAM2.code]


@pytest.mark.asyncio
async def test_unit_lookup_failure_disables_unit_keyed_providers():
    unit_keyed = FakeProvider("store_list", values={YEOKSAM1.code: {"store_count_total": 1}})
    radius = FakeProvider(
        "store_radius",
        ("store_count_radius",),
        keyed_by="coordinate",
        values={COORD_KEY: {"store_count_radius": 77}},
    )
    lookup = FakeUnitLookup(error=RuntimeError("sbiz down"))
    async with httpx.AsyncClient() as client:
        record = await _aggregator(
            [unit_keyed, radius], client, unit_lookup=lookup
        ).aggregate(make_place(unit=None))

    assert record.place.unit is None
    assert record.disabled_providers == ("store_list",)
    skipped = record.results["store_list"]
    assert (skipped.ok, skipped.attempts, skipped.error) == (False, 0, UNIT_LOOKUP_UNAVAILABLE)
    assert unit_keyed.calls == []
    assert record.normalized_indicators["store_count_radius"].value == 77
    assert record.normalized_indicators["store_count_total"].provenance is Provenance.ABSENT


@pytest.mark.asyncio
async def test_unit_lookup_binds_unit_before_providers_run():
    provider = FakeProvider("store_list", values={YEOKSAM1.code: {"store_count_total": 5}})
    lookup = FakeUnitLookup(neighbor_lookup(YEOKSAM1, YEOKSAM2, YEOKSAM1))
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client, unit_lookup=lookup).aggregate(
            make_place(unit=None)
        )
    assert record.place.unit == YEOKSAM1
    assert record.place.neighbors == (YEOKSAM2,)
    assert record.results["store_list"].ok


@pytest.mark.asyncio
async def test_slow_unit_lookup_times_out_once_and_is_noted():
    provider = FakeProvider("store_list", values={YEOKSAM1.code: {"store_count_total": 5}})
    lookup = FakeUnitLookup(neighbor_lookup(YEOKSAM1), delay=2.0)
    notes: list[str] = []
    async with httpx.AsyncClient() as client:
        aggregator = _aggregator(
            [provider], client, unit_lookup=lookup, provider_timeout_s=0.05
        )
        record = aggregator.new_record(make_place(unit=None))
        await aggregator.collect(record, ProgressTracker(), notes)

    assert record.place.unit is None
    assert record.disabled_providers == ("store_list",)
    assert notes == ["unit lookup failed: timed out after 0.05s"]
    assert len(lookup.calls) == 1


@pytest.mark.asyncio
async def test_transient_failures_are_retried_within_budget():
    provider = FakeProvider(
        "flaky",
        values={YEOKSAM1.code: {"store_count_total": 9}},
        failures=[ProviderFailure("flaky", "busy"), httpx.ConnectError("reset")],
        max_attempts=3,
    )
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(make_place())
    result = record.results["flaky"]
    assert result.ok
    assert result.attempts == 3
    assert record.normalized_indicators["store_count_total"].value == 9


@pytest.mark.asyncio
async def test_permanent_failure_is_not_retried():
    provider = FakeProvider(
        "keyless",
        values={YEOKSAM1.code: {"store_count_total": 9}},
        failures=[ProviderFailure("keyless", "missing credential", permanent=True)],
        max_attempts=3,
    )
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(make_place())
    result = record.results["keyless"]
    assert not result.ok
    assert result.attempts == 1
    assert "missing credential" in result.error


@pytest.mark.asyncio
async def test_slow_provider_times_out_alone():
    slow = FakeProvider(
        "slow", values={YEOKSAM1.code: {"store_count_total": 1}}, delays={"*": 1.0}
    )
    fast = FakeProvider(
        "fast", ("avg_sales",), values={YEOKSAM1.code: {"avg_sales": 1000}}
    )
    async with httpx.AsyncClient() as client:
        record = await _aggregator(
            [slow, fast], client, provider_timeout_s=0.05
        ).aggregate(make_place())
    assert record.results["slow"].error == "timed out after 0.05s"
    assert record.results["fast"].ok
    assert record.success_ratio == 0.5


@pytest.mark.asyncio
async def test_total_failure_still_returns_record():
    providers = [FakeProvider(f"p{i}", (f"k{i}",)) for i in range(3)]
    async with httpx.AsyncClient() as client:
        record = await _aggregator(providers, client).aggregate(make_place())
    assert record.finalized
    assert set(record.results) == {"p0", "p1", "p2"}
    assert record.success_ratio == 0.0
    assert all(iv.provenance is Provenance.ABSENT for iv in record.normalized_indicators.values())


@pytest.mark.asyncio
async def test_uncovered_provider_is_not_called():
    provider = FakeProvider("seoul_only", covered=False)
    async with httpx.AsyncClient() as client:
        record = await _aggregator([provider], client).aggregate(make_place())
    result = record.results["seoul_only"]
    assert (result.attempts, result.error) == (0, NOT_APPLICABLE)
    assert provider.calls == []


@pytest.mark.asyncio
async def test_pool_caps_concurrency():
    pool = WorkerPool(2)
    providers = [
        FakeProvider(f"p{i}", (f"k{i}",), values={YEOKSAM1.code: {f"k{i}": i}}, delays={"*": 0.02})
        for i in range(6)
    ]
    async with httpx.AsyncClient() as client:
        await _aggregator(providers, client, pool=pool).aggregate(make_place())
    assert pool.peak == 2
    assert pool.in_flight == 0


def test_duplicate_provider_ids_rejected():
    with pytest.raises(ValueError, match="Duplicate"):
        _aggregator([FakeProvider("a"), FakeProvider("a")], client=None)
