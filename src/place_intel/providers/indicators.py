"""Indicator providers for Korean commercial-district data.

Three upstream families:

- data.go.kr store listings (`storeListInDong`, `storeListInRadius`): we
  only read `body.totalCount`.
- sbiz (소상공인365) open APIs: lists of records keyed by 행정동 code; each
  provider names the record fields it reads and their reporting period.
- Seoul open data (`VwsmAdstrdFlpopW`): quarterly rows of average daily
  floating population per 행정동, requested one quarter at a time.
"""

from __future__ import annotations

import dataclasses
from datetime import date
import logging
import typing

import httpx

from place_intel.core.exceptions import ProviderFailure
from place_intel.core.types import IndicatorValue, Provenance
from place_intel.pipeline.normalize import Period, parse_number, to_monthly

from .base import (
    IndicatorSpec,
    KeyedBy,
    ProviderTarget,
    find_records,
    get_json,
    require_credential,
)

log = logging.getLogger(__name__)

DATA_GO_KR_BASE = "http://apis.data.go.kr/B553077/api/open/sdsc"
SBIZ_BASE = "https://bigdata.sbiz.or.kr"
SEOUL_BASE = "http://openapi.seoul.go.kr:8088"

# data.go.kr result code for "no data": a legitimate zero, not a failure.
_NO_DATA = "03"

# --- Payloads (tagged) ---


@dataclasses.dataclass(frozen=True, slots=True)
class StoreCountPayload:
    total_count: int
    kind: typing.Literal["store_count"] = dataclasses.field(
        default="store_count", init=False
    )


@dataclasses.dataclass(frozen=True, slots=True)
class SbizMetricPayload:
    """Raw metric values (pre-normalization) keyed by indicator."""

    metrics: typing.Mapping[str, float]
    period_label: str | None = None
    kind: typing.Literal["sbiz_metric"] = dataclasses.field(
        default="sbiz_metric", init=False
    )


@dataclasses.dataclass(frozen=True, slots=True)
class FloatingPopulationPayload:
    daily_average: float
    quarter: str
    kind: typing.Literal["floating_population"] = dataclasses.field(
        default="floating_population", init=False
    )


type ProviderPayload = StoreCountPayload | SbizMetricPayload | FloatingPopulationPayload


def _measured(
    spec: IndicatorSpec, value: float, provider_id: str
) -> IndicatorValue:
    return IndicatorValue(
        key=spec.key,
        value=value,
        unit=spec.unit,
        provenance=Provenance.MEASURED,
        provider_id=provider_id,
    )


# --- data.go.kr store listings ---


@dataclasses.dataclass(frozen=True, slots=True)
class StoreCountProvider:
    """Counts stores in a 행정동 or within a radius of the coordinate."""

    provider_id: str
    indicator: IndicatorSpec
    service_key: str | None
    keyed_by: KeyedBy = "unit"
    category: str | None = None
    radius_m: int = 500
    max_attempts: int = 2
    neighbor_sensitive: bool = False
    base_url: str = DATA_GO_KR_BASE

    @property
    def indicators(self) -> tuple[IndicatorSpec, ...]:
        return (self.indicator,)

    def applies_to(self, target: ProviderTarget) -> bool:
        return self.keyed_by == "coordinate" or target.unit is not None

    def _request(self, target: ProviderTarget) -> tuple[str, dict[str, str]]:
        params = {
            "serviceKey": require_credential(
                self.provider_id, self.service_key, "data_go_kr_key"
            ),
            "numOfRows": "1",
            "pageNo": "1",
            "type": "json",
        }
        if self.category:
            params["indsLclsCd"] = self.category
        if self.keyed_by == "coordinate":
            params.update(
                cx=f"{target.coordinate.lon:.6f}",
                cy=f"{target.coordinate.lat:.6f}",
                radius=str(self.radius_m),
            )
            return f"{self.base_url}/storeListInRadius", params
        params.update(divId="adongCd", key=target.key("unit"))
        return f"{self.base_url}/storeListInDong", params

    async def fetch(
        self, target: ProviderTarget, client: httpx.AsyncClient
    ) -> StoreCountPayload:
        url, params = self._request(target)
        data = await get_json(client, self.provider_id, url, params=params)
        return self.parse(data)

    def parse(self, data: typing.Any) -> StoreCountPayload:
        if not isinstance(data, dict):
            raise ProviderFailure(self.provider_id, "unexpected response shape")
        code = str(data.get("header", {}).get("resultCode", "00"))
        if code == _NO_DATA:
            return StoreCountPayload(total_count=0)
        if code != "00":
            message = data.get("header", {}).get("resultMsg", "unknown error")
            raise ProviderFailure(self.provider_id, f"result {code}: {message}")
        total = parse_number(data.get("body", {}).get("totalCount"))
        if total is None:
            raise ProviderFailure(self.provider_id, "response has no totalCount")
        return StoreCountPayload(total_count=int(total))

    def normalize(self, payload: StoreCountPayload) -> tuple[IndicatorValue, ...]:
        return (_measured(self.indicator, float(payload.total_count), self.provider_id),)


# --- sbiz open APIs ---


@dataclasses.dataclass(frozen=True, slots=True)
class MetricSpec:
    """How one indicator is read from an sbiz record."""

    indicator: IndicatorSpec
    fields: tuple[str, ...]
    period: Period = Period.MONTH
    # Multiplier to plain units (e.g. 10000 for values reported in 만원)
    scale: float = 1.0


_UNIT_CODE_FIELDS = ("admiCd", "adongCd", "adstrdCd", "admCd")
_PERIOD_FIELDS = ("stdrYm", "stdrYyqu", "crtrYm", "baseYm")


@dataclasses.dataclass(frozen=True, slots=True)
class SbizOpenApiProvider:
    """One sbiz open API endpoint (`certKey` authenticated)."""

    provider_id: str
    api_name: str
    endpoint: str
    metrics: tuple[MetricSpec, ...]
    cert_key: str | None
    keyed_by: KeyedBy = "unit"
    max_attempts: int = 1
    neighbor_sensitive: bool = False
    base_url: str = SBIZ_BASE

    @property
    def indicators(self) -> tuple[IndicatorSpec, ...]:
        return tuple(m.indicator for m in self.metrics)

    def applies_to(self, target: ProviderTarget) -> bool:
        return self.keyed_by == "coordinate" or target.unit is not None

    async def fetch(
        self, target: ProviderTarget, client: httpx.AsyncClient
    ) -> SbizMetricPayload:
        params = {
            "certKey": require_credential(
                self.provider_id, self.cert_key, f"sbiz_keys.{self.api_name}"
            )
        }
        if self.keyed_by == "unit":
            params["admiCd"] = target.key("unit")
        else:
            params["lat"] = f"{target.coordinate.lat:.6f}"
            params["lng"] = f"{target.coordinate.lon:.6f}"
        data = await get_json(
            client, self.provider_id, f"{self.base_url}{self.endpoint}", params=params
        )
        unit_code = target.unit.code if target.unit is not None else None
        return self.parse(data, unit_code=unit_code if self.keyed_by == "unit" else None)

    def parse(
        self, data: typing.Any, *, unit_code: str | None = None
    ) -> SbizMetricPayload:
        records = find_records(data, "data", "list", "items", "result")
        if unit_code is not None:
            scoped = [
                r
                for r in records
                if any(str(r.get(f, "")) == unit_code for f in _UNIT_CODE_FIELDS)
            ]
            # Records without a code field are already scoped by the request
            if scoped or any(f in r for r in records for f in _UNIT_CODE_FIELDS):
                records = scoped
        if not records:
            raise ProviderFailure(self.provider_id, "no records in response")

        latest = max(
            records,
            key=lambda r: str(next((r[f] for f in _PERIOD_FIELDS if f in r), "")),
        )
        metrics: dict[str, float] = {}
        for spec in self.metrics:
            raw = next((latest[f] for f in spec.fields if latest.get(f) is not None), None)
            value = parse_number(raw)
            if value is not None:
                metrics[spec.indicator.key] = value * spec.scale
        if not metrics:
            raise ProviderFailure(self.provider_id, "records carry no known metric field")
        period_label = next((str(latest[f]) for f in _PERIOD_FIELDS if f in latest), None)
        return SbizMetricPayload(metrics=metrics, period_label=period_label)

    def normalize(self, payload: SbizMetricPayload) -> tuple[IndicatorValue, ...]:
        readings = []
        for spec in self.metrics:
            raw = payload.metrics.get(spec.indicator.key)
            if raw is None:
                readings.append(
                    IndicatorValue.absent(
                        spec.indicator.key, spec.indicator.unit, self.provider_id
                    )
                )
            else:
                readings.append(
                    _measured(spec.indicator, to_monthly(raw, spec.period), self.provider_id)
                )
        return tuple(readings)


# --- Seoul open data ---

# The service returns at most this many rows per request
_SEOUL_PAGE = 1000
_SEOUL_NO_DATA = "INFO-200"


def recent_quarters(today: date, count: int) -> list[str]:
    """`STDR_YYQU_CD` codes, newest first, starting at the last finished quarter."""
    year, quarter = today.year, (today.month - 1) // 3
    codes = []
    for _ in range(count):
        if quarter == 0:
            year, quarter = year - 1, 4
        codes.append(f"{year}{quarter}")
        quarter -= 1
    return codes


@dataclasses.dataclass(frozen=True, slots=True)
class SeoulFloatingPopulationProvider:
    """Average daily floating population per 행정동 (Seoul only).

    Each quarter is requested separately, newest first, since publication
    lags by a quarter or more and one unfiltered page would mix quarters.
    """

    api_key: str | None
    provider_id: str = "floating_population"
    service: str = "VwsmAdstrdFlpopW"
    max_attempts: int = 3
    neighbor_sensitive: bool = False
    keyed_by: KeyedBy = "unit"
    base_url: str = SEOUL_BASE
    indicator: IndicatorSpec = IndicatorSpec("floating_population", "people/month")
    lookback_quarters: int = 4
    clock: typing.Callable[[], date] = date.today

    @property
    def indicators(self) -> tuple[IndicatorSpec, ...]:
        return (self.indicator,)

    def applies_to(self, target: ProviderTarget) -> bool:
        # Seoul 행정동 codes start with 11
        return target.unit is not None and target.unit.code.startswith("11")

    async def fetch(
        self, target: ProviderTarget, client: httpx.AsyncClient
    ) -> FloatingPopulationPayload:
        key = require_credential(self.provider_id, self.api_key, "seoul_api_key")
        unit_code = target.key("unit")
        for quarter in recent_quarters(self.clock(), self.lookback_quarters):
            rows = await self._quarter_rows(client, key, quarter, unit_code)
            if rows:
                return self._latest(rows)
            log.debug("No %s rows for %s in %s", self.service, unit_code, quarter)
        raise ProviderFailure(
            self.provider_id,
            f"no rows for unit {unit_code} in the last {self.lookback_quarters} quarters",
        )

    async def _quarter_rows(
        self, client: httpx.AsyncClient, key: str, quarter: str, unit_code: str
    ) -> list[dict[str, typing.Any]]:
        start = 1
        while True:
            end = start + _SEOUL_PAGE - 1
            url = f"{self.base_url}/{key}/json/{self.service}/{start}/{end}/{quarter}"
            data = await get_json(client, self.provider_id, url)
            rows, total = self._unit_rows(data, unit_code)
            if rows or end >= total:
                return rows
            start = end + 1

    def parse(self, data: typing.Any, *, unit_code: str) -> FloatingPopulationPayload:
        """Read the unit's latest quarter from one response page."""
        rows, _ = self._unit_rows(data, unit_code)
        if not rows:
            raise ProviderFailure(self.provider_id, f"no rows for unit {unit_code}")
        return self._latest(rows)

    def _unit_rows(
        self, data: typing.Any, unit_code: str
    ) -> tuple[list[dict[str, typing.Any]], int]:
        """Rows for `unit_code` and the total row count of the query."""
        block = data.get(self.service) if isinstance(data, dict) else None
        if not isinstance(block, dict):
            result = data.get("RESULT", {}) if isinstance(data, dict) else {}
            if not isinstance(result, dict):
                result = {}
            if result.get("CODE") == _SEOUL_NO_DATA:
                return [], 0
            raise ProviderFailure(
                self.provider_id, str(result.get("MESSAGE", "unexpected response shape"))
            )
        rows = [
            r
            for r in block.get("row", [])
            if isinstance(r, dict) and str(r.get("ADSTRD_CD", "")) == unit_code
        ]
        return rows, int(parse_number(block.get("list_total_count")) or 0)

    def _latest(self, rows: list[dict[str, typing.Any]]) -> FloatingPopulationPayload:
        latest = max(rows, key=lambda r: str(r.get("STDR_YYQU_CD", "")))
        value = parse_number(latest.get("TOT_FLPOP_CO"))
        if value is None:
            raise ProviderFailure(self.provider_id, "row has no TOT_FLPOP_CO")
        return FloatingPopulationPayload(
            daily_average=value, quarter=str(latest.get("STDR_YYQU_CD", ""))
        )

    def normalize(self, payload: FloatingPopulationPayload) -> tuple[IndicatorValue, ...]:
        monthly = to_monthly(payload.daily_average, Period.DAY)
        return (_measured(self.indicator, monthly, self.provider_id),)
