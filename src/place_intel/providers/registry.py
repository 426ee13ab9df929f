"""The default provider set, in priority order."""

from __future__ import annotations

import typing

from place_intel.pipeline.normalize import Period

from .base import IndicatorProvider, IndicatorSpec
from .indicators import (
    MetricSpec,
    SbizOpenApiProvider,
    SeoulFloatingPopulationProvider,
    StoreCountProvider,
)

if typing.TYPE_CHECKING:
    from place_intel.config import FrozenConfig

# sbiz open API endpoints, by API name
SBIZ_ENDPOINTS: typing.Mapping[str, str] = {
    "slsIndex": "/openApi/slsIndex.json",
    "delivery": "/openApi/delivery.json",
    "stcarSttus": "/openApi/stcarSttus.json",
    "tour": "/openApi/tour.json",
    "snsAnaly": "/openApi/snsAnaly.json",
}


def default_providers(config: FrozenConfig) -> tuple[IndicatorProvider, ...]:
    """Build the standard providers from configured credentials.

    Tuple order is the merge priority (earlier wins ties).
    """

    def sbiz(
        provider_id: str,
        api_name: str,
        metrics: tuple[MetricSpec, ...],
        **kwargs: typing.Any,
    ) -> SbizOpenApiProvider:
        return SbizOpenApiProvider(
            provider_id=provider_id,
            api_name=api_name,
            endpoint=SBIZ_ENDPOINTS[api_name],
            metrics=metrics,
            cert_key=config.sbiz_key(api_name),
            **kwargs,
        )

    return (
        StoreCountProvider(
            provider_id="store_list",
            indicator=IndicatorSpec("store_count_total", "stores"),
            service_key=config.data_go_kr_key,
        ),
        StoreCountProvider(
            provider_id="store_food",
            indicator=IndicatorSpec("store_count_food", "stores"),
            service_key=config.data_go_kr_key,
            category="I2",
            neighbor_sensitive=True,
        ),
        StoreCountProvider(
            provider_id="store_radius",
            indicator=IndicatorSpec("store_count_radius", "stores"),
            service_key=config.data_go_kr_key,
            keyed_by="coordinate",
            radius_m=500,
        ),
        sbiz(
            "sales_index",
            "slsIndex",
            (
                MetricSpec(
                    IndicatorSpec("avg_sales", "KRW/month"),
                    fields=("mmavgSlsAmt", "slsAmt", "avgSlsAmt"),
                    scale=10_000,  # reported in 만원
                ),
            ),
            neighbor_sensitive=True,
        ),
        sbiz(
            "delivery",
            "delivery",
            (
                MetricSpec(
                    IndicatorSpec("delivery_orders", "orders/month"),
                    fields=("dlvrCnt", "ordrCnt", "weekDlvrCnt"),
                    period=Period.WEEK,
                ),
            ),
            neighbor_sensitive=True,
        ),
        sbiz(
            "startup_status",
            "stcarSttus",
            (
                MetricSpec(
                    IndicatorSpec("openings", "stores/month"),
                    fields=("opbizCnt", "openCnt"),
                    period=Period.QUARTER,
                ),
                MetricSpec(
                    IndicatorSpec("closures", "stores/month"),
                    fields=("clsbizCnt", "closeCnt"),
                    period=Period.QUARTER,
                ),
            ),
            neighbor_sensitive=True,
        ),
        SeoulFloatingPopulationProvider(api_key=config.seoul_api_key),
        sbiz(
            "tour",
            "tour",
            (
                MetricSpec(
                    IndicatorSpec("tourist_visits", "visits/month"),
                    fields=("vstrCnt", "tourCnt"),
                    period=Period.YEAR,
                ),
            ),
            keyed_by="coordinate",
        ),
        sbiz(
            "sns_trend",
            "snsAnaly",
            (
                MetricSpec(
                    IndicatorSpec("sns_mentions", "mentions/month"),
                    fields=("mntnCnt", "postCnt"),
                ),
            ),
        ),
    )
