import httpx
import pytest

from place_intel.core.exceptions import ProviderFailure
from place_intel.core.types import AdminUnit, Coordinate
from place_intel.projection import wgs84_to_tm
from place_intel.providers import NaverGeocoder, NaverLocalSearch, SbizUnitLookup
from tests.helpers import GANGNAM, YEOKSAM1, YEOKSAM2

pytestmark = pytest.mark.unit

GEOCODE_RESPONSE = {
    "status": "OK",
    "addresses": [
        {
            "roadAddress": "서울특별시 종로구 지봉로 1",
            "jibunAddress": "서울특별시 종로구 창신동 407-4",
            "x": "127.0109",
            "y": "37.574",
            "addressElements": [
                {"types": ["SIDO"], "longName": "서울특별시"},
                {"types": ["SIGUGUN"], "longName": "종로구"},
                {"types": ["DONGMYUN"], "longName": "창신동"},
                {"types": ["POSTAL_CODE"], "longName": "03117"},
            ],
        }
    ],
}


def _client(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


class TestNaverGeocoder:
    def test_parse_first_address(self):
        hit = NaverGeocoder(None, "id", "key").parse(GEOCODE_RESPONSE)
        assert hit.coordinate == Coordinate(lat=37.574, lon=127.0109)
        assert hit.formatted_address == "서울특별시 종로구 지봉로 1"
        assert hit.admin_units == ("서울특별시", "종로구", "창신동")

    def test_no_addresses_is_a_miss(self):
        assert NaverGeocoder(None, "id", "key").parse({"status": "OK", "addresses": []}) is None

    def test_error_status_is_failure(self):
        with pytest.raises(ProviderFailure, match="INVALID_REQUEST"):
            NaverGeocoder(None, "id", "key").parse(
                {"status": "INVALID_REQUEST", "errorMessage": "query is empty"}
            )

    @pytest.mark.asyncio
    async def test_sends_credentials_as_headers(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json=GEOCODE_RESPONSE)

        async with _client(handler) as client:
            hit = await NaverGeocoder(client, "id", "key").geocode("창신동")
        assert hit is not None
        assert seen[0].headers["X-NCP-APIGW-API-KEY-ID"] == "id"
        assert seen[0].url.params["query"] == "창신동"

    @pytest.mark.asyncio
    async def test_missing_credentials_fail_before_request(self):
        calls = []
        async with _client(lambda r: calls.append(r) or httpx.Response(200)) as client:
            with pytest.raises(ProviderFailure) as info:
                await NaverGeocoder(client, None, None).geocode("창신동")
        assert info.value.permanent
        assert calls == []


class TestNaverLocalSearch:
    def test_parse_strips_markup(self):
        data = {
            "items": [
                {
                    "title": "<b>익선동</b> 한옥카페",
                    "roadAddress": "",
                    "address": "서울특별시 종로구 익선동 166",
                    "mapx": "1269972000",
                    "mapy": "375743000",
                },
                "junk",
            ]
        }
        (candidate,) = NaverLocalSearch(None, "id", "secret").parse(data)
        assert candidate.name == "익선동 한옥카페"
        assert candidate.address == "서울특별시 종로구 익선동 166"
        assert (candidate.native_x, candidate.native_y) == ("1269972000", "375743000")

    def test_parse_tolerates_empty_response(self):
        assert NaverLocalSearch(None, "id", "secret").parse({}) == []

    @pytest.mark.asyncio
    async def test_rejected_secret_is_permanent(self):
        async with _client(lambda r: httpx.Response(403)) as client:
            with pytest.raises(ProviderFailure) as info:
                await NaverLocalSearch(client, "id", "secret").search("익선동")
        assert info.value.permanent


class TestSbizUnitLookup:
    def _rows(self, *offsets: tuple[AdminUnit, int]) -> list[dict]:
        center = wgs84_to_tm(GANGNAM)
        return [
            {"admiCd": unit.code, "admiNm": unit.name, "x": center.x + dx, "y": center.y}
            for unit, dx in offsets
        ]

    def test_nearest_unit_is_primary(self):
        rows = self._rows((YEOKSAM2, 400), (YEOKSAM1, 50), (YEOKSAM2, 900))
        lookup = SbizUnitLookup(None).parse({"data": rows}, GANGNAM)
        assert lookup.unit == YEOKSAM1
        assert lookup.neighbors == (YEOKSAM2,)

    def test_rows_without_position_keep_response_order(self):
        rows = [{"adongCd": YEOKSAM1.code, "adongNm": YEOKSAM1.name}, {"admCd": "1"}]
        lookup = SbizUnitLookup(None).parse(rows, GANGNAM)
        assert lookup.unit == YEOKSAM1
        assert [u.code for u in lookup.neighbors] == ["1"]

    def test_empty_grid_is_a_miss(self):
        assert SbizUnitLookup(None).parse({"data": []}, GANGNAM) is None
        assert SbizUnitLookup(None).parse("nope", GANGNAM) is None

    @pytest.mark.asyncio
    async def test_bounding_box_widens_until_found(self):
        margins = []
        rows = self._rows((YEOKSAM1, 0))

        def handler(request: httpx.Request) -> httpx.Response:
            params = request.url.params
            margins.append(int(params["maxXAxis"]) - int(params["minXAxis"]))
            return httpx.Response(200, json={"data": rows if len(margins) == 2 else []})

        async with _client(handler) as client:
            lookup = await SbizUnitLookup(client).unit_code(GANGNAM)
        assert lookup.unit == YEOKSAM1
        assert margins == [2000, 4000]

    @pytest.mark.asyncio
    async def test_no_unit_at_any_margin(self):
        async with _client(lambda r: httpx.Response(200, json={"data": []})) as client:
            assert await SbizUnitLookup(client, margins=(100, 200)).unit_code(GANGNAM) is None
