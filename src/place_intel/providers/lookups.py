"""Place lookups: geocoding, free-text place search and unit-code lookup."""

from __future__ import annotations

import dataclasses
import logging
import re
import typing

import httpx

from place_intel.core.exceptions import ProviderFailure
from place_intel.core.types import AdminUnit, Coordinate, UnitLookup
from place_intel.projection import tm_bounding_box, wgs84_to_tm

from .base import get_json, require_credential

log = logging.getLogger(__name__)

NAVER_GEOCODE_URL = "https://naveropenapi.apigw.ntruss.com/map-geocode/v2/geocode"
NAVER_LOCAL_URL = "https://openapi.naver.com/v1/search/local.json"
SBIZ_COORD_URL = "https://bigdata.sbiz.or.kr/gis/api/getCoordToAdmPoint.json"

_TAG_RE = re.compile(r"<[^>]+>")


@dataclasses.dataclass(frozen=True, slots=True)
class GeocodeHit:
    coordinate: Coordinate
    formatted_address: str
    # Administrative names, outermost first (시도, 시군구, 읍면동)
    admin_units: tuple[str, ...] = ()


@dataclasses.dataclass(frozen=True, slots=True)
class SearchCandidate:
    name: str
    address: str | None = None
    native_x: str | None = None
    native_y: str | None = None


class Geocoder(typing.Protocol):
    async def geocode(self, text: str) -> GeocodeHit | None: ...


class PlaceSearch(typing.Protocol):
    async def search(self, text: str) -> list[SearchCandidate]: ...


class UnitCodeLookup(typing.Protocol):
    async def unit_code(self, coordinate: Coordinate) -> UnitLookup | None: ...


class NaverGeocoder:
    """Naver Maps structured geocoding."""

    provider_id = "naver_geocode"

    def __init__(
        self,
        client: httpx.AsyncClient,
        key_id: str | None,
        key: str | None,
        *,
        url: str = NAVER_GEOCODE_URL,
    ) -> None:
        self._client = client
        self._key_id = key_id
        self._key = key
        self._url = url

    async def geocode(self, text: str) -> GeocodeHit | None:
        headers = {
            "X-NCP-APIGW-API-KEY-ID": require_credential(
                self.provider_id, self._key_id, "naver_map_key_id"
            ),
            "X-NCP-APIGW-API-KEY": require_credential(
                self.provider_id, self._key, "naver_map_key"
            ),
            "Accept": "application/json",
        }
        data = await get_json(
            self._client, self.provider_id, self._url, params={"query": text}, headers=headers
        )
        return self.parse(data)

    def parse(self, data: typing.Any) -> GeocodeHit | None:
        if not isinstance(data, dict):
            raise ProviderFailure(self.provider_id, "unexpected response shape")
        status = data.get("status", "OK")
        if status != "OK":
            raise ProviderFailure(self.provider_id, f"status {status}: {data.get('errorMessage', '')}")
        addresses = data.get("addresses") or []
        if not addresses:
            return None
        first = addresses[0]
        try:
            coordinate = Coordinate(lat=float(first["y"]), lon=float(first["x"]))
        except (KeyError, TypeError, ValueError) as e:
            raise ProviderFailure(self.provider_id, f"address without coordinate: {e}") from e
        wanted = ("SIDO", "SIGUGUN", "DONGMYUN")
        names: dict[str, str] = {}
        for element in first.get("addressElements", []):
            for kind in element.get("types", []):
                if kind in wanted and element.get("longName"):
                    names[kind] = element["longName"]
        return GeocodeHit(
            coordinate=coordinate,
            formatted_address=first.get("roadAddress") or first.get("jibunAddress") or "",
            admin_units=tuple(names[k] for k in wanted if k in names),
        )


class NaverLocalSearch:
    """Naver local (place) search."""

    provider_id = "naver_local"

    def __init__(
        self,
        client: httpx.AsyncClient,
        client_id: str | None,
        client_secret: str | None,
        *,
        url: str = NAVER_LOCAL_URL,
        display: int = 5,
    ) -> None:
        self._client = client
        self._client_id = client_id
        self._client_secret = client_secret
        self._url = url
        self._display = display

    async def search(self, text: str) -> list[SearchCandidate]:
        headers = {
            "X-Naver-Client-Id": require_credential(
                self.provider_id, self._client_id, "naver_client_id"
            ),
            "X-Naver-Client-Secret": require_credential(
                self.provider_id, self._client_secret, "naver_client_secret"
            ),
        }
        params = {"query": text, "display": str(self._display), "sort": "random"}
        data = await get_json(
            self._client, self.provider_id, self._url, params=params, headers=headers
        )
        return self.parse(data)

    def parse(self, data: typing.Any) -> list[SearchCandidate]:
        items = data.get("items", []) if isinstance(data, dict) else []
        candidates = []
        for item in items:
            if not isinstance(item, dict):
                continue
            candidates.append(
                SearchCandidate(
                    name=_TAG_RE.sub("", item.get("title", "")).strip(),
                    address=item.get("roadAddress") or item.get("address") or None,
                    native_x=item.get("mapx") or None,
                    native_y=item.get("mapy") or None,
                )
            )
        return candidates


class SbizUnitLookup:
    """Coordinate to 행정동 code via the sbiz GIS grid.

    The bounding box widens 1000 -> 2000 -> 3000 m until a unit is found. The
    unit nearest the coordinate is canonical; the others become neighbors.
    """

    provider_id = "unit_lookup"

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        margins: tuple[int, ...] = (1000, 2000, 3000),
        url: str = SBIZ_COORD_URL,
    ) -> None:
        self._client = client
        self._margins = margins
        self._url = url

    async def unit_code(self, coordinate: Coordinate) -> UnitLookup | None:
        for margin in self._margins:
            data = await get_json(
                self._client,
                self.provider_id,
                self._url,
                params=tm_bounding_box(coordinate, margin),
                headers={"Accept": "application/json", "Referer": "https://bigdata.sbiz.or.kr/"},
            )
            lookup = self.parse(data, coordinate)
            if lookup is not None:
                log.debug("Unit lookup succeeded at margin=%dm", margin)
                return lookup
        return None

    def parse(self, data: typing.Any, coordinate: Coordinate) -> UnitLookup | None:
        if isinstance(data, dict):
            data = data.get("data", [])
        if not isinstance(data, list):
            return None
        units: list[tuple[float, AdminUnit]] = []
        center = wgs84_to_tm(coordinate)
        for index, row in enumerate(data):
            if not isinstance(row, dict):
                continue
            code = row.get("admiCd") or row.get("adongCd") or row.get("admCd")
            if not code:
                continue
            unit = AdminUnit(code=str(code), name=str(row.get("admiNm") or row.get("adongNm") or ""))
            try:
                dx = float(row["x"]) - center.x
                dy = float(row["y"]) - center.y
                distance = (dx * dx + dy * dy) ** 0.5
            except (KeyError, TypeError, ValueError):
                distance = float(index)  # keep response order
            units.append((distance, unit))
        if not units:
            return None
        units.sort(key=lambda pair: pair[0])
        primary = units[0][1]
        neighbors = tuple(dict.fromkeys(u for _, u in units[1:] if u != primary))
        return UnitLookup(unit=primary, neighbors=neighbors)
