"""Coordinate conversions used by the upstream Korean map services."""

from __future__ import annotations

import math
import typing

from place_intel.core.types import Coordinate

# Transverse Mercator on GRS80, central meridian 127E, origin 38N,
# false easting/northing 200000/500000 (the sbiz GIS grid).
_A = 6378137.0
_F = 1 / 298.257222101
_LAT0 = math.radians(38.0)
_LON0 = math.radians(127.0)
_K0 = 1.0
_X0 = 200000.0
_Y0 = 500000.0

# Naver local search returns WGS84 degrees scaled by 10^7.
NAVER_NATIVE_SCALE = 10_000_000


class TMPoint(typing.NamedTuple):
    x: int
    y: int


def _meridian_arc(lat: float, e2: float) -> float:
    return _A * (
        (1 - e2 / 4 - 3 * e2**2 / 64 - 5 * e2**3 / 256) * lat
        - (3 * e2 / 8 + 3 * e2**2 / 32 + 45 * e2**3 / 1024) * math.sin(2 * lat)
        + (15 * e2**2 / 256 + 45 * e2**3 / 1024) * math.sin(4 * lat)
        - (35 * e2**3 / 3072) * math.sin(6 * lat)
    )


def wgs84_to_tm(coordinate: Coordinate) -> TMPoint:
    """Project a WGS84 coordinate onto the TM grid, rounded to metres."""
    e2 = 2 * _F - _F * _F
    ep2 = e2 / (1 - e2)
    lat = math.radians(coordinate.lat)
    lon = math.radians(coordinate.lon)

    n = _A / math.sqrt(1 - e2 * math.sin(lat) ** 2)
    t = math.tan(lat) ** 2
    c = ep2 * math.cos(lat) ** 2
    a = (lon - _LON0) * math.cos(lat)
    m = _meridian_arc(lat, e2)
    m0 = _meridian_arc(_LAT0, e2)

    x = _K0 * n * (
        a
        + (1 - t + c) * a**3 / 6
        + (5 - 18 * t + t * t + 72 * c - 58 * ep2) * a**5 / 120
    ) + _X0
    y = _K0 * (
        m
        - m0
        + n
        * math.tan(lat)
        * (
            a**2 / 2
            + (5 - t + 9 * c + 4 * c * c) * a**4 / 24
            + (61 - 58 * t + t * t + 600 * c - 330 * ep2) * a**6 / 720
        )
    ) + _Y0
    return TMPoint(x=round(x), y=round(y))


def tm_bounding_box(coordinate: Coordinate, margin: int) -> dict[str, str]:
    """Query parameters for a square TM box of half-width `margin` metres."""
    center = wgs84_to_tm(coordinate)
    return {
        "minXAxis": str(center.x - margin),
        "maxXAxis": str(center.x + margin),
        "minYAxis": str(center.y - margin),
        "maxYAxis": str(center.y + margin),
        "mapLevel": "14",
    }


def from_naver_native(mapx: str | int, mapy: str | int) -> Coordinate | None:
    """Convert Naver local-search `mapx`/`mapy` into a coordinate.

    Returns None for values that are missing or out of range.
    """
    try:
        lon = int(mapx) / NAVER_NATIVE_SCALE
        lat = int(mapy) / NAVER_NATIVE_SCALE
    except (TypeError, ValueError):
        return None
    if not (-90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0) or (lat == 0 and lon == 0):
        return None
    return Coordinate(lat=lat, lon=lon)
