import pytest

from place_intel.core.types import Coordinate
from place_intel.projection import from_naver_native, tm_bounding_box, wgs84_to_tm

pytestmark = pytest.mark.unit


def test_origin_maps_to_false_easting_and_northing():
    assert wgs84_to_tm(Coordinate(lat=38.0, lon=127.0)) == (200000, 500000)


def test_gangnam_station_on_grid():
    point = wgs84_to_tm(Coordinate(lat=37.497942, lon=127.027621))
    assert 202000 < point.x < 203000
    assert 444000 < point.y < 445000


def test_bounding_box_is_centered():
    box = tm_bounding_box(Coordinate(lat=38.0, lon=127.0), 1000)
    assert box["minXAxis"] == "199000"
    assert box["maxXAxis"] == "201000"
    assert box["minYAxis"] == "499000"
    assert box["maxYAxis"] == "501000"


def test_naver_native_scaled_degrees():
    coordinate = from_naver_native("1270276210", "374979420")
    assert coordinate == Coordinate(lat=37.497942, lon=127.027621)


@pytest.mark.parametrize(
    ("mapx", "mapy"), [("abc", "1"), (None, None), ("0", "0"), ("9999999999", "1")]
)
def test_naver_native_rejects_bad_values(mapx, mapy):
    assert from_naver_native(mapx, mapy) is None
