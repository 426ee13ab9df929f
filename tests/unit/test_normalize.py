import pytest

from place_intel.pipeline.normalize import Period, parse_number, tidy_number, to_monthly

pytestmark = pytest.mark.unit


@pytest.mark.parametrize(
    ("raw", "expected"),
    [
        ("1,234", 1234.0),
        ("3억 2천만원", 320_000_000.0),
        ("2천만원", 20_000_000.0),
        ("1억", 100_000_000.0),
        ("5만", 50_000.0),
        ("1.2M", 1_200_000.0),
        ("45%", 45.0),
        ("약 300명", 300.0),
        (12, 12.0),
        (3.5, 3.5),
    ],
)
def test_parse_number(raw, expected):
    assert parse_number(raw) == pytest.approx(expected)


@pytest.mark.parametrize("raw", [None, "", "없음", True, float("inf"), {"a": 1}])
def test_parse_number_unreadable(raw):
    assert parse_number(raw) is None


def test_to_monthly_conversions():
    assert to_monthly(30, Period.MONTH) == 30
    assert to_monthly(90, Period.QUARTER) == pytest.approx(30)
    assert to_monthly(120, Period.YEAR) == pytest.approx(10)
    assert to_monthly(1, Period.DAY) == pytest.approx(30.4375)


def test_tidy_number():
    assert tidy_number(12.0) == 12
    assert isinstance(tidy_number(12.0), int)
    assert tidy_number(1.23456) == 1.23
