"""Numeric normalization for heterogeneous provider and model values.

Providers report counts per day, week, quarter or year and money in won or
in Korean multiplier notation. Everything written into the aggregate is
per month, in plain numbers.
"""

from __future__ import annotations

import enum
import math
import re


class Period(enum.StrEnum):
    """Reporting period of a recurring count."""

    DAY = "day"
    WEEK = "week"
    MONTH = "month"
    QUARTER = "quarter"
    YEAR = "year"


_DAYS_PER_MONTH = 365.25 / 12

_PER_MONTH = {
    Period.DAY: _DAYS_PER_MONTH,
    Period.WEEK: _DAYS_PER_MONTH / 7,
    Period.MONTH: 1.0,
    Period.QUARTER: 1 / 3,
    Period.YEAR: 1 / 12,
}

# 만/억/조 close a group; 천/백 accumulate inside one.
_LARGE_UNITS = {"만": 10**4, "억": 10**8, "조": 10**12}
_SMALL_UNITS = {"천": 10**3, "백": 10**2}
_LATIN_UNITS = {"k": 10**3, "m": 10**6, "b": 10**9}

_KOREAN_PRESENT_RE = re.compile(r"\d\s*[조억만천백]")
_KOREAN_TOKEN_RE = re.compile(r"(\d+(?:\.\d+)?)|([조억만천백])")
_LATIN_RE = re.compile(r"^([-+]?\d+(?:\.\d+)?)\s*([kmb])\b", re.IGNORECASE)
_PLAIN_RE = re.compile(r"[-+]?\d+(?:\.\d+)?")


def to_monthly(value: float, period: Period) -> float:
    """Convert a recurring count for `period` into a per-month figure."""
    return value * _PER_MONTH[period]


def tidy_number(value: float) -> int | float:
    """Return an int for integral values, else the value rounded to 2 places."""
    if math.isfinite(value) and float(value).is_integer():
        return int(value)
    return round(value, 2)


def _parse_korean(text: str) -> float:
    total = 0.0
    group = 0.0
    pending: float | None = None
    for digits, unit in _KOREAN_TOKEN_RE.findall(text):
        if digits:
            pending = float(digits)
        elif unit in _SMALL_UNITS:
            group += (1.0 if pending is None else pending) * _SMALL_UNITS[unit]
            pending = None
        else:
            group += pending or 0.0
            total += (group or 1.0) * _LARGE_UNITS[unit]
            group, pending = 0.0, None
    return total + group + (pending or 0.0)


def parse_number(raw: object) -> float | None:
    """Parse a number from provider or model text.

    Handles thousands separators, percent signs, Korean multipliers
    ("3억 2천만원" -> 320000000) and Latin suffixes ("1.2M"). Returns None when
    no number can be read.
    """
    if isinstance(raw, bool) or raw is None:
        return None
    if isinstance(raw, int | float):
        return float(raw) if math.isfinite(raw) else None
    if not isinstance(raw, str):
        return None

    text = raw.strip().replace(",", "")
    if not text:
        return None

    if _KOREAN_PRESENT_RE.search(text):
        value = _parse_korean(text)
        return -value if text.startswith("-") else value

    latin = _LATIN_RE.match(text)
    if latin:
        return float(latin.group(1)) * _LATIN_UNITS[latin.group(2).lower()]

    plain = _PLAIN_RE.search(text)
    if plain is None:
        return None
    return float(plain.group(0))
