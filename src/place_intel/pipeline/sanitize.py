"""Coerce parsed model trees into display-safe primitive leaves.

`sanitize` is idempotent: running it on its own output changes nothing.
"""

from __future__ import annotations

from collections.abc import Mapping
import json
import math
import re
import typing

from place_intel.core.schema import FieldKind
from place_intel.pipeline.normalize import parse_number, tidy_number

type Schema = Mapping[str, typing.Any]

# Preference order when an object appears where text is expected
_SUMMARY_KEYS = ("summary", "text", "content", "description", "value")
_LABEL_KEYS = ("label", "name", "title")
_NUMBER_KEYS = ("value", "amount", "count", "total")
_BULLET_RE = re.compile(r"^\s*(?:[-*•·▪]|\d+[.)])\s*")


def _is_primitive(value: object) -> bool:
    return isinstance(value, str | int | float | bool)


def to_text(value: object) -> str | None:
    """Collapse any value to a display string, or None when it is empty."""
    if value is None:
        return None
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, int | float):
        return str(tidy_number(value)) if math.isfinite(value) else None
    if isinstance(value, Mapping):
        for keys in (_SUMMARY_KEYS, _LABEL_KEYS):
            for key in keys:
                text = to_text(value.get(key)) if _is_primitive(value.get(key)) else None
                if text:
                    return text
        parts = [to_text(v) for v in value.values() if _is_primitive(v)]
        joined = ", ".join(p for p in parts if p)
        if joined:
            return joined
        if not value:
            return None
        return json.dumps(value, ensure_ascii=False, sort_keys=True, default=str)
    if isinstance(value, list | tuple):
        parts = [to_text(v) for v in value]
        return ", ".join(p for p in parts if p) or None
    return str(value)


def to_number(value: object) -> int | float | None:
    """Read a number from a primitive or a `{value: ...}`-style object."""
    if isinstance(value, Mapping):
        for key in _NUMBER_KEYS:
            if key in value:
                return to_number(value[key])
        return None
    number = parse_number(value)
    return tidy_number(number) if number is not None else None


def to_text_list(value: object) -> list[str] | None:
    """Coerce to a list of non-empty strings."""
    if value is None:
        return None
    if isinstance(value, str):
        lines = [_BULLET_RE.sub("", line).strip() for line in value.splitlines()]
        items = [line for line in lines if line]
    elif isinstance(value, list | tuple):
        items = [t for t in (to_text(v) for v in value) if t]
    else:
        text = to_text(value)
        items = [text] if text else []
    return items or None


def _coerce(value: object, kind: FieldKind | None) -> typing.Any:
    if kind is FieldKind.NUMBER:
        number = to_number(value)
        if number is not None:
            return number
        text = to_text(value)
        number = to_number(text) if text is not None else None
        return number if number is not None else text
    if kind is FieldKind.TEXT_LIST:
        return to_text_list(value)
    if kind is FieldKind.TEXT:
        return to_text(value)
    # Unknown field: keep primitives, collapse containers
    if isinstance(value, str):
        return value.strip() or None
    if isinstance(value, bool | int):
        return value
    if isinstance(value, float):
        return tidy_number(value) if math.isfinite(value) else None
    if isinstance(value, list | tuple):
        return to_text_list(value)
    return to_text(value)


def sanitize(tree: Mapping[str, typing.Any], schema: Schema) -> dict[str, typing.Any]:
    """Walk `tree` and coerce every leaf to the kind `schema` expects.

    `schema` maps field names to a FieldKind, or section names to nested
    field schemas. Objects where a primitive is expected are collapsed to
    text; `None` and empty leaves are dropped.
    """
    out: dict[str, typing.Any] = {}
    for key, value in tree.items():
        expected = schema.get(key)
        if isinstance(expected, Mapping):
            if isinstance(value, Mapping):
                nested = sanitize(value, expected)
                if nested:
                    out[key] = nested
            continue
        coerced = _coerce(value, expected)
        if coerced is not None:
            out[key] = coerced
    return out
