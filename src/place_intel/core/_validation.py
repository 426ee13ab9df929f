"""Minimal guard helpers shared by the core data types."""

from __future__ import annotations

from types import MappingProxyType
import typing

T = typing.TypeVar("T")


def _freeze_mapping(
    m: dict[str, T] | typing.Mapping[str, T] | None,
) -> typing.Mapping[str, T] | None:
    """Return an immutable mapping view or None.

    Accepts dict or Mapping; wraps dicts in MappingProxyType.
    """
    if m is None or isinstance(m, MappingProxyType):
        return m
    return MappingProxyType(dict(m))


def _is_tuple_of(value: object, typ: type | tuple[type, ...]) -> bool:
    return isinstance(value, tuple) and all(isinstance(v, typ) for v in value)


def _is_number(value: object) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool)


def _require(
    *,
    condition: bool,
    message: str,
    exc: type[Exception] = ValueError,
    field_name: str | None = None,
) -> None:
    """Centralized validation with optional field context for clearer errors."""
    if not condition:
        if field_name:
            raise exc(f"{field_name}: {message}")
        raise exc(message)
