"""Immutable, versioned reference tables.

The gazetteer of well-known places, province aliases, neighborhood
nicknames and startup-cost constants ship as packaged TOML. They are loaded
once into a frozen `ReferenceData` bundle and injected into the executor.
"""

from __future__ import annotations

import dataclasses
from importlib import resources
from pathlib import Path
import tomllib
from types import MappingProxyType
import typing

from place_intel.core._validation import _freeze_mapping, _require
from place_intel.core.types import Coordinate

DEFAULT_REFERENCE_FILE = "reference_v1.toml"


def normalize_name(text: str) -> str:
    """Gazetteer key: whitespace removed, case folded."""
    return "".join(text.split()).casefold()


@dataclasses.dataclass(frozen=True, slots=True)
class GazetteerEntry:
    """A well-known place with a curated coordinate."""

    name: str
    province: str
    district: str
    dong: str
    coordinate: Coordinate
    aliases: tuple[str, ...] = ()

    @property
    def parents(self) -> tuple[str, ...]:
        """Parent-unit chain, outermost first."""
        return (self.province, self.district)

    @property
    def address(self) -> str:
        return f"{self.province} {self.district} {self.dong}"


@dataclasses.dataclass(frozen=True, slots=True)
class ReferenceData:
    """Frozen reference bundle; `version` identifies the table revision."""

    version: str
    gazetteer: typing.Mapping[str, tuple[GazetteerEntry, ...]]
    provinces: typing.Mapping[str, str]
    neighborhoods: typing.Mapping[str, str]
    base_startup_cost: float
    province_cost_multipliers: typing.Mapping[str, float]
    default_cost_multiplier: float = 1.0

    def __post_init__(self) -> None:
        """Validate and freeze the tables."""
        _require(
            condition=isinstance(self.version, str) and self.version != "",
            message="must be a non-empty str",
            field_name="version",
        )
        _require(
            condition=self.base_startup_cost > 0,
            message="must be positive",
            field_name="base_startup_cost",
        )
        for name in (
            "gazetteer",
            "provinces",
            "neighborhoods",
            "province_cost_multipliers",
        ):
            object.__setattr__(self, name, _freeze_mapping(getattr(self, name)))

    def lookup(self, text: str) -> tuple[GazetteerEntry, ...]:
        """Return every gazetteer entry whose name or alias matches `text`."""
        return self.gazetteer.get(normalize_name(text), ())

    def startup_cost(self, province: str | None) -> float:
        """Estimated startup cost in KRW for a province."""
        multiplier = self.province_cost_multipliers.get(
            province or "", self.default_cost_multiplier
        )
        return round(self.base_startup_cost * multiplier)


def _build_gazetteer(
    rows: list[dict[str, typing.Any]],
) -> dict[str, tuple[GazetteerEntry, ...]]:
    index: dict[str, list[GazetteerEntry]] = {}
    for row in rows:
        entry = GazetteerEntry(
            name=row["name"],
            province=row["province"],
            district=row["district"],
            dong=row["dong"],
            coordinate=Coordinate(lat=float(row["lat"]), lon=float(row["lon"])),
            aliases=tuple(row.get("aliases", ())),
        )
        for key in {normalize_name(n) for n in (entry.name, *entry.aliases)}:
            index.setdefault(key, []).append(entry)
    return {k: tuple(v) for k, v in index.items()}


def reference_from_mapping(data: typing.Mapping[str, typing.Any]) -> ReferenceData:
    """Build a ReferenceData bundle from parsed TOML content."""
    costs = data.get("costs", {})
    return ReferenceData(
        version=str(data["version"]),
        gazetteer=_build_gazetteer(list(data.get("gazetteer", []))),
        provinces=dict(data.get("provinces", {})),
        neighborhoods=dict(data.get("neighborhoods", {})),
        base_startup_cost=float(costs.get("base_startup_cost", 0)),
        province_cost_multipliers=MappingProxyType(
            {k: float(v) for k, v in costs.get("province_multipliers", {}).items()}
        ),
        default_cost_multiplier=float(costs.get("default_multiplier", 1.0)),
    )


def load_reference_data(path: str | Path | None = None) -> ReferenceData:
    """Load the packaged reference tables, or a replacement file at `path`."""
    if path is None:
        source = resources.files(__package__).joinpath("data", DEFAULT_REFERENCE_FILE)
        with source.open("rb") as f:
            data = tomllib.load(f)
    else:
        with Path(path).open("rb") as f:
            data = tomllib.load(f)
    return reference_from_mapping(data)


__all__ = [
    "GazetteerEntry",
    "ReferenceData",
    "load_reference_data",
    "normalize_name",
    "reference_from_mapping",
]
