"""
Regional Modifier Store

Maps a region/state identifier to per-category rate multipliers. The store
is built once from static data and is read-only afterwards; lookups never
fail, unknown regions resolve to the national baseline (1.0 everywhere).
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterator, Mapping, Optional, Tuple, Union


logger = logging.getLogger(__name__)

DEFAULT_REGION = "US_DEFAULT"

# ids that all mean "national average"
NATIONAL_ALIASES = {"us_default", "national", "default", "us", ""}


class RateCategory(Enum):
    """Cost categories a regional multiplier can apply to"""
    LABOR = "labor"
    MATERIAL = "material"
    EQUIPMENT = "equipment"
    GENERAL = "general"

    @classmethod
    def parse(cls, value: Union[str, "RateCategory", None]) -> "RateCategory":
        if isinstance(value, RateCategory):
            return value
        if not value:
            return cls.GENERAL
        try:
            return cls(str(value).lower())
        except ValueError:
            raise ValueError(
                f"Unknown rate category '{value}'. "
                f"Expected one of: {', '.join(c.value for c in cls)}"
            )


@dataclass(frozen=True)
class RegionModifiers:
    """Rate multipliers for one region"""
    labor: float = 1.0
    material: float = 1.0
    equipment: float = 1.0
    general: float = 1.0

    def multiplier(self, category: Union[str, RateCategory]) -> float:
        return float(getattr(self, RateCategory.parse(category).value))

    def as_dict(self) -> Dict[str, float]:
        return {c.value: self.multiplier(c) for c in RateCategory}

    @classmethod
    def uniform(cls, factor: float) -> "RegionModifiers":
        return cls(labor=factor, material=factor, equipment=factor, general=factor)

    @classmethod
    def from_raw(cls, raw: Union[float, int, Mapping[str, Any]]) -> "RegionModifiers":
        """
        Accept either a bare factor (``1.23``), a ``{"factor": 1.23}`` record,
        or a per-category mapping. Categories missing from a mapping fall back
        to its ``general`` value, then to 1.0.
        """
        if isinstance(raw, bool):
            raise ValueError("Region modifier cannot be a boolean")
        if isinstance(raw, (int, float)):
            return cls.uniform(float(raw))
        if not isinstance(raw, Mapping):
            raise ValueError(f"Region modifier must be a number or mapping, got {type(raw).__name__}")
        if "factor" in raw:
            return cls.uniform(float(raw["factor"]))

        unknown = set(raw) - {c.value for c in RateCategory}
        if unknown:
            raise ValueError(f"Unknown rate categories in region modifiers: {sorted(unknown)}")
        general = float(raw.get("general", 1.0))
        return cls(
            labor=float(raw.get("labor", general)),
            material=float(raw.get("material", general)),
            equipment=float(raw.get("equipment", general)),
            general=general,
        )


NATIONAL = RegionModifiers()

# State defaults used when no regional data file is configured.
DEFAULT_STATE_MODIFIERS: Dict[str, Dict[str, float]] = {
    "CA": {"labor": 1.25, "material": 1.15, "equipment": 1.20, "general": 1.20},
    "NY": {"labor": 1.30, "material": 1.10, "equipment": 1.25, "general": 1.22},
    "TX": {"labor": 0.95, "material": 0.98, "equipment": 1.00, "general": 0.98},
    "FL": {"labor": 1.00, "material": 1.05, "equipment": 1.10, "general": 1.05},
    DEFAULT_REGION: {"labor": 1.00, "material": 1.00, "equipment": 1.00, "general": 1.00},
}


def normalize_region_id(region_id: Optional[str]) -> str:
    if region_id is None:
        return DEFAULT_REGION
    key = str(region_id).strip()
    if key.lower() in NATIONAL_ALIASES:
        return DEFAULT_REGION
    return key.upper()


class RegionStore:
    """
    Read-only store of RegionModifiers keyed by normalized region id.

    Example:
        store = RegionStore.from_mapping({"CA": {"labor": 1.25, "material": 1.15}})
        key, mods = store.resolve("ca")      # ("CA", RegionModifiers(...))
        store.resolve("atlantis")            # ("US_DEFAULT", NATIONAL)
    """

    def __init__(self, regions: Optional[Mapping[str, RegionModifiers]] = None):
        table: Dict[str, RegionModifiers] = {}
        for region_id, mods in (regions or {}).items():
            table[normalize_region_id(region_id)] = mods
        table.setdefault(DEFAULT_REGION, NATIONAL)
        self._regions = MappingProxyType(table)

    @classmethod
    def from_mapping(cls, raw: Mapping[str, Any]) -> "RegionStore":
        regions: Dict[str, RegionModifiers] = {}
        for region_id, record in raw.items():
            try:
                regions[region_id] = RegionModifiers.from_raw(record)
            except (TypeError, ValueError) as exc:
                raise ValueError(f"Invalid modifiers for region '{region_id}': {exc}") from exc
        return cls(regions)

    @classmethod
    def default(cls) -> "RegionStore":
        return cls.from_mapping(DEFAULT_STATE_MODIFIERS)

    def resolve(self, region_id: Optional[str]) -> Tuple[str, RegionModifiers]:
        key = normalize_region_id(region_id)
        mods = self._regions.get(key)
        if mods is None:
            logger.debug("Unknown region '%s', using %s", region_id, DEFAULT_REGION)
            return DEFAULT_REGION, self._regions[DEFAULT_REGION]
        return key, mods

    def get(self, region_id: Optional[str]) -> RegionModifiers:
        return self.resolve(region_id)[1]

    def supported_regions(self) -> list:
        return sorted(k for k in self._regions if k != DEFAULT_REGION)

    def __contains__(self, region_id: object) -> bool:
        return isinstance(region_id, str) and normalize_region_id(region_id) in self._regions

    def __iter__(self) -> Iterator[str]:
        return iter(self._regions)

    def __len__(self) -> int:
        return len(self._regions)

    def __repr__(self) -> str:
        return f"RegionStore({len(self._regions)} regions loaded)"


def load_regions(path: Path) -> RegionStore:
    with open(path, "r", encoding="utf-8") as fp:
        raw = json.load(fp)
    if not isinstance(raw, dict):
        raise ValueError(f"Region data in {path} must be a JSON object keyed by region id")
    regions = raw.get("regions", raw)
    return RegionStore.from_mapping(regions)
