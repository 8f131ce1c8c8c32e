"""
Base pricing table and the Pricing Resolver.

KEY PRINCIPLE: calculator definitions ask for a rate by dotted path
(``materials.concrete_yd3``), never by where it sits in the pricing data.
The resolver turns that path into an effective unit rate for a region,
honouring manual overrides.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Union

from .regions import RateCategory, RegionStore
from .units import parse_number


# Fallback table used when no pricing file is configured.
DEFAULT_BASE_PRICING: Dict[str, Any] = {
    "materials": {
        "concrete_yd3": 155.0,
        "rebar_ft": 0.85,
    },
    "labor": {
        "concrete_finisher_hr": 58.0,
    },
    "equipment": {
        "concrete_pump_flat": 425.0,
    },
    "tax_rate": 0.0825,
    "markup": 0.10,
}

_PREFIX_CATEGORIES = {
    "materials": RateCategory.MATERIAL,
    "material": RateCategory.MATERIAL,
    "labor": RateCategory.LABOR,
    "equipment": RateCategory.EQUIPMENT,
}


def infer_category(path: str) -> RateCategory:
    """Category implied by a pricing path's first segment; GENERAL otherwise."""
    prefix = path.split(".", 1)[0].lower()
    return _PREFIX_CATEGORIES.get(prefix, RateCategory.GENERAL)


def override_present(value: Any) -> bool:
    return value is not None and not (isinstance(value, str) and value.strip() == "")


def override_value(overrides: Optional[Mapping[str, Any]], key: str) -> Optional[float]:
    """
    The manual rate set for ``key``, or None when no override is present.

    Raises:
        ValueError: if an override is present but not a finite number
    """
    raw = (overrides or {}).get(key)
    if not override_present(raw):
        return None
    value = parse_number(raw)
    if value is None:
        raise ValueError(f"Override for '{key}' is not a finite number: {raw!r}")
    return value


@dataclass(frozen=True)
class ResolvedPrice:
    """
    Effective unit rate for a pricing path

    Attributes:
        value: Rate to charge (region-adjusted unless overridden)
        overridden: True when a manual override supplied the value
        base: Unadjusted base rate from the pricing table (0.0 if missing)
        category: Rate category used for the regional multiplier
        multiplier: Multiplier applied (1.0 for overrides)
    """
    value: float
    overridden: bool
    base: float = 0.0
    category: RateCategory = RateCategory.GENERAL
    multiplier: float = 1.0


class PricingTable:
    """Read-only nested base-rate table addressed by dotted paths."""

    def __init__(self, data: Optional[Mapping[str, Any]] = None):
        self._data = json.loads(json.dumps(data if data is not None else DEFAULT_BASE_PRICING))

    def lookup(self, path: str) -> Optional[float]:
        node: Any = self._data
        for part in path.split("."):
            if not isinstance(node, Mapping) or part not in node:
                return None
            node = node[part]
        if isinstance(node, Mapping) or isinstance(node, bool):
            return None
        return parse_number(node)

    def has(self, path: str) -> bool:
        return self.lookup(path) is not None

    def paths(self) -> List[str]:
        found: List[str] = []

        def _walk(node: Mapping[str, Any], prefix: str) -> None:
            for key, value in node.items():
                path = f"{prefix}.{key}" if prefix else key
                if isinstance(value, Mapping):
                    _walk(value, path)
                else:
                    found.append(path)

        _walk(self._data, "")
        return sorted(found)

    def __repr__(self) -> str:
        return f"PricingTable({len(self.paths())} rates loaded)"


class PricingResolver:
    """
    Resolve effective unit rates.

    Example:
        resolver = PricingResolver(PricingTable(), RegionStore.default())
        price = resolver.resolve("materials.concrete_yd3", {}, "CA")
        price.value       # 155.0 * 1.15
        price.overridden  # False
    """

    def __init__(self, table: PricingTable, regions: RegionStore):
        self.table = table
        self.regions = regions

    def resolve(
        self,
        path: str,
        overrides: Optional[Mapping[str, Any]] = None,
        region_id: Optional[str] = None,
        category: Union[str, RateCategory, None] = None,
    ) -> ResolvedPrice:
        """
        Manual overrides always win and are not region-adjusted. Otherwise
        the base rate (0.0 when the path is missing) is multiplied by the
        region's multiplier for the rate's category. An explicit category
        takes precedence over the one inferred from the path prefix.
        """
        base = self.table.lookup(path)
        base_value = base if base is not None else 0.0

        cat = RateCategory.parse(category) if category else infer_category(path)

        override = override_value(overrides, path)
        if override is not None:
            return ResolvedPrice(value=override, overridden=True, base=base_value, category=cat)

        multiplier = self.regions.get(region_id).multiplier(cat)
        return ResolvedPrice(
            value=base_value * multiplier,
            overridden=False,
            base=base_value,
            category=cat,
            multiplier=multiplier,
        )

    def adjust(self, base_rate: float, region_id: Optional[str], category: Union[str, RateCategory, None]) -> ResolvedPrice:
        """Region-adjust a literal base rate that does not live in the pricing table."""
        cat = RateCategory.parse(category)
        multiplier = self.regions.get(region_id).multiplier(cat)
        return ResolvedPrice(
            value=float(base_rate) * multiplier,
            overridden=False,
            base=float(base_rate),
            category=cat,
            multiplier=multiplier,
        )


def describe_overrides(overrides: Mapping[str, Any]) -> List[str]:
    """Readable labels for the overrides that are actually set."""
    return [path.replace("_", " ") for path, value in overrides.items() if override_present(value)]


def load_pricing(path: Path) -> PricingTable:
    with open(path, "r", encoding="utf-8") as fp:
        data = json.load(fp)
    if not isinstance(data, dict):
        raise ValueError(f"Pricing data in {path} must be a JSON object")
    return PricingTable(data)
