"""Shared fixtures for estimator tests."""

import copy

import pytest

from estimator.config import PACKAGE_DATA_DIR, Settings, build_engine
from estimator.engine import EstimationEngine
from estimator.pricing import PricingResolver, PricingTable
from estimator.regions import RegionStore
from estimator.registry import CalculatorRegistry, load_definitions_file


SIMPLE_DEFINITION = {
    "id": "simple-box",
    "name": "Simple Box",
    "category": "testing",
    "inputFields": [
        {"id": "qty", "name": "Quantity", "type": "number", "required": True, "min": 0},
    ],
    "calculationSteps": [
        {
            "id": "item",
            "type": "lineItem",
            "name": "Boxed item",
            "quantityExpr": "qty",
            "unit": "ea",
            "baseRate": 100,
            "rateCategory": "material",
            "csiCode": "01 00 00",
        },
    ],
}


@pytest.fixture
def simple_definition():
    """A fresh copy of a one-line-item definition; tests may mutate it."""
    return copy.deepcopy(SIMPLE_DEFINITION)


@pytest.fixture
def bundled_definitions():
    return load_definitions_file(PACKAGE_DATA_DIR / "calculators.json")


@pytest.fixture
def engine():
    """Engine over the bundled calculators, pricing and regions."""
    return build_engine(Settings())


@pytest.fixture
def resolver():
    return PricingResolver(PricingTable(), RegionStore.default())


@pytest.fixture
def make_engine(resolver):
    """Build an engine holding only the given definitions."""
    def _make(*definitions):
        registry = CalculatorRegistry()
        for definition in definitions:
            registry.register(definition)
        return EstimationEngine(registry, resolver)
    return _make


@pytest.fixture
def slab_inputs():
    return {"length_ft": 20, "width_ft": 10, "thickness_in": 4}
