"""
Estimation engine for data-driven construction cost calculators

Calculators are JSON documents: typed input fields plus an ordered list of
calculation steps (line items, formulas, lookups, conditionals). The engine
validates inputs, applies regional price modifiers and pricing overrides, and
rolls line items up into CSI groups, P10/P50/P90 ranges and contingency.

Main Classes:
    - EstimationEngine: Evaluate a registered calculator for one input set
    - CalculatorRegistry: Validated, hot-reloadable definition store
    - ValidationManager: Definition schema checks and input validation
    - PricingResolver: Base rates + regional multipliers + overrides
    - RegionStore: Per-state rate multipliers

Architecture:
    Definitions and pricing data are plain data loaded at startup
    (see config.build_engine). Every evaluation works on its own context
    and returns an immutable EstimationResult.
"""

from .config import Settings, build_engine
from .definitions import CalculatorDefinition, InputFieldSpec
from .engine import EstimationEngine, EstimationResult, EvaluationOptions, LineItem
from .errors import (
    DefinitionError,
    EstimatorError,
    EvaluationError,
    ExpressionError,
    NotFoundError,
    ValidationError,
)
from .pricing import PricingResolver, PricingTable
from .regions import RateCategory, RegionModifiers, RegionStore
from .registry import CalculatorRegistry, LoadReport
from .validation import ValidationManager

__version__ = "1.0.0"

__all__ = [
    # Engine
    'EstimationEngine',
    'EstimationResult',
    'EvaluationOptions',
    'LineItem',

    # Definitions and registry
    'CalculatorDefinition',
    'InputFieldSpec',
    'CalculatorRegistry',
    'LoadReport',
    'ValidationManager',

    # Pricing and regions
    'PricingResolver',
    'PricingTable',
    'RateCategory',
    'RegionModifiers',
    'RegionStore',

    # Errors
    'EstimatorError',
    'DefinitionError',
    'ValidationError',
    'EvaluationError',
    'NotFoundError',
    'ExpressionError',

    # Wiring
    'Settings',
    'build_engine',
]
