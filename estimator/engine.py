"""
Estimation Engine

Executes a registered calculator definition against one input set:

1. Look up the definition (NotFoundError if unknown).
2. Validate and coerce inputs (ValidationError listing every bad field).
3. Resolve regional modifiers for options.state, else inputs["region"],
   else the national default.
4. Build a private evaluation context: the clean inputs plus the region
   multipliers under region_labor / region_material / region_equipment /
   region_general.
5. Run the calculation steps strictly in declared order, collecting line
   items and CSI groups.
6. Roll up P10/P50/P90 ranges and contingency.

Each call works on its own context and returns a fresh EstimationResult; the
registry and region store are only read.

Currency is rounded to whole units where it is aggregated (CSI groups,
ranges, contingency), never per line item. Quantities keep two decimals.
"""

from __future__ import annotations

import logging
import math
import time
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Dict, List, Mapping, Optional, Tuple

from .definitions import (
    REGION_CONTEXT_NAMES,
    REGION_INPUT,
    CalculationStep,
    CalculatorDefinition,
    ConditionalStep,
    FormulaStep,
    LineItemStep,
    LookupStep,
    table_key,
)
from .errors import EstimatorError, EvaluationError, ExpressionError, FieldError, ValidationError
from .pricing import PricingResolver, ResolvedPrice, describe_overrides, override_value
from .regions import DEFAULT_REGION, RateCategory
from .registry import CalculatorRegistry
from .units import parse_number, round_currency, round_quantity
from .validation import ValidationManager


logger = logging.getLogger(__name__)

# Step id reported when rolling up line items fails
TOTALS_STEP_ID = "totals"


# ----------------------------------------------------------------- results
@dataclass(frozen=True)
class LineItem:
    """One priced line of an estimate. ``total`` is unrounded."""
    id: str
    name: str
    unit: str
    quantity: float
    rate: float
    total: float
    base_rate: float
    state_adjustment: float
    rate_category: RateCategory
    csi_code: Optional[str] = None
    overridden: bool = False

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "csiCode": self.csi_code,
            "unit": self.unit,
            "quantity": self.quantity,
            "rate": self.rate,
            "total": self.total,
            "baseRate": self.base_rate,
            "stateAdjustment": self.state_adjustment,
            "rateCategory": self.rate_category.value,
            "overridden": self.overridden,
        }


@dataclass(frozen=True)
class CsiGroup:
    items: Tuple[LineItem, ...]
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {"items": [i.to_dict() for i in self.items], "total": self.total}


@dataclass(frozen=True)
class Ranges:
    p10: int
    p50: int
    p90: int
    uncertainty_factor: float

    def to_dict(self) -> Dict[str, Any]:
        return {"p10": self.p10, "p50": self.p50, "p90": self.p90, "uncertaintyFactor": self.uncertainty_factor}


@dataclass(frozen=True)
class Contingencies:
    subtotal: int
    contingency_rate: float
    contingency_amount: int
    total: int

    def to_dict(self) -> Dict[str, Any]:
        return {
            "subtotal": self.subtotal,
            "contingencyRate": self.contingency_rate,
            "contingencyAmount": self.contingency_amount,
            "total": self.total,
        }


@dataclass(frozen=True)
class Totals:
    with_contingency: int
    without_contingency: int

    def to_dict(self) -> Dict[str, Any]:
        return {"withContingency": self.with_contingency, "withoutContingency": self.without_contingency}


@dataclass(frozen=True)
class EstimationResult:
    """
    Value snapshot of one evaluation

    Attributes:
        line_items: Line items in step order
        csi_mapping: CSI code -> grouped items and rounded total
        ranges: P10/P50/P90 band around the line-item sum
        contingencies: Subtotal, reserve and total with reserve
        totals: With/without contingency
        derived: Values produced by formula and lookup steps, in step order
        assumptions: Copied from the definition
        metadata: Calculator id, region, timestamp, execution time, ...
    """
    line_items: Tuple[LineItem, ...]
    csi_mapping: Mapping[str, CsiGroup]
    ranges: Ranges
    contingencies: Contingencies
    totals: Totals
    derived: Mapping[str, Any]
    assumptions: Tuple[str, ...]
    metadata: Mapping[str, Any]

    def line_item(self, item_id: str) -> LineItem:
        for item in self.line_items:
            if item.id == item_id:
                return item
        raise KeyError(f"No line item '{item_id}' in result")

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lineItems": [i.to_dict() for i in self.line_items],
            "csiMapping": {code: group.to_dict() for code, group in self.csi_mapping.items()},
            "ranges": self.ranges.to_dict(),
            "contingencies": self.contingencies.to_dict(),
            "totals": self.totals.to_dict(),
            "derived": dict(self.derived),
            "assumptions": list(self.assumptions),
            "metadata": dict(self.metadata),
        }


@dataclass(frozen=True)
class EvaluationOptions:
    """
    Per-call options. ``None`` means "use the definition's value".

    overrides maps a pricing path (or, for literal-rate line items, the step
    id) to a manual rate.
    """
    state: Optional[str] = None
    uncertainty_factor: Optional[float] = None
    contingency_rate: Optional[float] = None
    overrides: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_mapping(cls, raw: Optional[Mapping[str, Any]]) -> "EvaluationOptions":
        raw = raw or {}
        return cls(
            state=raw.get("state"),
            uncertainty_factor=raw.get("uncertaintyFactor", raw.get("uncertainty_factor")),
            contingency_rate=raw.get("contingencyRate", raw.get("contingency_rate")),
            overrides=dict(raw.get("overrides") or {}),
        )


# ---------------------------------------------------------------- execution
@dataclass
class _Run:
    """Mutable state private to one evaluate() call."""
    definition: CalculatorDefinition
    region: str
    overrides: Mapping[str, Any]
    context: Dict[str, Any]
    line_items: List[LineItem] = field(default_factory=list)
    csi_items: Dict[str, List[LineItem]] = field(default_factory=dict)
    derived: Dict[str, Any] = field(default_factory=dict)


def _check_option(value: Any, name: str, upper: Optional[float]) -> Tuple[Optional[float], Optional[FieldError]]:
    if value is None:
        return None, None
    number = parse_number(value)
    if number is None or number < 0 or (upper is not None and number > upper):
        bound = f"between 0 and {upper}" if upper is not None else "a non-negative number"
        return None, FieldError(name, f"{name} must be {bound}")
    return number, None


class EstimationEngine:
    """
    Evaluate calculator definitions into EstimationResults.

    Example:
        engine = EstimationEngine(registry, resolver)
        result = engine.evaluate("concrete-slab", {"length_ft": 20, ...}, {"state": "CA"})
        result.totals.with_contingency
    """

    def __init__(
        self,
        registry: CalculatorRegistry,
        resolver: PricingResolver,
        validator: Optional[ValidationManager] = None,
        clock: Callable[[], float] = time.perf_counter,
    ):
        self.registry = registry
        self.resolver = resolver
        self.validator = validator or registry.validator
        self._clock = clock

    # ---------------------------------------------------------------- public
    def evaluate(
        self,
        calculator_id: str,
        inputs: Mapping[str, Any],
        options: Optional[Any] = None,
    ) -> EstimationResult:
        """
        Raises:
            NotFoundError: unknown calculator id
            ValidationError: invalid inputs or options (all problems listed)
            EvaluationError: a step could not be evaluated
        """
        started = self._clock()
        opts = options if isinstance(options, EvaluationOptions) else EvaluationOptions.from_mapping(options)
        definition = self.registry.get(calculator_id)

        clean, field_errors = self.validator.validate_inputs(definition, inputs)
        uncertainty, problem = _check_option(opts.uncertainty_factor, "uncertaintyFactor", 1.0)
        if problem:
            field_errors.append(problem)
        contingency_rate, problem = _check_option(opts.contingency_rate, "contingencyRate", None)
        if problem:
            field_errors.append(problem)
        if field_errors:
            raise ValidationError(calculator_id, field_errors)

        # blank state or region counts as absent
        requested_region = opts.state or clean.get(REGION_INPUT) or inputs.get(REGION_INPUT) or DEFAULT_REGION
        region, modifiers = self.resolver.regions.resolve(str(requested_region))

        context = dict(clean)
        for name, category in REGION_CONTEXT_NAMES.items():
            context[name] = modifiers.multiplier(category)

        run = _Run(
            definition=definition,
            region=region,
            overrides=dict(opts.overrides),
            context=context,
        )
        try:
            for step in definition.calculation_steps:
                self._execute(step, run)
        except EvaluationError as exc:
            logger.warning("Evaluation of '%s' failed: %s", calculator_id, exc.message)
            raise

        if uncertainty is None:
            uncertainty = definition.uncertainty_factor
        if contingency_rate is None:
            contingency_rate = definition.contingency_rate

        raw_total = sum(item.total for item in run.line_items)
        try:
            ranges = Ranges(
                p10=round_currency(raw_total * (1 - uncertainty)),
                p50=round_currency(raw_total),
                p90=round_currency(raw_total * (1 + uncertainty)),
                uncertainty_factor=uncertainty,
            )
            subtotal = round_currency(raw_total)
            contingencies = Contingencies(
                subtotal=subtotal,
                contingency_rate=contingency_rate,
                contingency_amount=round_currency(raw_total * contingency_rate),
                total=round_currency(raw_total * (1 + contingency_rate)),
            )
            csi_mapping = {
                code: CsiGroup(items=tuple(items), total=round_currency(sum(i.total for i in items)))
                for code, items in run.csi_items.items()
            }
        except (OverflowError, ValueError) as exc:
            logger.warning("Totals for '%s' could not be computed: %s", calculator_id, exc)
            raise EvaluationError(TOTALS_STEP_ID, "estimate total is not a finite number") from exc
        totals = Totals(with_contingency=contingencies.total, without_contingency=subtotal)

        elapsed_ms = (self._clock() - started) * 1000.0
        metadata = {
            "calculatorId": definition.id,
            "calculatorName": definition.name,
            "version": definition.version,
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "region": region,
            "requestedRegion": str(requested_region),
            "aaceClass": definition.aace_class,
            "accuracy": definition.accuracy,
            "executionTime": round(elapsed_ms, 3),
            "overrides": describe_overrides(run.overrides),
        }
        logger.debug(
            "Evaluated '%s' for region %s in %.3f ms (%d line items)",
            definition.id, region, elapsed_ms, len(run.line_items),
        )

        return EstimationResult(
            line_items=tuple(run.line_items),
            csi_mapping=csi_mapping,
            ranges=ranges,
            contingencies=contingencies,
            totals=totals,
            derived=dict(run.derived),
            assumptions=tuple(definition.assumptions),
            metadata=metadata,
        )

    def evaluate_payload(
        self,
        calculator_id: str,
        inputs: Mapping[str, Any],
        options: Optional[Mapping[str, Any]] = None,
    ) -> Dict[str, Any]:
        """
        Wire-format evaluation for UI/export callers: the result dict on
        success, ``{"errors": [...], "error": {...}}`` on any estimator error.
        """
        try:
            return self.evaluate(calculator_id, inputs, options).to_dict()
        except ValidationError as exc:
            return {"errors": exc.errors, "error": exc.to_dict()}
        except EstimatorError as exc:
            return {"errors": [exc.message], "error": exc.to_dict()}

    # ----------------------------------------------------------- step kinds
    def _execute(self, step: CalculationStep, run: _Run) -> None:
        try:
            if isinstance(step, LineItemStep):
                self._line_item(step, run)
            elif isinstance(step, FormulaStep):
                self._formula(step, run)
            elif isinstance(step, LookupStep):
                self._lookup(step, run)
            elif isinstance(step, ConditionalStep):
                self._conditional(step, run)
            else:
                raise EvaluationError(step.id, f"unknown step type {type(step).__name__}")
        except ExpressionError as exc:
            raise EvaluationError(step.id, exc.reason) from exc
        except (OverflowError, ValueError) as exc:
            raise EvaluationError(step.id, str(exc)) from exc

    def _store(self, key: str, value: Any, run: _Run) -> None:
        run.context[key] = value
        run.derived[key] = value

    def _resolve_rate(self, step: LineItemStep, run: _Run) -> ResolvedPrice:
        if step.price_path is not None:
            if not self.resolver.table.has(step.price_path) and step.price_path not in run.overrides:
                logger.warning("Pricing path '%s' not found for step '%s'; using 0", step.price_path, step.id)
            return self.resolver.resolve(step.price_path, run.overrides, run.region, step.rate_category)

        if step.rate_expr is not None:
            base = step.rate_expr.evaluate_number(run.context)
        else:
            base = float(step.base_rate or 0.0)

        override = override_value(run.overrides, step.id)
        category = step.rate_category or RateCategory.GENERAL
        if override is not None:
            return ResolvedPrice(value=override, overridden=True, base=base, category=category)
        return self.resolver.adjust(base, run.region, category)

    def _line_item(self, step: LineItemStep, run: _Run) -> None:
        quantity = round_quantity(step.quantity.evaluate_number(run.context))
        price = self._resolve_rate(step, run)
        if not math.isfinite(price.value):
            raise EvaluationError(step.id, "rate is not a finite number")

        total = quantity * price.value
        if not math.isfinite(total):
            raise EvaluationError(step.id, "line total is not a finite number")

        item = LineItem(
            id=step.id,
            name=step.name,
            unit=step.unit,
            quantity=quantity,
            rate=price.value,
            total=total,
            base_rate=price.base,
            state_adjustment=price.value / price.base if price.base else 1.0,
            rate_category=price.category,
            csi_code=step.csi_code,
            overridden=price.overridden,
        )
        run.line_items.append(item)
        if step.csi_code:
            run.csi_items.setdefault(step.csi_code, []).append(item)

    def _formula(self, step: FormulaStep, run: _Run) -> None:
        value = step.expression.evaluate(run.context)
        if isinstance(value, float) and not math.isfinite(value):
            raise EvaluationError(step.id, "result is not a finite number")
        if isinstance(value, str):
            raise EvaluationError(step.id, "formula must produce a number or boolean")
        self._store(step.output, value, run)

    def _lookup(self, step: LookupStep, run: _Run) -> None:
        if step.key not in run.context:
            raise EvaluationError(step.id, f"undefined name '{step.key}'")
        key_value = run.context[step.key]
        table = step.as_table()
        wanted = table_key(key_value)
        if wanted in table:
            value = table[wanted]
        elif step.has_default:
            value = step.default
        else:
            raise EvaluationError(step.id, f"no table entry for {step.key}={key_value!r}")
        self._store(step.output, value, run)

    def _conditional(self, step: ConditionalStep, run: _Run) -> None:
        if step.then is None:
            return
        if bool(step.when.evaluate(run.context)):
            self._execute(step.then, run)
