"""
Calculator definition data structures.

A definition is plain data: an input schema plus an ordered list of
calculation steps. Definitions are immutable once built; the JSON wire
format uses the camelCase keys of the calculator config documents
(``inputFields``, ``calculationSteps``, ``csiCode`` ...).

KEY PRINCIPLE: declared order is execution order. Nothing here sorts steps
by dependency; the validator only checks that the declared order is sound.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, FrozenSet, Iterator, List, Mapping, Optional, Tuple, Union

from .expressions import Expression, compile_expression
from .regions import RateCategory


DEFAULT_UNCERTAINTY_FACTOR = 0.25
DEFAULT_CONTINGENCY_RATE = 0.15

# Context names the engine always provides; input ids may not reuse them.
REGION_CONTEXT_NAMES: Dict[str, RateCategory] = {
    f"region_{c.value}": c for c in RateCategory
}

# Input the engine reads the region from, whether or not a definition declares it
REGION_INPUT = "region"


class FieldType(Enum):
    """Input field types"""
    NUMBER = "number"
    SELECT = "select"
    TEXT = "text"
    BOOLEAN = "boolean"


class StepKind(Enum):
    LINE_ITEM = "lineItem"
    FORMULA = "formula"
    LOOKUP = "lookup"
    CONDITIONAL = "conditional"


@dataclass(frozen=True)
class InputFieldSpec:
    id: str
    name: str
    type: FieldType
    required: bool = False
    min: Optional[float] = None
    max: Optional[float] = None
    options: Tuple[Any, ...] = ()
    default: Any = None
    unit: str = ""

    @property
    def is_numeric(self) -> bool:
        return self.type == FieldType.NUMBER

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "InputFieldSpec":
        return cls(
            id=raw["id"],
            name=raw.get("name") or raw["id"],
            type=FieldType(raw.get("type", "number")),
            required=bool(raw.get("required", False)),
            min=raw.get("min"),
            max=raw.get("max"),
            options=tuple(raw.get("options") or ()),
            default=raw.get("default"),
            unit=raw.get("unit", ""),
        )

    def to_dict(self) -> Dict[str, Any]:
        out: Dict[str, Any] = {
            "id": self.id,
            "name": self.name,
            "type": self.type.value,
            "required": self.required,
        }
        if self.min is not None:
            out["min"] = self.min
        if self.max is not None:
            out["max"] = self.max
        if self.options:
            out["options"] = list(self.options)
        if self.default is not None:
            out["default"] = self.default
        if self.unit:
            out["unit"] = self.unit
        return out


# ------------------------------------------------------------------ steps
@dataclass(frozen=True)
class CalculationStep:
    """Common base for the four step kinds."""
    id: str

    kind = None  # type: Optional[StepKind]

    def outputs(self) -> FrozenSet[str]:
        """Context keys this step can introduce."""
        return frozenset()

    def reads(self) -> FrozenSet[str]:
        """Context names this step's expressions reference."""
        return frozenset()

    def walk(self) -> Iterator["CalculationStep"]:
        yield self


@dataclass(frozen=True)
class LineItemStep(CalculationStep):
    """
    Produce one priced line item.

    Exactly one rate source is set:
        base_rate   literal rate, region-adjusted by rate_category
        price_path  dotted pricing-table path, resolved by the Pricing Resolver
        rate_expr   expression over the context (e.g. a looked-up price)
    """
    name: str = ""
    quantity: Expression = field(default_factory=lambda: compile_expression(0))
    unit: str = ""
    rate_category: Optional[RateCategory] = None
    csi_code: Optional[str] = None
    base_rate: Optional[float] = None
    price_path: Optional[str] = None
    rate_expr: Optional[Expression] = None

    kind = StepKind.LINE_ITEM

    def reads(self):
        names = self.quantity.names
        if self.rate_expr is not None:
            names = names | self.rate_expr.names
        return names


@dataclass(frozen=True)
class FormulaStep(CalculationStep):
    output: str = ""
    expression: Expression = field(default_factory=lambda: compile_expression(0))

    kind = StepKind.FORMULA

    def outputs(self):
        return frozenset([self.output])

    def reads(self):
        return self.expression.names


@dataclass(frozen=True)
class LookupStep(CalculationStep):
    output: str = ""
    key: str = ""
    table: Tuple[Tuple[str, Any], ...] = ()
    default: Any = None
    has_default: bool = False

    kind = StepKind.LOOKUP

    def outputs(self):
        return frozenset([self.output])

    def reads(self):
        return frozenset([self.key])

    def as_table(self) -> Dict[str, Any]:
        return dict(self.table)


@dataclass(frozen=True)
class ConditionalStep(CalculationStep):
    when: Expression = field(default_factory=lambda: compile_expression("false"))
    then: Optional[CalculationStep] = None

    kind = StepKind.CONDITIONAL

    def outputs(self):
        return self.then.outputs() if self.then is not None else frozenset()

    def reads(self):
        names = self.when.names
        if self.then is not None:
            names = names | self.then.reads()
        return names

    def walk(self):
        yield self
        if self.then is not None:
            yield from self.then.walk()


def _rate_source(raw: Mapping[str, Any]) -> Dict[str, Any]:
    base_rate = raw.get("baseRate")
    if isinstance(base_rate, str):
        return {"price_path": base_rate.strip()}
    if base_rate is not None:
        return {"base_rate": float(base_rate)}
    if raw.get("rateExpr") is not None:
        return {"rate_expr": compile_expression(raw["rateExpr"])}
    raise ValueError(f"Line item '{raw.get('id')}' needs baseRate or rateExpr")


def table_key(value: Any) -> str:
    """Normalize lookup keys so 12, 12.0 and "12" all hit the same row."""
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, float) and value.is_integer():
        return str(int(value))
    return str(value)


def parse_step(raw: Mapping[str, Any]) -> CalculationStep:
    """
    Build a step from its JSON form.

    Raises:
        ExpressionError: if an expression does not parse
        ValueError / KeyError: if required keys are missing or malformed
    """
    kind = StepKind(raw["type"])
    step_id = raw["id"]

    if kind == StepKind.LINE_ITEM:
        quantity = raw.get("quantityExpr", raw.get("quantity"))
        if quantity is None:
            raise ValueError(f"Line item '{step_id}' needs quantityExpr")
        category = raw.get("rateCategory")
        return LineItemStep(
            id=step_id,
            name=raw.get("name") or step_id,
            quantity=compile_expression(quantity),
            unit=raw.get("unit", ""),
            rate_category=RateCategory.parse(category) if category else None,
            csi_code=raw.get("csiCode") or None,
            **_rate_source(raw),
        )

    if kind == StepKind.FORMULA:
        return FormulaStep(
            id=step_id,
            output=raw.get("output") or step_id,
            expression=compile_expression(raw["expression"]),
        )

    if kind == StepKind.LOOKUP:
        table = raw.get("table")
        if not isinstance(table, Mapping):
            raise ValueError(f"Lookup '{step_id}' needs a table object")
        return LookupStep(
            id=step_id,
            output=raw.get("output") or step_id,
            key=raw["key"],
            table=tuple((table_key(k), v) for k, v in table.items()),
            default=raw.get("default"),
            has_default="default" in raw,
        )

    then = raw.get("then")
    if not isinstance(then, Mapping):
        raise ValueError(f"Conditional '{step_id}' needs a nested 'then' step")
    return ConditionalStep(
        id=step_id,
        when=compile_expression(raw["when"]),
        then=parse_step(then),
    )


@dataclass(frozen=True)
class CalculatorDefinition:
    """
    A registered calculator

    Attributes:
        id: Unique registry key
        input_fields: Ordered input schema
        calculation_steps: Ordered steps; declared order is execution order
        uncertainty_factor: Default +/- band for P10/P90
        contingency_rate: Default contingency reserve
    """
    id: str
    name: str
    category: str
    input_fields: Tuple[InputFieldSpec, ...]
    calculation_steps: Tuple[CalculationStep, ...]
    aace_class: str = "Class-5"
    accuracy: str = "±25%"
    assumptions: Tuple[str, ...] = ()
    uncertainty_factor: float = DEFAULT_UNCERTAINTY_FACTOR
    contingency_rate: float = DEFAULT_CONTINGENCY_RATE
    version: str = "1.0.0"
    description: str = ""

    def get_field(self, field_id: str) -> Optional[InputFieldSpec]:
        for spec in self.input_fields:
            if spec.id == field_id:
                return spec
        return None

    @property
    def input_ids(self) -> List[str]:
        return [f.id for f in self.input_fields]

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "CalculatorDefinition":
        return cls(
            id=raw["id"],
            name=raw["name"],
            category=raw["category"],
            input_fields=tuple(InputFieldSpec.from_dict(f) for f in raw["inputFields"]),
            calculation_steps=tuple(parse_step(s) for s in raw["calculationSteps"]),
            aace_class=raw.get("aaceClass") or "Class-5",
            accuracy=raw.get("accuracy") or "±25%",
            assumptions=tuple(raw.get("assumptions") or ()),
            uncertainty_factor=float(raw.get("uncertaintyFactor", DEFAULT_UNCERTAINTY_FACTOR)),
            contingency_rate=float(raw.get("contingencyRate", DEFAULT_CONTINGENCY_RATE)),
            version=raw.get("version") or "1.0.0",
            description=raw.get("description", ""),
        )

    def summary(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "category": self.category,
            "aaceClass": self.aace_class,
            "accuracy": self.accuracy,
            "version": self.version,
            "inputs": len(self.input_fields),
            "steps": len(self.calculation_steps),
        }


DefinitionSource = Union[CalculatorDefinition, Mapping[str, Any]]
