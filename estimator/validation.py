"""
Validation Manager

Two jobs, both done before any money is computed:

1. Definition validation (registration time). Structural checks run against
   DEFINITION_SCHEMA with jsonschema, collecting every violation. Definitions
   that pass are built and then checked semantically: unique ids, sane
   min/max, select options, and step ordering (every name an expression
   reads must be an input, a region name, or an output of an earlier step).

2. Input validation (every evaluation). Each field is checked once and every
   problem is reported together; nothing short-circuits on the first bad field.
"""

from __future__ import annotations

import logging
from typing import Any, Dict, List, Mapping, Optional, Set, Tuple

import jsonschema

from .definitions import (
    REGION_CONTEXT_NAMES,
    CalculatorDefinition,
    ConditionalStep,
    FieldType,
    InputFieldSpec,
    LineItemStep,
    table_key,
)
from .errors import DefinitionError, ExpressionError, FieldError
from .units import format_number, parse_number


logger = logging.getLogger(__name__)

IDENTIFIER_PATTERN = "^[A-Za-z_][A-Za-z0-9_]*$"

DEFINITION_SCHEMA: Dict[str, Any] = {
    "$schema": "http://json-schema.org/draft-07/schema#",
    "type": "object",
    "required": ["id", "name", "category", "inputFields", "calculationSteps"],
    "properties": {
        "id": {"type": "string", "minLength": 1},
        "name": {"type": "string", "minLength": 1},
        "category": {"type": "string", "minLength": 1},
        "version": {"type": "string"},
        "aaceClass": {"type": "string"},
        "accuracy": {"type": "string"},
        "description": {"type": "string"},
        "assumptions": {"type": "array", "items": {"type": "string"}},
        "uncertaintyFactor": {"type": "number", "minimum": 0, "maximum": 1},
        "contingencyRate": {"type": "number", "minimum": 0},
        "inputFields": {
            "type": "array",
            "minItems": 1,
            "items": {"$ref": "#/definitions/inputField"},
        },
        "calculationSteps": {
            "type": "array",
            "minItems": 1,
            "items": {"$ref": "#/definitions/step"},
        },
    },
    "definitions": {
        "expression": {"type": ["string", "number"]},
        "inputField": {
            "type": "object",
            "required": ["id", "type"],
            "properties": {
                "id": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                "name": {"type": "string"},
                "type": {"enum": [t.value for t in FieldType]},
                "required": {"type": "boolean"},
                "min": {"type": "number"},
                "max": {"type": "number"},
                "options": {"type": "array", "items": {"type": ["string", "number", "boolean"]}},
                "unit": {"type": "string"},
            },
        },
        "step": {
            "type": "object",
            "required": ["type", "id"],
            "properties": {
                "type": {"enum": ["lineItem", "formula", "lookup", "conditional"]},
                "id": {"type": "string", "minLength": 1},
            },
            "allOf": [
                {
                    "if": {"properties": {"type": {"const": "lineItem"}}},
                    "then": {
                        "properties": {
                            "name": {"type": "string"},
                            "unit": {"type": "string"},
                            "quantityExpr": {"$ref": "#/definitions/expression"},
                            "quantity": {"$ref": "#/definitions/expression"},
                            "baseRate": {"type": ["number", "string"]},
                            "rateExpr": {"$ref": "#/definitions/expression"},
                            "rateCategory": {"enum": ["labor", "material", "equipment", "general"]},
                            "csiCode": {"type": "string"},
                        },
                        "anyOf": [{"required": ["quantityExpr"]}, {"required": ["quantity"]}],
                        "oneOf": [{"required": ["baseRate"]}, {"required": ["rateExpr"]}],
                    },
                },
                {
                    "if": {"properties": {"type": {"const": "formula"}}},
                    "then": {
                        "required": ["expression"],
                        "properties": {
                            "output": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                            "expression": {"$ref": "#/definitions/expression"},
                        },
                    },
                },
                {
                    "if": {"properties": {"type": {"const": "lookup"}}},
                    "then": {
                        "required": ["key", "table"],
                        "properties": {
                            "output": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                            "key": {"type": "string", "pattern": IDENTIFIER_PATTERN},
                            "table": {"type": "object", "minProperties": 1},
                        },
                    },
                },
                {
                    "if": {"properties": {"type": {"const": "conditional"}}},
                    "then": {
                        "required": ["when", "then"],
                        "properties": {
                            "when": {"$ref": "#/definitions/expression"},
                            "then": {"$ref": "#/definitions/step"},
                        },
                    },
                },
            ],
        },
    },
}

_TRUE_STRINGS = {"true", "1", "yes", "on"}
_FALSE_STRINGS = {"false", "0", "no", "off"}


def _schema_message(error: jsonschema.ValidationError) -> str:
    path = "/".join(str(p) for p in error.absolute_path)
    if error.validator == "required":
        prop = error.message.split("'")[1] if "'" in error.message else error.message
        where = f"{path}/" if path else ""
        return f"Missing required field: {where}{prop}"
    if error.validator == "minLength" and error.instance == "":
        return f"Missing required field: {path}"
    if error.validator == "minItems" and error.instance == []:
        return f"Field {path} must not be empty"
    if error.validator == "type":
        return f"Field {path or '<root>'} must be of type {error.validator_value}"
    if error.validator == "anyOf" and path.startswith("calculationSteps"):
        return f"{path}: line item needs quantityExpr"
    if error.validator == "oneOf" and path.startswith("calculationSteps"):
        return f"{path}: line item needs exactly one of baseRate or rateExpr"
    return f"{path}: {error.message}" if path else error.message


def _is_absent(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class ValidationManager:
    """Validates calculator definitions and runtime input sets."""

    def __init__(self, schema: Optional[Dict[str, Any]] = None):
        self.schema = schema or DEFINITION_SCHEMA
        self._validator = jsonschema.Draft7Validator(self.schema)

    # ------------------------------------------------------------ definitions
    def schema_errors(self, raw: Any) -> List[str]:
        errors = sorted(
            self._validator.iter_errors(raw),
            key=lambda e: [str(p) for p in e.absolute_path],
        )
        return [_schema_message(e) for e in errors]

    def build_definition(self, raw: Mapping[str, Any]) -> CalculatorDefinition:
        """
        Validate a raw definition document and build it.

        Raises:
            DefinitionError: listing every structural or semantic problem
        """
        calculator_id = raw.get("id") if isinstance(raw, Mapping) else None
        if not isinstance(calculator_id, str):
            calculator_id = None

        errors = self.schema_errors(raw)
        if errors:
            raise DefinitionError(calculator_id, errors)

        try:
            definition = CalculatorDefinition.from_dict(raw)
        except ExpressionError as exc:
            raise DefinitionError(calculator_id, [f"Invalid expression: {exc}"]) from exc
        except (KeyError, TypeError, ValueError) as exc:
            raise DefinitionError(calculator_id, [f"Malformed definition: {exc}"]) from exc

        self.check_definition(definition)
        return definition

    def definition_errors(self, definition: CalculatorDefinition) -> List[str]:
        errors: List[str] = []
        if not definition.id:
            errors.append("Missing required field: id")
        if not definition.name:
            errors.append("Missing required field: name")
        if not definition.category:
            errors.append("Missing required field: category")
        if not definition.input_fields:
            errors.append("Field inputFields must not be empty")
        if not definition.calculation_steps:
            errors.append("Field calculationSteps must not be empty")
        if not 0 <= definition.uncertainty_factor <= 1:
            errors.append("uncertaintyFactor must be between 0 and 1")
        if definition.contingency_rate < 0:
            errors.append("contingencyRate must not be negative")

        seen: Set[str] = set()
        for spec in definition.input_fields:
            errors.extend(self._field_spec_errors(spec, seen))
            seen.add(spec.id)

        errors.extend(self._step_order_errors(definition))
        return errors

    def check_definition(self, definition: CalculatorDefinition) -> None:
        errors = self.definition_errors(definition)
        if errors:
            raise DefinitionError(definition.id or None, errors)

    def _field_spec_errors(self, spec: InputFieldSpec, seen: Set[str]) -> List[str]:
        errors: List[str] = []
        label = f"Input '{spec.id}'"
        if spec.id in seen:
            errors.append(f"{label} is declared more than once")
        if spec.id in REGION_CONTEXT_NAMES:
            errors.append(f"{label} uses a reserved name")
        if not spec.is_numeric and (spec.min is not None or spec.max is not None):
            errors.append(f"{label}: min/max only apply to number fields")
        if spec.min is not None and spec.max is not None and spec.min > spec.max:
            errors.append(f"{label}: min {spec.min} is greater than max {spec.max}")
        if spec.type == FieldType.SELECT and not spec.options:
            errors.append(f"{label}: select fields need options")
        if spec.default is not None:
            _, problem = self._coerce(spec, spec.default)
            if problem:
                errors.append(f"{label}: invalid default ({problem})")
        return errors

    def _step_order_errors(self, definition: CalculatorDefinition) -> List[str]:
        errors: List[str] = []
        available: Set[str] = set(definition.input_ids) | set(REGION_CONTEXT_NAMES)
        inputs = set(definition.input_ids)
        step_ids: Set[str] = set()
        outputs: Set[str] = set()

        for position, step in enumerate(definition.calculation_steps):
            for nested in step.walk():
                if nested.id in step_ids:
                    errors.append(f"Step '{nested.id}' is declared more than once")
                step_ids.add(nested.id)
                if isinstance(nested, LineItemStep) and nested.price_path is not None and not nested.price_path:
                    errors.append(f"Step '{nested.id}': baseRate path is empty")

            missing = sorted(step.reads() - available)
            for name in missing:
                errors.append(
                    f"Step '{step.id}' (#{position + 1}) references '{name}' "
                    "before any input or earlier step defines it"
                )
            for output in sorted(step.outputs()):
                if output in outputs:
                    errors.append(f"Step '{step.id}' output '{output}' is already defined by an earlier step")
                if output in inputs:
                    errors.append(f"Step '{step.id}' output '{output}' shadows an input field")
                if output in REGION_CONTEXT_NAMES:
                    errors.append(f"Step '{step.id}' output '{output}' uses a reserved name")
            if isinstance(step, ConditionalStep) and step.then is None:
                errors.append(f"Conditional '{step.id}' has no nested step")
            outputs |= step.outputs()
            available |= step.outputs()
        return errors

    # ----------------------------------------------------------------- inputs
    def _coerce(self, spec: InputFieldSpec, value: Any) -> Tuple[Any, Optional[str]]:
        """Return (clean value, problem message or None) for a present value."""
        if spec.type == FieldType.NUMBER:
            number = parse_number(value)
            if number is None:
                return None, f"{spec.name} must be a number"
            if spec.min is not None and number < spec.min:
                return None, f"{spec.name} must be at least {format_number(spec.min, 4)}"
            if spec.max is not None and number > spec.max:
                return None, f"{spec.name} must be no more than {format_number(spec.max, 4)}"
            return number, None

        if spec.type == FieldType.SELECT:
            wanted = table_key(value)
            for option in spec.options:
                if table_key(option) == wanted:
                    return option, None
            choices = ", ".join(str(o) for o in spec.options)
            return None, f"{spec.name} must be one of: {choices}"

        if spec.type == FieldType.BOOLEAN:
            if isinstance(value, bool):
                return value, None
            if _is_number(value) and value in (0, 1):
                return bool(value), None
            text = str(value).strip().lower()
            if text in _TRUE_STRINGS:
                return True, None
            if text in _FALSE_STRINGS:
                return False, None
            return None, f"{spec.name} must be true or false"

        if not isinstance(value, str):
            return None, f"{spec.name} must be text"
        return value, None

    def validate_inputs(
        self,
        definition: CalculatorDefinition,
        inputs: Mapping[str, Any],
    ) -> Tuple[Dict[str, Any], List[FieldError]]:
        """
        Check every declared field and coerce values to their field types.

        Returns:
            (clean values, field errors). Clean values hold declared fields
            (coerced, defaults applied) only; undeclared inputs are dropped.
            There is at most one error per field.
        """
        clean: Dict[str, Any] = {}
        field_errors: List[FieldError] = []

        for spec in definition.input_fields:
            value = inputs.get(spec.id)
            if _is_absent(value):
                if spec.required:
                    field_errors.append(FieldError(spec.id, f"{spec.name} is required"))
                elif spec.default is not None:
                    clean[spec.id] = self._coerce(spec, spec.default)[0]
                continue

            coerced, problem = self._coerce(spec, value)
            if problem:
                field_errors.append(FieldError(spec.id, problem))
            else:
                clean[spec.id] = coerced

        if field_errors:
            logger.debug(
                "Input validation for '%s' found %d problem(s)", definition.id, len(field_errors)
            )
        return clean, field_errors
