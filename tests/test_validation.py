"""
Validation Manager tests

1. Definition validation at registration (schema + semantic checks)
2. Runtime input validation: every bad field reported, nothing short-circuits
"""

import pytest

from estimator.definitions import CalculatorDefinition, ConditionalStep, LineItemStep, LookupStep
from estimator.errors import DefinitionError
from estimator.validation import ValidationManager


@pytest.fixture
def validator():
    return ValidationManager()


@pytest.fixture
def slab(validator, bundled_definitions):
    raw = next(d for d in bundled_definitions if d["id"] == "concrete-slab")
    return validator.build_definition(raw)


def definition_errors(validator, raw):
    with pytest.raises(DefinitionError) as exc:
        validator.build_definition(raw)
    return exc.value.errors


class TestDefinitionValidation:
    def test_valid_definition_builds(self, validator, simple_definition):
        definition = validator.build_definition(simple_definition)
        assert isinstance(definition, CalculatorDefinition)
        assert definition.id == "simple-box"
        assert definition.aace_class == "Class-5"
        assert definition.uncertainty_factor == 0.25
        assert definition.contingency_rate == 0.15
        step = definition.calculation_steps[0]
        assert isinstance(step, LineItemStep)
        assert step.base_rate == 100.0
        assert step.price_path is None

    def test_bundled_definitions_are_valid(self, validator, bundled_definitions):
        ids = [validator.build_definition(raw).id for raw in bundled_definitions]
        assert ids == ["concrete-slab", "wall-framing", "interior-paint", "drywall"]

    def test_bundled_step_shapes(self, slab):
        pump = slab.calculation_steps[-1]
        assert isinstance(pump, ConditionalStep)
        assert pump.then.price_path == "equipment.concrete_pump_flat"
        assert slab.get_field("rebar_grid_in").options == (12, 18, 24)

    def test_missing_top_level_fields_all_reported(self, validator, simple_definition):
        del simple_definition["name"]
        del simple_definition["category"]
        errors = definition_errors(validator, simple_definition)
        assert "Missing required field: name" in errors
        assert "Missing required field: category" in errors

    def test_empty_steps_rejected(self, validator, simple_definition):
        simple_definition["calculationSteps"] = []
        errors = definition_errors(validator, simple_definition)
        assert "Field calculationSteps must not be empty" in errors

    def test_line_item_needs_exactly_one_rate_source(self, validator, simple_definition):
        simple_definition["calculationSteps"][0]["rateExpr"] = "qty * 2"
        errors = definition_errors(validator, simple_definition)
        assert any("exactly one of baseRate or rateExpr" in e for e in errors)

    def test_unknown_step_type(self, validator, simple_definition):
        simple_definition["calculationSteps"].append({"id": "x", "type": "macro"})
        errors = definition_errors(validator, simple_definition)
        assert errors

    def test_forward_reference_rejected(self, validator, simple_definition):
        simple_definition["calculationSteps"] = [
            {"id": "a", "type": "formula", "expression": "b + 1"},
            {"id": "b", "type": "formula", "expression": "qty * 2"},
            simple_definition["calculationSteps"][0],
        ]
        errors = definition_errors(validator, simple_definition)
        assert len(errors) == 1
        assert "references 'b'" in errors[0]

    def test_unknown_function_rejected(self, validator, simple_definition):
        simple_definition["calculationSteps"][0]["quantityExpr"] = "sqrt(qty)"
        errors = definition_errors(validator, simple_definition)
        assert errors[0].startswith("Invalid expression")

    def test_duplicate_ids(self, validator, simple_definition):
        simple_definition["inputFields"].append(dict(simple_definition["inputFields"][0]))
        simple_definition["calculationSteps"].append(dict(simple_definition["calculationSteps"][0]))
        errors = definition_errors(validator, simple_definition)
        assert "Input 'qty' is declared more than once" in errors
        assert "Step 'item' is declared more than once" in errors

    def test_field_spec_problems(self, validator, simple_definition):
        simple_definition["inputFields"] += [
            {"id": "span", "type": "number", "min": 10, "max": 1},
            {"id": "grade", "type": "select"},
            {"id": "region_labor", "type": "number"},
            {"id": "grid", "type": "select", "options": [12, 16], "default": 14},
        ]
        errors = definition_errors(validator, simple_definition)
        assert "Input 'span': min 10 is greater than max 1" in errors
        assert "Input 'grade': select fields need options" in errors
        assert "Input 'region_labor' uses a reserved name" in errors
        assert any(e.startswith("Input 'grid': invalid default") for e in errors)

    def test_output_may_not_shadow_input(self, validator, simple_definition):
        simple_definition["calculationSteps"].insert(0, {"id": "qty", "type": "formula", "expression": "1"})
        errors = definition_errors(validator, simple_definition)
        assert "Step 'qty' output 'qty' shadows an input field" in errors

    def test_duplicate_output_rejected(self, validator, simple_definition):
        simple_definition["calculationSteps"][0:0] = [
            {"id": "first", "type": "formula", "output": "area", "expression": "qty * 2"},
            {"id": "second", "type": "formula", "output": "area", "expression": "qty * 3"},
        ]
        errors = definition_errors(validator, simple_definition)
        assert errors == ["Step 'second' output 'area' is already defined by an earlier step"]

    def test_nested_conditional_output_cannot_be_redefined(self, validator, simple_definition):
        simple_definition["calculationSteps"][0:0] = [
            {
                "id": "bulk_check", "type": "conditional", "when": "qty > 10",
                "then": {"id": "discount", "type": "formula", "expression": "0.9"},
            },
            {"id": "discount_again", "type": "formula", "output": "discount", "expression": "1"},
        ]
        errors = definition_errors(validator, simple_definition)
        assert "Step 'discount_again' output 'discount' is already defined by an earlier step" in errors

    def test_lookup_and_conditional_parse(self, validator, simple_definition):
        simple_definition["calculationSteps"] = [
            {"id": "size_rate", "type": "lookup", "key": "qty", "table": {"1": 10, "2": 20}, "default": 5},
            {
                "id": "maybe",
                "type": "conditional",
                "when": "qty > 1",
                "then": {"id": "extra", "type": "lineItem", "quantityExpr": "qty", "rateExpr": "size_rate"},
            },
        ]
        definition = validator.build_definition(simple_definition)
        lookup, conditional = definition.calculation_steps
        assert isinstance(lookup, LookupStep)
        assert lookup.as_table() == {"1": 10, "2": 20}
        assert lookup.has_default and lookup.default == 5
        assert conditional.outputs() == frozenset()
        assert conditional.reads() == {"qty", "size_rate"}

    def test_non_mapping_document(self, validator):
        with pytest.raises(DefinitionError):
            validator.build_definition(["not", "a", "definition"])


class TestInputValidation:
    def test_every_bad_field_reported(self, validator, slab):
        clean, errors = validator.validate_inputs(slab, {"length_ft": -5, "width_ft": "abc"})
        assert len(errors) == 3
        by_field = {e.field_id: e.message for e in errors}
        assert by_field == {
            "length_ft": "Length must be at least 1",
            "width_ft": "Width must be a number",
            "thickness_in": "Thickness is required",
        }

    def test_one_error_per_field(self, validator, slab):
        _, errors = validator.validate_inputs(slab, {
            "length_ft": 20, "width_ft": 10, "thickness_in": 4, "waste_percent": 80,
        })
        assert [e.field_id for e in errors] == ["waste_percent"]
        assert errors[0].message == "Waste must be no more than 50"

    def test_defaults_and_coercion(self, validator, slab):
        clean, errors = validator.validate_inputs(slab, {
            "length_ft": "1,250", "width_ft": 10, "thickness_in": " 6 ", "rebar_grid_in": "18",
            "use_pump": "yes", "notes": "north lot",
        })
        assert errors == []
        assert clean["length_ft"] == 1250.0
        assert clean["thickness_in"] == 6.0
        assert clean["rebar_grid_in"] == 18
        assert clean["use_pump"] is True
        assert clean["waste_percent"] == 5.0
        assert clean["region"] == "national"
        assert "notes" not in clean

    def test_blank_required_value_is_missing(self, validator, slab):
        _, errors = validator.validate_inputs(slab, {"length_ft": "", "width_ft": 10, "thickness_in": 4})
        assert [e.message for e in errors] == ["Length is required"]

    def test_select_and_boolean_problems(self, validator, slab):
        _, errors = validator.validate_inputs(slab, {
            "length_ft": 20, "width_ft": 10, "thickness_in": 4,
            "rebar_grid_in": 20, "use_pump": "maybe", "region": 7,
        })
        messages = {e.field_id: e.message for e in errors}
        assert messages["rebar_grid_in"] == "Rebar grid must be one of: 12, 18, 24"
        assert messages["use_pump"] == "Concrete pump must be true or false"
        assert messages["region"] == "Region must be text"

    def test_booleans_are_not_numbers(self, validator, slab):
        _, errors = validator.validate_inputs(slab, {"length_ft": True, "width_ft": 10, "thickness_in": 4})
        assert [e.field_id for e in errors] == ["length_ft"]
