"""Calculator Definition Registry"""

import json
import threading

import pytest

from estimator.errors import DefinitionError, NotFoundError
from estimator.registry import CalculatorRegistry, load_definitions_file
from estimator.validation import ValidationManager


def named(definition, calculator_id, category=None):
    definition = dict(definition, id=calculator_id)
    if category:
        definition["category"] = category
    return definition


def test_register_and_get(simple_definition):
    registry = CalculatorRegistry()
    definition = registry.register(simple_definition)
    assert registry.get("simple-box") is definition
    assert "simple-box" in registry
    assert len(registry) == 1
    assert registry.ids() == ["simple-box"]


def test_unknown_id_raises_not_found():
    with pytest.raises(NotFoundError) as exc:
        CalculatorRegistry().get("nope")
    assert exc.value.identifier == "nope"
    assert exc.value.to_dict()["kind"] == "not_found"


def test_duplicate_id_rejected_unless_replacing(simple_definition):
    registry = CalculatorRegistry()
    first = registry.register(simple_definition)
    with pytest.raises(DefinitionError, match="already registered"):
        registry.register(simple_definition)
    assert registry.get("simple-box") is first

    simple_definition["name"] = "Simple Box v2"
    registry.register(simple_definition, replace=True)
    assert registry.get("simple-box").name == "Simple Box v2"


def test_invalid_definition_is_not_registered(simple_definition):
    registry = CalculatorRegistry()
    del simple_definition["inputFields"]
    with pytest.raises(DefinitionError) as exc:
        registry.register(simple_definition)
    assert exc.value.errors == ["Missing required field: inputFields"]
    assert "simple-box" not in registry


def test_register_built_definition(simple_definition):
    definition = ValidationManager().build_definition(simple_definition)
    registry = CalculatorRegistry()
    assert registry.register(definition) is definition


def test_partial_load_keeps_valid_definitions(simple_definition):
    bad = named(simple_definition, "bad")
    del bad["name"]
    registry = CalculatorRegistry()
    report = registry.load([simple_definition, bad, named(simple_definition, "other"), "garbage"])

    assert report.registered == ["simple-box", "other"]
    assert set(report.rejected) == {"bad", "#3"}
    assert report.rejected["bad"] == ["Missing required field: name"]
    assert not report.ok
    assert registry.ids() == ["other", "simple-box"]


def test_bundled_definitions_load_cleanly(bundled_definitions):
    registry = CalculatorRegistry()
    report = registry.load(bundled_definitions)
    assert report.ok
    assert len(registry) == 4
    assert registry.categories() == ["concrete", "finishes", "framing"]
    assert [d.id for d in registry.list_by_category("Finishes")] == ["drywall", "interior-paint"]


def test_replace_all_swaps_atomically(simple_definition):
    registry = CalculatorRegistry()
    registry.load([simple_definition, named(simple_definition, "old")])
    before = registry.snapshot()

    report = registry.replace_all([named(simple_definition, "new"), named(simple_definition, "new")])

    assert report.registered == ["new"]
    assert "more than once" in report.rejected["new"][0]
    assert registry.ids() == ["new"]
    # readers holding the previous map are unaffected
    assert sorted(before) == ["old", "simple-box"]


def test_snapshot_is_read_only(simple_definition):
    registry = CalculatorRegistry()
    registry.register(simple_definition)
    with pytest.raises(TypeError):
        registry.snapshot()["x"] = None


def test_unregister(simple_definition):
    registry = CalculatorRegistry()
    registry.register(simple_definition)
    registry.unregister("simple-box")
    assert len(registry) == 0
    with pytest.raises(NotFoundError):
        registry.unregister("simple-box")


def test_concurrent_registration(simple_definition):
    registry = CalculatorRegistry()
    threads = [
        threading.Thread(target=registry.register, args=(named(simple_definition, f"calc-{i}"),))
        for i in range(20)
    ]
    for t in threads:
        t.start()
    for t in threads:
        t.join()
    assert len(registry) == 20


class TestDefinitionsFile:
    def test_array_document(self, tmp_path, simple_definition):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps([simple_definition]))
        assert load_definitions_file(path) == [simple_definition]

    def test_object_document(self, tmp_path, simple_definition):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps({"calculators": [simple_definition]}))
        assert load_definitions_file(path)[0]["id"] == "simple-box"

    def test_other_documents_rejected(self, tmp_path):
        path = tmp_path / "defs.json"
        path.write_text(json.dumps({"id": "lonely"}))
        with pytest.raises(ValueError, match="calculators"):
            load_definitions_file(path)
