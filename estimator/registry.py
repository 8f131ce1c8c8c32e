"""
Calculator Definition Registry

Holds validated CalculatorDefinitions keyed by id. Writes are copy-on-write:
each registration builds a new map and swaps it in under a lock, so a reader
holding the previous map never sees a half-updated definition set.
"""

from __future__ import annotations

import json
import logging
import threading
from dataclasses import dataclass, field
from pathlib import Path
from types import MappingProxyType
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional

from .definitions import CalculatorDefinition, DefinitionSource
from .errors import DefinitionError, NotFoundError
from .validation import ValidationManager


logger = logging.getLogger(__name__)


@dataclass
class LoadReport:
    """Outcome of a bulk load: which definitions went in, which were rejected and why."""
    registered: List[str] = field(default_factory=list)
    rejected: Dict[str, List[str]] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.rejected

    def to_dict(self) -> Dict[str, Any]:
        return {"registered": list(self.registered), "rejected": dict(self.rejected)}


def _entry_key(entry: Any, index: int) -> str:
    if isinstance(entry, CalculatorDefinition) and entry.id:
        return entry.id
    if isinstance(entry, Mapping) and isinstance(entry.get("id"), str) and entry["id"]:
        return entry["id"]
    return f"#{index}"


class CalculatorRegistry:
    """
    Registry of calculator definitions

    Example:
        registry = CalculatorRegistry()
        report = registry.load(load_definitions_file(path))
        definition = registry.get("concrete-slab")
    """

    def __init__(self, validator: Optional[ValidationManager] = None):
        self.validator = validator or ValidationManager()
        self._lock = threading.Lock()
        self._definitions: Mapping[str, CalculatorDefinition] = MappingProxyType({})

    def _build(self, source: DefinitionSource) -> CalculatorDefinition:
        if isinstance(source, CalculatorDefinition):
            self.validator.check_definition(source)
            return source
        if not isinstance(source, Mapping):
            raise DefinitionError(None, [f"Definition must be an object, got {type(source).__name__}"])
        return self.validator.build_definition(source)

    def register(self, source: DefinitionSource, *, replace: bool = False) -> CalculatorDefinition:
        """
        Validate and register one definition.

        Raises:
            DefinitionError: if the definition is invalid, or its id is taken
                and replace is False. Nothing is registered in that case.
        """
        definition = self._build(source)
        with self._lock:
            if definition.id in self._definitions and not replace:
                raise DefinitionError(definition.id, [f"Calculator '{definition.id}' is already registered"])
            updated = dict(self._definitions)
            updated[definition.id] = definition
            self._definitions = MappingProxyType(updated)
        logger.debug("Registered calculator: %s", definition.id)
        return definition

    def load(self, entries: Iterable[DefinitionSource]) -> LoadReport:
        """
        Register many definitions. Bad entries are rejected individually and
        logged; the valid ones are still registered.
        """
        report = LoadReport()
        for index, entry in enumerate(entries):
            key = _entry_key(entry, index)
            try:
                definition = self.register(entry)
            except DefinitionError as exc:
                report.rejected[key] = exc.errors
                logger.warning("Rejected calculator definition %s: %s", key, "; ".join(exc.errors))
                continue
            report.registered.append(definition.id)
        return report

    def replace_all(self, entries: Iterable[DefinitionSource]) -> LoadReport:
        """
        Build a complete new definition set and swap it in one step (hot reload).

        Rejected entries are left out of the new set; definitions that are not
        in ``entries`` are dropped.
        """
        report = LoadReport()
        fresh: Dict[str, CalculatorDefinition] = {}
        for index, entry in enumerate(entries):
            key = _entry_key(entry, index)
            try:
                definition = self._build(entry)
                if definition.id in fresh:
                    raise DefinitionError(definition.id, [f"Calculator '{definition.id}' is defined more than once"])
            except DefinitionError as exc:
                report.rejected[key] = exc.errors
                logger.warning("Rejected calculator definition %s: %s", key, "; ".join(exc.errors))
                continue
            fresh[definition.id] = definition
            report.registered.append(definition.id)

        with self._lock:
            self._definitions = MappingProxyType(fresh)
        logger.info("Reloaded %d calculator definition(s)", len(fresh))
        return report

    def unregister(self, calculator_id: str) -> None:
        with self._lock:
            if calculator_id not in self._definitions:
                raise NotFoundError(calculator_id)
            updated = dict(self._definitions)
            del updated[calculator_id]
            self._definitions = MappingProxyType(updated)

    def get(self, calculator_id: str) -> CalculatorDefinition:
        definition = self._definitions.get(calculator_id)
        if definition is None:
            raise NotFoundError(calculator_id)
        return definition

    def snapshot(self) -> Mapping[str, CalculatorDefinition]:
        """The current read-only definition map."""
        return self._definitions

    def ids(self) -> List[str]:
        return sorted(self._definitions)

    def list_by_category(self, category: Optional[str] = None) -> List[CalculatorDefinition]:
        defs = list(self._definitions.values())
        if category:
            defs = [d for d in defs if d.category.lower() == category.lower()]
        return sorted(defs, key=lambda d: d.id)

    def categories(self) -> List[str]:
        return sorted({d.category for d in self._definitions.values()})

    def __contains__(self, calculator_id: object) -> bool:
        return calculator_id in self._definitions

    def __iter__(self) -> Iterator[str]:
        return iter(self.ids())

    def __len__(self) -> int:
        return len(self._definitions)

    def __repr__(self) -> str:
        return f"CalculatorRegistry({len(self._definitions)} calculators registered)"


def load_definitions_file(path: Path) -> List[Any]:
    """
    Read a definitions document: either a JSON array of definitions or an
    object with a ``calculators`` array.
    """
    with open(path, "r", encoding="utf-8") as fp:
        doc = json.load(fp)
    if isinstance(doc, list):
        return doc
    if isinstance(doc, dict) and isinstance(doc.get("calculators"), list):
        return doc["calculators"]
    raise ValueError(f"{path} must contain a JSON array or an object with a 'calculators' array")
