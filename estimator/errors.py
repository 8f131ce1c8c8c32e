"""
Error taxonomy for the estimation core.

Every error carries a ``kind``, a human-readable message and the identifier
of whatever it is about (field id, step id or calculator id), so callers can
render field-level feedback or log step-level failures without parsing
strings.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, List, Optional


class EstimatorError(Exception):
    """Base class for structured estimator errors."""

    kind = "estimator_error"

    def __init__(self, message: str, identifier: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.identifier = identifier

    def to_dict(self) -> Dict[str, Any]:
        return {"kind": self.kind, "message": self.message, "identifier": self.identifier}


class DefinitionError(EstimatorError):
    """A calculator definition is malformed and was not registered."""

    kind = "definition_error"

    def __init__(self, calculator_id: Optional[str], errors: List[str]):
        label = calculator_id or "<unnamed>"
        super().__init__(
            f"Invalid calculator definition '{label}': " + "; ".join(errors),
            identifier=calculator_id,
        )
        self.errors = list(errors)

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = list(self.errors)
        return payload


@dataclass(frozen=True)
class FieldError:
    field_id: str
    message: str

    def to_dict(self) -> Dict[str, str]:
        return {"field": self.field_id, "message": self.message}


class ValidationError(EstimatorError):
    """One or more runtime inputs failed validation; nothing was computed."""

    kind = "validation_error"

    def __init__(self, calculator_id: str, field_errors: List[FieldError]):
        self.field_errors = list(field_errors)
        super().__init__(
            f"Input validation failed for '{calculator_id}': " + ", ".join(self.errors),
            identifier=calculator_id,
        )

    @property
    def errors(self) -> List[str]:
        return [fe.message for fe in self.field_errors]

    def to_dict(self) -> Dict[str, Any]:
        payload = super().to_dict()
        payload["errors"] = self.errors
        payload["fields"] = [fe.to_dict() for fe in self.field_errors]
        return payload


class EvaluationError(EstimatorError):
    """A calculation step could not produce a finite value."""

    kind = "evaluation_error"

    def __init__(self, step_id: str, message: str):
        super().__init__(f"Step '{step_id}' failed: {message}", identifier=step_id)
        self.step_id = step_id
        self.reason = message


class NotFoundError(EstimatorError):
    kind = "not_found"

    def __init__(self, calculator_id: str):
        super().__init__(f"Calculator not found: {calculator_id}", identifier=calculator_id)


class ExpressionError(ValueError):
    """Raised by the expression interpreter for syntax errors and unknown names."""

    def __init__(self, message: str, expression: str = "", position: Optional[int] = None):
        where = f" at position {position}" if position is not None else ""
        super().__init__(f"{message}{where} in expression {expression!r}")
        self.reason = message
        self.expression = expression
        self.position = position
