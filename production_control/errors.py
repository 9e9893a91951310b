"""Error taxonomy shared by every production control component.

Each error carries a machine readable ``kind`` so calling layers can pick a
distinct path (for example a saturation warning instead of a generic error)
without inspecting the message text.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Dict, List, Mapping, Optional


class ErrorKind(str, Enum):
    """Discriminator for the error families raised by the core."""

    VALIDATION = "validation"
    PRECONDITION = "precondition"
    CAPACITY_EXHAUSTED = "capacity_exhausted"
    NOT_FOUND = "not_found"
    PERSISTENCE = "persistence"


class ProductionError(Exception):
    """Base class for all errors raised by the production control core."""

    kind: ErrorKind = ErrorKind.PRECONDITION

    def __init__(self, message: str, details: Optional[Mapping[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details: Dict[str, Any] = dict(details or {})

    def to_dict(self) -> Dict[str, Any]:
        """Render the error for API responses."""
        return {
            "success": False,
            "kind": self.kind.value,
            "error": self.message,
            "details": self.details,
        }


class ValidationError(ProductionError):
    """Malformed or missing input."""

    kind = ErrorKind.VALIDATION

    def __init__(self, field: str, message: str) -> None:
        super().__init__(f"Invalid value for {field!r}: {message}", {"field": field})
        self.field = field


class PreconditionError(ProductionError):
    """The requested transition is not allowed in the current state."""

    kind = ErrorKind.PRECONDITION


class NotFoundError(ProductionError):
    """A referenced order, line, step or alert does not exist."""

    kind = ErrorKind.NOT_FOUND


class PersistenceError(ProductionError):
    """The underlying store failed to read or write."""

    kind = ErrorKind.PERSISTENCE


class CapacityExhausted(ProductionError):
    """No active line has free capacity for a new assignment.

    Requires a human decision (add capacity, wait, escalate) and is never
    retried by the core. ``snapshot`` holds the occupancy of every active
    line at the time of the decision.
    """

    kind = ErrorKind.CAPACITY_EXHAUSTED

    def __init__(self, message: str, snapshot: Optional[List[Any]] = None) -> None:
        self.snapshot = list(snapshot or [])
        super().__init__(message, {"lines": len(self.snapshot)})

    def to_dict(self) -> Dict[str, Any]:
        return {
            "success": False,
            "bottleneck": True,
            "kind": self.kind.value,
            "error": self.message,
            "lines": [line.to_dict() for line in self.snapshot],
        }


__all__ = [
    "ErrorKind",
    "ProductionError",
    "ValidationError",
    "PreconditionError",
    "NotFoundError",
    "PersistenceError",
    "CapacityExhausted",
]
