"""Input checks shared by the service operations."""

from __future__ import annotations

from typing import Any, Optional

from .errors import ValidationError


def require_text(field: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(field, "must be a non-empty string")
    return value.strip()


def require_int(field: str, value: Any) -> int:
    # bool is an int subclass but never a meaningful priority or capacity
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field, "must be an integer")
    return value


def require_positive_int(field: str, value: Any) -> int:
    value = require_int(field, value)
    if value <= 0:
        raise ValidationError(field, "must be a positive integer")
    return value


def optional_hours(field: str, value: Any) -> Optional[float]:
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValidationError(field, "must be a number")
    if value < 0:
        raise ValidationError(field, "must not be negative")
    return float(value)


def optional_text(field: str, value: Any) -> Optional[str]:
    if value is None:
        return None
    return require_text(field, value)


__all__ = [
    "require_text",
    "require_int",
    "require_positive_int",
    "optional_hours",
    "optional_text",
]
