"""
Structural equality used for drift classification.

Default semantics (no declared type for the path):
    - str, bool, None compare by type and value ("1" != 1, True != 1).
    - int and float are both JSON numbers and compare numerically (1 == 1.0).
    - mappings compare recursively key by key, lists element by element.

A declared field type coerces both sides before comparing:
    - "int":    int("3") == 3; non-integral values never match.
    - "number": float coercion.
    - "string": str() of both sides.
    - "bool":   "true"/"false" strings (any case) and bools.
"""

from __future__ import annotations

from typing import Any, Optional


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


def scalar_equal(desired: Any, live: Any) -> bool:
    if _is_number(desired) and _is_number(live):
        return desired == live
    if type(desired) is not type(live):
        return False
    return desired == live


def _coerce(value: Any, field_type: str) -> Any:
    if field_type == "string":
        if isinstance(value, bool):
            return "true" if value else "false"
        return str(value) if value is not None else None
    if field_type == "int":
        if isinstance(value, bool):
            raise ValueError("bool is not an int")
        if isinstance(value, float):
            if not value.is_integer():
                raise ValueError("non-integral float")
            return int(value)
        return int(value)
    if field_type == "number":
        if isinstance(value, bool):
            raise ValueError("bool is not a number")
        return float(value)
    if field_type == "bool":
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.lower() in ("true", "false"):
            return value.lower() == "true"
        raise ValueError("not a bool")
    raise ValueError(f"unknown field type: {field_type}")


def typed_equal(desired: Any, live: Any, field_type: Optional[str]) -> bool:
    """Compare two scalars under an optional declared field type."""
    if field_type is None:
        return scalar_equal(desired, live)
    try:
        return _coerce(desired, field_type) == _coerce(live, field_type)
    except (TypeError, ValueError):
        return False
