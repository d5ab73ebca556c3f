"""Deterministic deep-merge of configuration mappings."""

from __future__ import annotations

from copy import deepcopy
from typing import Any

from .errors import ConfigTypeConflictError


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """
    Merge override into base and return a new dict (inputs are not mutated).

    Policy:
        - dict + dict -> recursive merge by key
        - list -> replaced as a whole
        - scalar -> replaced by the override
        - None in the override -> replaces any base value (clears a timeout)
        - any other type mismatch -> ConfigTypeConflictError

    int and float are interchangeable (`interval: 60` overrides `180.5`).
    """
    if not isinstance(base, dict) or not isinstance(override, dict):
        raise ConfigTypeConflictError(
            "deep_merge requires mappings at the root",
            details={"base": type(base).__name__, "override": type(override).__name__},
        )

    result: dict[str, Any] = deepcopy(base)

    for key, override_value in override.items():
        if key not in result or result[key] is None or override_value is None:
            result[key] = deepcopy(override_value)
            continue

        base_value = result[key]

        if isinstance(base_value, dict) and isinstance(override_value, dict):
            result[key] = deep_merge(base_value, override_value)
            continue

        if isinstance(override_value, list):
            result[key] = deepcopy(override_value)
            continue

        if not _compatible(base_value, override_value):
            raise ConfigTypeConflictError(
                f"Type conflict for key {key!r}",
                details={
                    "key": key,
                    "base": type(base_value).__name__,
                    "override": type(override_value).__name__,
                },
            )

        result[key] = deepcopy(override_value)

    return result


def _compatible(a: Any, b: Any) -> bool:
    if type(a) is type(b):
        return True
    numeric = (int, float)
    if isinstance(a, bool) or isinstance(b, bool):
        return False
    return isinstance(a, numeric) and isinstance(b, numeric)
