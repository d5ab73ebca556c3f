"""Configuration: settings model, YAML/JSON loading and deep-merge."""

from __future__ import annotations

from .errors import (
    ConfigError,
    ConfigNotFoundError,
    ConfigTypeConflictError,
    ConfigValidationError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .loader import (
    load_config,
    load_file,
    load_settings,
    load_targets,
    parse_ignore_rules,
    parse_policy,
    parse_target,
)
from .merge import deep_merge
from .settings import ManagerSettings

__all__ = [
    "ManagerSettings",
    "ConfigError",
    "ConfigNotFoundError",
    "ConfigTypeConflictError",
    "ConfigValidationError",
    "InvalidConfigRootTypeError",
    "UnsupportedConfigFormatError",
    "deep_merge",
    "load_config",
    "load_file",
    "load_settings",
    "load_targets",
    "parse_ignore_rules",
    "parse_policy",
    "parse_target",
]
