"""Configuration errors (loading, merging, validation)."""

from __future__ import annotations

from gitopsmgr.errors import GitOpsMgrError


class ConfigError(GitOpsMgrError):
    """Base for configuration failures. Always fatal: nothing is loaded."""

    kind = "ConfigError"


class ConfigNotFoundError(ConfigError):
    """Raised when the (mandatory) defaults file does not exist."""

    kind = "ConfigNotFound"


class UnsupportedConfigFormatError(ConfigError):
    """Raised for file extensions other than .yaml/.yml/.json."""

    kind = "UnsupportedConfigFormat"


class InvalidConfigRootTypeError(ConfigError):
    """Raised when a config file's root is not a mapping."""

    kind = "InvalidConfigRootType"


class ConfigTypeConflictError(ConfigError):
    """
    Raised when deep-merge meets incompatible types for the same key.

    Example:
        base:     {"settings": {"workers": 4}}
        override: {"settings": "fast"}
    """

    kind = "ConfigTypeConflict"


class ConfigValidationError(ConfigError):
    """Raised when a section has unknown keys or values the models reject."""

    kind = "ConfigValidation"
