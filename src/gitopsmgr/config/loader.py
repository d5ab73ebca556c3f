"""
Config loading: defaults file + optional local override -> settings and targets.

File layout (YAML or JSON):

    settings:
      workers: 4
      default_interval: 180
      fetch_timeout: 60          # null = unbounded
      backoff: {base_delay: 5, factor: 2, max_delay: 180}
      label_key: gitopsmgr.io/target
    targets:
      web:
        repo_url: https://git.example.com/apps.git
        revision: main
        path: apps/web
        destination: {cluster: prod, namespace: web}
        interval: 60
        policy:
          prune: true
          ignore: ["spec.replicas", {path: "metadata.annotations.*", kind: Deployment}]
          field_types: {spec.replicas: int}
          retry: {limit: 3, base_delay: 1}

Targets are a mapping keyed by name so a local override can change a single
target's revision without repeating the rest.
"""

from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Mapping, Optional

import yaml

from gitopsmgr.errors import InvalidArgumentError
from gitopsmgr.models import (
    Destination,
    IgnoreRule,
    RetryPolicy,
    SyncPolicy,
    Target,
)

from .errors import (
    ConfigNotFoundError,
    ConfigValidationError,
    InvalidConfigRootTypeError,
    UnsupportedConfigFormatError,
)
from .merge import deep_merge
from .settings import ManagerSettings

logger = logging.getLogger(__name__)

_SETTINGS_KEYS = frozenset(
    {
        "workers",
        "operation_workers",
        "default_interval",
        "fetch_timeout",
        "observe_timeout",
        "sync_timeout",
        "health_poll_interval",
        "label_key",
        "backoff",
    }
)
_TARGET_KEYS = frozenset({"repo_url", "revision", "path", "destination", "interval", "policy"})
_POLICY_KEYS = frozenset(
    {
        "automated",
        "prune",
        "prune_last",
        "continue_on_error",
        "prune_after_failure",
        "wait_for_health",
        "health_timeout",
        "self_heal",
        "retry",
        "ignore",
        "field_types",
    }
)
_RETRY_KEYS = frozenset({"limit", "base_delay", "factor", "max_delay"})
_IGNORE_KEYS = frozenset({"path", "kind", "name", "namespace"})


# ----------------------------
# Files
# ----------------------------
def load_file(path: Path) -> dict[str, Any]:
    """
    Read one YAML/JSON config file. An empty file is an empty mapping.

    Raises:
        ConfigNotFoundError, UnsupportedConfigFormatError,
        InvalidConfigRootTypeError
    """
    if not path.exists():
        raise ConfigNotFoundError(f"Config file not found: {path}", details={"path": str(path)})

    suffix = path.suffix.lower()
    if suffix in {".yaml", ".yml"}:
        with path.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    elif suffix == ".json":
        with path.open("r", encoding="utf-8") as f:
            data = json.load(f)
    else:
        raise UnsupportedConfigFormatError(
            f"Unsupported config format: {path.suffix}",
            details={"path": str(path)},
        )

    if data is None:
        data = {}
    if not isinstance(data, dict):
        raise InvalidConfigRootTypeError(
            f"Config root must be a mapping, got {type(data).__name__}",
            details={"path": str(path)},
        )
    return data


def load_config(*, defaults_path: str, local_path: Optional[str] = None) -> dict[str, Any]:
    """
    Resolve the effective config: defaults (required) deep-merged with the
    local override (optional; ignored when the file does not exist).
    """
    effective = load_file(Path(defaults_path))
    if local_path is not None:
        local_file = Path(local_path)
        if local_file.exists():
            effective = deep_merge(effective, load_file(local_file))
            logger.debug(f"Applied local config override {local_file}")
    return effective


# ----------------------------
# Sections
# ----------------------------
def load_settings(config: Mapping[str, Any]) -> ManagerSettings:
    raw = _section(config, "settings", _SETTINGS_KEYS)
    kwargs = dict(raw)
    if "backoff" in kwargs:
        backoff = _section(kwargs, "backoff", _RETRY_KEYS, where="settings.backoff")
        kwargs["backoff"] = _build(RetryPolicy, {"limit": 0, **backoff}, "settings.backoff")
    return _build(ManagerSettings, kwargs, "settings")


def load_targets(config: Mapping[str, Any]) -> list[Target]:
    """Build Target values (sorted by name) from the `targets` mapping."""
    raw_targets = config.get("targets") or {}
    if not isinstance(raw_targets, Mapping):
        raise ConfigValidationError("targets must be a mapping of name -> target")

    targets = []
    for name in sorted(raw_targets):
        targets.append(parse_target(str(name), raw_targets[name]))
    return targets


def parse_target(name: str, raw: Any) -> Target:
    where = f"targets.{name}"
    raw = _mapping(raw, where, _TARGET_KEYS)

    dest_raw = raw.get("destination")
    if isinstance(dest_raw, str):
        dest_raw = {"cluster": dest_raw}
    dest = _build(
        Destination,
        _mapping(dest_raw, f"{where}.destination", frozenset({"cluster", "namespace"})),
        f"{where}.destination",
    )

    return _build(
        Target,
        {
            "name": name,
            "repo_url": raw.get("repo_url"),
            "revision": str(raw.get("revision", "")),
            "path": raw.get("path") or "",
            "destination": dest,
            "policy": parse_policy(raw.get("policy") or {}, where=f"{where}.policy"),
            "interval": raw.get("interval"),
        },
        where,
    )


def parse_policy(raw: Any, *, where: str = "policy") -> SyncPolicy:
    raw = dict(_mapping(raw, where, _POLICY_KEYS))
    if "retry" in raw:
        retry = _mapping(raw["retry"], f"{where}.retry", _RETRY_KEYS)
        raw["retry"] = _build(RetryPolicy, retry, f"{where}.retry")
    raw["ignore_rules"] = parse_ignore_rules(raw.pop("ignore", None) or [], where=f"{where}.ignore")
    raw["field_types"] = dict(_mapping(raw.get("field_types") or {}, f"{where}.field_types"))
    return _build(SyncPolicy, raw, where)


def parse_ignore_rules(raw: Any, *, where: str = "ignore") -> tuple[IgnoreRule, ...]:
    """Accept plain path strings or {path, kind, name, namespace} mappings."""
    if not isinstance(raw, list):
        raise ConfigValidationError(f"{where} must be a list", details={"where": where})
    rules = []
    for i, item in enumerate(raw):
        if isinstance(item, str):
            item = {"path": item}
        rules.append(_build(IgnoreRule, _mapping(item, f"{where}[{i}]", _IGNORE_KEYS), f"{where}[{i}]"))
    return tuple(rules)


# ----------------------------
# Helpers
# ----------------------------
def _section(
    config: Mapping[str, Any],
    key: str,
    allowed: frozenset[str],
    *,
    where: Optional[str] = None,
) -> dict[str, Any]:
    return _mapping(config.get(key) or {}, where or key, allowed)


def _mapping(raw: Any, where: str, allowed: Optional[frozenset[str]] = None) -> dict[str, Any]:
    if not isinstance(raw, Mapping):
        raise ConfigValidationError(
            f"{where} must be a mapping, got {type(raw).__name__}",
            details={"where": where},
        )
    if allowed is not None:
        unknown = sorted(set(raw) - allowed)
        if unknown:
            raise ConfigValidationError(
                f"Unknown key(s) in {where}: {', '.join(map(str, unknown))}",
                details={"where": where, "unknown": unknown, "allowed": sorted(allowed)},
            )
    return dict(raw)


def _build(cls: Any, kwargs: dict[str, Any], where: str) -> Any:
    try:
        return cls(**kwargs)
    except (InvalidArgumentError, TypeError, ValueError) as e:
        raise ConfigValidationError(f"Invalid {where}: {e}", details={"where": where}, cause=e) from e
