"""
Configuration Loader (``fabshop_config.loader``).

Responsibility
--------------
Loads YAML files and parses them into the frozen ``fabshop_config.schema``
dataclasses.  Runtime callers go through ``fabshop_config.get_active_config``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section key or bad value  -> ``ValueError`` naming the key.
"""

from __future__ import annotations

import copy
import hashlib
import json
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from fabshop_config.schema import (
    BudgetsConfig,
    DatabaseConfig,
    LoggingConfig,
    NumberingConfig,
    OrdersConfig,
    ReportingConfig,
    ShopConfig,
)

_SECTIONS = {
    "numbering": NumberingConfig,
    "orders": OrdersConfig,
    "budgets": BudgetsConfig,
    "reporting": ReportingConfig,
    "database": DatabaseConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Return ``base`` with ``override`` merged in; nested dicts merge by key."""
    merged = copy.deepcopy(base)
    for key, value in override.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = deep_merge(merged[key], value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 over the canonical JSON form of a raw config dict."""
    canonical = json.dumps(data, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode("utf-8")).hexdigest()


def _parse_section(name: str, cls: type, data: Any):
    if data is None:
        return cls()
    if not isinstance(data, dict):
        raise ValueError(f"{name} must be a mapping, got {type(data).__name__}")
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"unknown key(s) in {name}: {sorted(unknown)}")
    values = {
        key: tuple(val) if isinstance(val, list) else val
        for key, val in data.items()
    }
    return cls(**values)


def parse_config(data: dict[str, Any]) -> ShopConfig:
    """Build a ``ShopConfig`` from a raw dict."""
    unknown = set(data) - set(_SECTIONS) - {"config_id", "version"}
    if unknown:
        raise ValueError(f"unknown top-level key(s): {sorted(unknown)}")
    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return ShopConfig(
        config_id=str(data.get("config_id", "fabshop-default")),
        version=int(data.get("version", 1)),
        checksum=compute_checksum(data),
        **sections,
    )
