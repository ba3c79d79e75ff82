"""
Configuration Loader (``revenue_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into an ``EngineConfig``.  Internal
tooling: runtime callers go through ``revenue_config.get_active_config()``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
from dataclasses import fields
from decimal import Decimal, InvalidOperation
from pathlib import Path
from typing import Any

import yaml

from revenue_config.schema import EngineConfig

_DECIMAL_FIELDS = ("rounding_tolerance", "retry_backoff_seconds")
_INT_FIELDS = ("currency_decimal_places", "max_conflict_retries", "pool_size", "version")


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_engine_config(data: dict[str, Any]) -> EngineConfig:
    """
    Build an ``EngineConfig`` from a parsed YAML mapping.

    Accepts either a flat mapping or one nested under an ``engine`` key.
    Decimal settings are read through ``str`` so YAML floats such as
    ``0.01`` become exact decimals.
    """
    section = data.get("engine", data)
    known = {f.name for f in fields(EngineConfig)}
    unknown = sorted(set(section) - known)
    if unknown:
        raise ValueError(f"Unknown configuration keys: {', '.join(unknown)}")

    kwargs: dict[str, Any] = {}
    for key, value in section.items():
        if key in _DECIMAL_FIELDS:
            try:
                kwargs[key] = Decimal(str(value))
            except InvalidOperation:
                raise ValueError(f"{key} must be a decimal number, got {value!r}") from None
        elif key in _INT_FIELDS:
            if isinstance(value, bool) or not isinstance(value, int):
                raise ValueError(f"{key} must be an integer, got {value!r}")
            kwargs[key] = value
        elif key == "echo_sql":
            kwargs[key] = bool(value)
        else:
            kwargs[key] = str(value)
    return EngineConfig(**kwargs)


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON form, for configuration identity."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
