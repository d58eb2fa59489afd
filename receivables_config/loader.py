"""
Configuration loader (``receivables_config.loader``).

Responsibility
--------------
Reads YAML configuration files and parses them into
``ReceivablesConfig``.  Runtime callers go through
``receivables_config.get_active_config()`` instead of calling this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid values  -> ``ValueError`` from the schema.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from receivables_config.schema import ReceivablesConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def load_config(path: Path) -> tuple[ReceivablesConfig, str]:
    """Parse ``path`` into a config and return it with its checksum."""
    data = load_yaml_file(path)
    return ReceivablesConfig.from_dict(data), compute_checksum(data)


def compute_checksum(data: dict[str, Any]) -> str:
    """
    SHA-256 of the canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
