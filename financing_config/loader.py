"""
Configuration Loader (``financing_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into a ``FinancingConfig``.  The file may
hold the settings at the top level or under a ``financing:`` key.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or out-of-range values  -> ``ValueError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from financing_config.schema import FinancingConfig


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_config(data: dict[str, Any]) -> FinancingConfig:
    """Build a FinancingConfig from a parsed YAML document."""
    section = data.get("financing", data)
    if not isinstance(section, dict):
        raise ValueError("financing section must be a mapping")
    return FinancingConfig.from_dict(section)


def load_config(path: Path | str) -> FinancingConfig:
    """Load and validate a FinancingConfig from a YAML file."""
    return parse_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
