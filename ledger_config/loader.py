"""
Configuration loader (``ledger_config.loader``).

Responsibility
--------------
Reads a YAML settings file, applies environment overrides and builds a
``LedgerSettings``.

Precedence (highest first)
--------------------------
1. ``LEDGER_DATABASE_URL`` environment variable (database_url only)
2. the YAML file named by the ``path`` argument, else ``LEDGER_CONFIG``
3. ``LedgerSettings`` defaults

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown keys or invalid values  -> ``ValueError``.
"""

from __future__ import annotations

import hashlib
import json
import os
from collections.abc import Mapping
from dataclasses import asdict, fields
from pathlib import Path
from typing import Any

import yaml

from ledger_config.schema import LedgerSettings

CONFIG_ENV_VAR = "LEDGER_CONFIG"
DATABASE_URL_ENV_VAR = "LEDGER_DATABASE_URL"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the document is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level, got {type(data).__name__}")
    return data


def parse_settings(data: Mapping[str, Any]) -> LedgerSettings:
    """
    Build settings from a mapping.  A nested ``ledger:`` section is accepted
    so the settings can share a file with other tools.
    """
    if "ledger" in data and isinstance(data["ledger"], Mapping):
        data = data["ledger"]
    known = {f.name for f in fields(LedgerSettings)}
    unknown = sorted(set(data) - known)
    if unknown:
        raise ValueError(f"unknown settings: {', '.join(unknown)}")
    return LedgerSettings(**dict(data))


def load_settings(
    path: Path | str | None = None,
    environ: Mapping[str, str] | None = None,
) -> LedgerSettings:
    """Load settings from YAML (optional) plus environment overrides."""
    environ = os.environ if environ is None else environ
    if path is None and environ.get(CONFIG_ENV_VAR):
        path = environ[CONFIG_ENV_VAR]

    data: dict[str, Any] = {}
    if path is not None:
        raw = load_yaml_file(Path(path))
        data = dict(raw["ledger"]) if isinstance(raw.get("ledger"), Mapping) else raw

    if environ.get(DATABASE_URL_ENV_VAR):
        data["database_url"] = environ[DATABASE_URL_ENV_VAR]
    return parse_settings(data)


def compute_checksum(settings: LedgerSettings) -> str:
    """SHA-256 of the canonical JSON form; identical settings hash identically."""
    canonical = json.dumps(asdict(settings), sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
