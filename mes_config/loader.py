"""
Configuration Loader (``mes_config.loader``).

Responsibility
--------------
Loads a YAML configuration file and parses it into the frozen
``mes_config.schema`` dataclasses.  Runtime callers go through
``mes_config.get_active_config()``.

Invariants enforced
-------------------
* All parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; ``config_id`` and ``version`` have no defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 hash of the source
  mapping, so two files with the same content share a checksum.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown quality status or strategy  -> ``ValueError`` from the enum.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from mes_config.schema import (
    AllocationSettings,
    DatabaseSettings,
    MesConfig,
    WorkflowSettings,
)
from mes_kernel.domain.lot import AllocationStrategy, QualityStatus


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
    """
    with open(path) as f:
        return yaml.safe_load(f) or {}


def parse_allocation(data: dict[str, Any]) -> AllocationSettings:
    defaults = AllocationSettings()
    statuses = data.get("admitted_quality_statuses")
    return AllocationSettings(
        admitted_quality_statuses=(
            tuple(QualityStatus(s) for s in statuses)
            if statuses is not None
            else defaults.admitted_quality_statuses
        ),
        default_strategy=AllocationStrategy(
            data.get("default_strategy", defaults.default_strategy.value)
        ),
        expiry_warning_days=int(
            data.get("expiry_warning_days", defaults.expiry_warning_days)
        ),
    )


def parse_workflows(data: dict[str, Any]) -> WorkflowSettings:
    """Parse ``{workflow: {action: [ROLE, ...]}}``."""
    grants: dict[str, dict[str, frozenset[str]]] = {}
    for workflow, actions in data.items():
        if not isinstance(actions, dict):
            raise ValueError(
                f"Workflow {workflow!r}: expected a mapping of action -> roles"
            )
        grants[workflow] = {
            action: frozenset(roles or ()) for action, roles in actions.items()
        }
    return WorkflowSettings(role_grants=grants)


def parse_database(data: dict[str, Any]) -> DatabaseSettings:
    defaults = DatabaseSettings()
    return DatabaseSettings(
        url=data.get("url", defaults.url),
        echo=bool(data.get("echo", defaults.echo)),
        pool_size=int(data.get("pool_size", defaults.pool_size)),
        max_overflow=int(data.get("max_overflow", defaults.max_overflow)),
    )


def parse_config(data: dict[str, Any]) -> MesConfig:
    """
    Parse a complete ``MesConfig`` from a dict.

    Raises:
        KeyError: if ``config_id`` or ``version`` is missing.
        ValueError: on invalid enum values or settings.
    """
    return MesConfig(
        config_id=data["config_id"],
        version=int(data["version"]),
        allocation=parse_allocation(data.get("allocation") or {}),
        workflows=parse_workflows(data.get("workflows") or {}),
        database=parse_database(data.get("database") or {}),
        checksum=compute_checksum(data),
    )


def load_config(path: Path) -> MesConfig:
    """Load and parse a YAML configuration file."""
    return parse_config(load_yaml_file(Path(path)))


def compute_checksum(data: dict[str, Any]) -> str:
    """SHA-256 of the canonical JSON serialization of ``data``."""
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
