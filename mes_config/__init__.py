"""
mes_config -- single public entrypoint for MES configuration.

Responsibility:
    ``get_active_config()`` returns the process-wide ``MesConfig``.  The
    YAML source is the file named by ``MES_CONFIG_PATH`` or, when unset,
    the packaged ``defaults.yaml``.  The result is cached until
    ``reset_active_config()``.

Architecture position:
    Configuration -- sits above ``mes_kernel`` and below ``mes_services``.
    The kernel MUST NEVER import from ``mes_config``.

Failure modes:
    - ``FileNotFoundError`` -- MES_CONFIG_PATH points at a missing file.
    - ``ValueError`` / ``KeyError`` -- invalid configuration content.

Audit relevance:
    Every load emits a ``MES_CONFIG_TRACE`` log entry with the config_id,
    version, source path and checksum.
"""

from __future__ import annotations

import logging
import os
import threading
from pathlib import Path

from mes_config.loader import load_config, parse_config
from mes_config.schema import (
    AllocationSettings,
    DatabaseSettings,
    MesConfig,
    WorkflowSettings,
)

_logger = logging.getLogger("mes_kernel.config")

CONFIG_PATH_ENV = "MES_CONFIG_PATH"
DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"

_active: MesConfig | None = None
_lock = threading.Lock()


def get_active_config() -> MesConfig:
    """Return the cached configuration, loading it on first use."""
    global _active
    with _lock:
        if _active is None:
            path = Path(os.environ.get(CONFIG_PATH_ENV) or DEFAULT_CONFIG_PATH)
            _active = load_config(path)
            _logger.info(
                "MES_CONFIG_TRACE",
                extra={
                    "trace_type": "MES_CONFIG_TRACE",
                    "config_id": _active.config_id,
                    "config_version": _active.version,
                    "config_path": str(path),
                    "checksum": _active.checksum,
                },
            )
        return _active


def reset_active_config() -> None:
    """Drop the cached configuration. FOR TESTING ONLY."""
    global _active
    with _lock:
        _active = None


__all__ = [
    "AllocationSettings",
    "CONFIG_PATH_ENV",
    "DEFAULT_CONFIG_PATH",
    "DatabaseSettings",
    "MesConfig",
    "WorkflowSettings",
    "get_active_config",
    "load_config",
    "parse_config",
    "reset_active_config",
]
