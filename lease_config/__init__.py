"""
lease_config -- single public entrypoint for lease core configuration.

Responsibility:
    ``get_active_config()`` returns the process-wide LeaseCoreConfig,
    loading the packaged defaults (plus the LEASE_CORE_DATABASE_URL
    override) on first use.  ``reset_active_config()`` drops the cache.

Architecture position:
    Configuration.  lease_kernel and lease_batch read settings through
    this package; only lease_config touches YAML and the environment.

Failure modes:
    - ``ValueError`` -- unknown keys or invalid values in the document.
    - ``FileNotFoundError`` -- an explicit path that does not exist.
"""

from __future__ import annotations

import threading
from pathlib import Path

from lease_config.loader import DATABASE_URL_ENV, load_config
from lease_config.schema import (
    BillingConfig,
    DatabaseConfig,
    LeaseCoreConfig,
    LoggingConfig,
    PaymentsConfig,
)

_lock = threading.Lock()
_active: LeaseCoreConfig | None = None


def get_active_config(path: Path | str | None = None) -> LeaseCoreConfig:
    """
    Return the cached configuration, loading it on first call.

    Passing ``path`` forces a reload from that file and replaces the cache.
    """
    global _active
    with _lock:
        if _active is None or path is not None:
            _active = load_config(path)
        return _active


def reset_active_config() -> None:
    global _active
    with _lock:
        _active = None


__all__ = [
    "BillingConfig",
    "DATABASE_URL_ENV",
    "DatabaseConfig",
    "LeaseCoreConfig",
    "LoggingConfig",
    "PaymentsConfig",
    "get_active_config",
    "load_config",
    "reset_active_config",
]
