"""
Configuration Loader (``lease_config.loader``).

Responsibility
--------------
Loads the YAML configuration document and parses it into the frozen
``lease_config.schema`` dataclasses.  Runtime callers go through
``lease_config.get_active_config()``.

Invariants enforced
-------------------
* Unknown sections or keys raise ``ValueError``; a typo never silently
  falls back to a default.
* Values are type- and range-checked before any dataclass is built.
* ``LEASE_CORE_DATABASE_URL`` (when set and non-empty) overrides
  ``database.url``.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Invalid structure or value  -> ``ValueError``.
"""

from __future__ import annotations

import logging
import os
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from lease_config.schema import (
    BillingConfig,
    DatabaseConfig,
    LeaseCoreConfig,
    LoggingConfig,
    PaymentsConfig,
)

DATABASE_URL_ENV = "LEASE_CORE_DATABASE_URL"
DEFAULTS_PATH = Path(__file__).parent / "defaults.yaml"

_SECTIONS = {
    "database": DatabaseConfig,
    "billing": BillingConfig,
    "payments": PaymentsConfig,
    "logging": LoggingConfig,
}

_LOG_LEVELS = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")


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


def _require_int(section: str, key: str, value: Any, minimum: int, maximum: int | None = None) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{section}.{key}: expected an integer, got {value!r}")
    if value < minimum or (maximum is not None and value > maximum):
        bounds = f">= {minimum}" if maximum is None else f"between {minimum} and {maximum}"
        raise ValueError(f"{section}.{key}: must be {bounds}, got {value}")
    return value


def _require_str(section: str, key: str, value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValueError(f"{section}.{key}: expected a non-empty string, got {value!r}")
    return value


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    raw = data.get(name) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{name}: expected a mapping, got {type(raw).__name__}")
    allowed = {f.name for f in fields(_SECTIONS[name])}
    unknown = sorted(set(raw) - allowed)
    if unknown:
        raise ValueError(f"{name}: unknown keys {unknown}")
    return raw


def parse_database(raw: dict[str, Any]) -> DatabaseConfig:
    defaults = DatabaseConfig()
    echo = raw.get("echo", defaults.echo)
    if not isinstance(echo, bool):
        raise ValueError(f"database.echo: expected a boolean, got {echo!r}")
    return DatabaseConfig(
        url=_require_str("database", "url", raw.get("url", defaults.url)),
        pool_size=_require_int("database", "pool_size", raw.get("pool_size", defaults.pool_size), 1),
        max_overflow=_require_int("database", "max_overflow", raw.get("max_overflow", defaults.max_overflow), 0),
        pool_timeout=_require_int("database", "pool_timeout", raw.get("pool_timeout", defaults.pool_timeout), 1),
        echo=echo,
    )


def parse_billing(raw: dict[str, Any]) -> BillingConfig:
    defaults = BillingConfig()
    prefix = _require_str(
        "billing", "invoice_number_prefix",
        raw.get("invoice_number_prefix", defaults.invoice_number_prefix),
    )
    if not prefix.isalnum():
        raise ValueError(f"billing.invoice_number_prefix: must be alphanumeric, got {prefix!r}")
    return BillingConfig(
        default_due_day=_require_int(
            "billing", "default_due_day", raw.get("default_due_day", defaults.default_due_day), 1, 31,
        ),
        invoice_number_prefix=prefix,
        expiring_lease_window_days=_require_int(
            "billing", "expiring_lease_window_days",
            raw.get("expiring_lease_window_days", defaults.expiring_lease_window_days), 0,
        ),
        due_soon_window_days=_require_int(
            "billing", "due_soon_window_days",
            raw.get("due_soon_window_days", defaults.due_soon_window_days), 0,
        ),
    )


def parse_payments(raw: dict[str, Any]) -> PaymentsConfig:
    defaults = PaymentsConfig()
    return PaymentsConfig(
        max_apply_attempts=_require_int(
            "payments", "max_apply_attempts",
            raw.get("max_apply_attempts", defaults.max_apply_attempts), 1,
        ),
    )


def parse_logging(raw: dict[str, Any]) -> LoggingConfig:
    level = _require_str("logging", "level", raw.get("level", LoggingConfig().level)).upper()
    if level not in _LOG_LEVELS:
        raise ValueError(f"logging.level: expected one of {_LOG_LEVELS}, got {level!r}")
    return LoggingConfig(level=level)


def parse_config(data: dict[str, Any]) -> LeaseCoreConfig:
    """Parse a configuration mapping (already loaded from YAML)."""
    unknown = sorted(set(data) - set(_SECTIONS))
    if unknown:
        raise ValueError(f"unknown configuration sections {unknown}")
    return LeaseCoreConfig(
        database=parse_database(_section(data, "database")),
        billing=parse_billing(_section(data, "billing")),
        payments=parse_payments(_section(data, "payments")),
        logging=parse_logging(_section(data, "logging")),
    )


def load_config(path: Path | str | None = None, environ: dict[str, str] | None = None) -> LeaseCoreConfig:
    """
    Load configuration from ``path`` (packaged defaults when None).

    The database URL environment override is applied after parsing.
    """
    source = Path(path) if path is not None else DEFAULTS_PATH
    config = parse_config(load_yaml_file(source))

    env = os.environ if environ is None else environ
    override = env.get(DATABASE_URL_ENV)
    if override:
        config = LeaseCoreConfig(
            database=DatabaseConfig(
                url=override,
                pool_size=config.database.pool_size,
                max_overflow=config.database.max_overflow,
                pool_timeout=config.database.pool_timeout,
                echo=config.database.echo,
            ),
            billing=config.billing,
            payments=config.payments,
            logging=config.logging,
        )

    logging.getLogger("lease_kernel.config").debug(
        "config_loaded",
        extra={"source": str(source), "database_url_overridden": bool(override)},
    )
    return config
