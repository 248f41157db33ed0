"""
Lease core configuration schema.

Typed, frozen view of the YAML configuration document.  The loader parses
YAML into these types; nothing else constructs them from raw data.
"""

from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True)
class DatabaseConfig:
    """Connection and pool settings passed to lease_kernel.db.engine."""

    url: str = "postgresql://localhost:5432/lease_core"
    pool_size: int = 5
    max_overflow: int = 10
    pool_timeout: int = 30
    echo: bool = False


@dataclass(frozen=True)
class BillingConfig:
    default_due_day: int = 5
    invoice_number_prefix: str = "INV"
    expiring_lease_window_days: int = 30
    due_soon_window_days: int = 7


@dataclass(frozen=True)
class PaymentsConfig:
    max_apply_attempts: int = 3


@dataclass(frozen=True)
class LoggingConfig:
    level: str = "INFO"


@dataclass(frozen=True)
class LeaseCoreConfig:
    """Root configuration object returned by ``get_active_config()``."""

    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    billing: BillingConfig = field(default_factory=BillingConfig)
    payments: PaymentsConfig = field(default_factory=PaymentsConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)
