"""
Config -> Kernel Bridges.

Functions that turn a LeaseCoreConfig into configured kernel objects.
They live in lease_config so that kernel services keep plain keyword
arguments and never read configuration themselves.

Usage:
    from lease_config import get_active_config
    from lease_config.bridges import build_invoice_engine, build_payment_ledger

    config = get_active_config()
    engine = build_invoice_engine(session, config)
    ledger = build_payment_ledger(session, config)
"""

from __future__ import annotations

from sqlalchemy.orm import Session

from lease_config.schema import LeaseCoreConfig
from lease_kernel.domain.clock import Clock
from lease_kernel.logging_config import configure_logging
from lease_kernel.selectors.billing_feed import BillingFeedSelector
from lease_kernel.services.audit_emitter import AuditSink
from lease_kernel.services.invoice_engine import InvoiceEngine
from lease_kernel.services.payment_ledger import PaymentLedger


def configure_logging_from_config(config: LeaseCoreConfig) -> None:
    """Install the JSON log handler at the configured level (idempotent)."""
    configure_logging(level=config.logging.level)


def build_invoice_engine(
    session: Session,
    config: LeaseCoreConfig,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
) -> InvoiceEngine:
    return InvoiceEngine(
        session,
        clock=clock,
        audit_sink=audit_sink,
        number_prefix=config.billing.invoice_number_prefix,
        default_due_day=config.billing.default_due_day,
    )


def build_payment_ledger(
    session: Session,
    config: LeaseCoreConfig,
    clock: Clock | None = None,
    audit_sink: AuditSink | None = None,
) -> PaymentLedger:
    return PaymentLedger(
        session,
        clock=clock,
        audit_sink=audit_sink,
        max_apply_attempts=config.payments.max_apply_attempts,
    )


def build_billing_feed(
    session: Session,
    config: LeaseCoreConfig,
    clock: Clock | None = None,
) -> BillingFeedSelector:
    """Reminder feed whose default windows come from the billing section."""
    return BillingFeedSelector(
        session,
        clock,
        due_soon_days=config.billing.due_soon_window_days,
        expiring_days=config.billing.expiring_lease_window_days,
    )
