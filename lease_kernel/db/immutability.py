"""
ORM-Level Immutability Enforcement.

===============================================================================
PROTECTED ENTITIES
===============================================================================

Entity                 | Rule                                   | Why
-----------------------|----------------------------------------|------------------------------
Payment                | No UPDATE, no DELETE, ever             | Applied to its invoice once
Invoice                | amount_paid never decreases            | Money moves forward only
Invoice                | No physical DELETE                     | Soft delete only
Any company-scoped row | company_id never changes after INSERT  | Tenancy owner is fixed

updated_at/updated_by_id are audit metadata and may always change.

===============================================================================
HOW IT WORKS
===============================================================================

    session.flush()
         |
         v
    [before_update] --> _check_*() --> ImmutabilityViolationError
    [before_delete] --> _check_*() ----------^
         |
         v
    SQL sent to database (only if checks pass)

init_engine_from_url() and InvoiceJobDispatcher register the listeners.
Code that builds its own engine registers them explicitly:

    from lease_kernel.db.immutability import register_immutability_listeners
    register_immutability_listeners()
"""

from sqlalchemy import event, inspect
from sqlalchemy.orm.attributes import get_history

from lease_kernel.db.base import CompanyScopedBase
from lease_kernel.exceptions import ImmutabilityViolationError
from lease_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})


def _blocked(entity_type: str, entity_id, operation: str, reason: str, field: str | None = None):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            "field": field,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _check_company_id_immutability(mapper, connection, target):
    """company_id is fixed at creation for every company-scoped row."""
    hist = get_history(target, "company_id")
    if hist.deleted and hist.added and hist.deleted[0] != hist.added[0]:
        raise _blocked(
            type(target).__name__,
            target.id,
            "UPDATE",
            "company_id cannot change after creation",
            field="company_id",
        )


def _check_payment_immutability(mapper, connection, target):
    """Payments are created once and never modified."""
    insp = inspect(target)
    for attr in insp.attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if attr.history.has_changes():
            raise _blocked(
                "Payment",
                target.id,
                "UPDATE",
                f"Cannot modify field '{attr.key}' on a payment",
                field=attr.key,
            )


def _check_payment_delete(mapper, connection, target):
    raise _blocked("Payment", target.id, "DELETE", "Payments cannot be deleted")


def _check_invoice_amount_paid(mapper, connection, target):
    """amount_paid is monotonically non-decreasing."""
    hist = get_history(target, "amount_paid")
    if hist.deleted and hist.added:
        old, new = hist.deleted[0], hist.added[0]
        if old is not None and new is not None and new < old:
            raise _blocked(
                "Invoice",
                target.id,
                "UPDATE",
                f"amount_paid cannot decrease ({old} -> {new})",
                field="amount_paid",
            )


def _check_invoice_delete(mapper, connection, target):
    raise _blocked(
        "Invoice", target.id, "DELETE", "Invoices are soft-deleted, never removed"
    )


def _listeners():
    from lease_kernel.models.invoice import Invoice
    from lease_kernel.models.payment import Payment

    return (
        (CompanyScopedBase, "before_update", _check_company_id_immutability, True),
        (Payment, "before_update", _check_payment_immutability, False),
        (Payment, "before_delete", _check_payment_delete, False),
        (Invoice, "before_update", _check_invoice_amount_paid, False),
        (Invoice, "before_delete", _check_invoice_delete, False),
    )


def register_immutability_listeners():
    """
    Register all immutability enforcement listeners (idempotent).

    Call after the models are importable and before any writes.
    """
    for target, name, fn, propagate in _listeners():
        if not event.contains(target, name, fn):
            event.listen(target, name, fn, propagate=propagate)


def immutability_listeners_registered() -> bool:
    return all(event.contains(target, name, fn) for target, name, fn, _ in _listeners())


def _safe_remove_listener(target, event_name, listener_fn):
    """Remove an event listener, ignoring it if it was never registered."""
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners():
    """
    Remove immutability listeners.

    WARNING: Only for tests that must violate the rules on purpose.
    """
    for target, name, fn, _ in _listeners():
        _safe_remove_listener(target, name, fn)
