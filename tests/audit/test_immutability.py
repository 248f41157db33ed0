"""
ORM-level immutability enforcement.

Verifies:
- Payments are never updated or deleted
- Invoice amount_paid never decreases
- Invoices are never physically deleted
- company_id never changes on any company-scoped row
- Engine initialization and the job dispatcher install the listeners
"""

from datetime import UTC, datetime
from decimal import Decimal

import pytest
from sqlalchemy.orm import sessionmaker

from lease_batch.dispatcher import InvoiceJobDispatcher
from lease_config import DatabaseConfig, LeaseCoreConfig
from lease_kernel.db import engine as engine_module
from lease_kernel.db.immutability import (
    immutability_listeners_registered,
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from lease_kernel.exceptions import ImmutabilityViolationError


@pytest.fixture
def paid_invoice(ctx, invoice_engine, payment_ledger, create_occupancy):
    occupancy = create_occupancy()
    invoice = invoice_engine.generate_for_occupancy(ctx, occupancy.id, "2024-01")
    invoice_engine.send(ctx, invoice.id)
    payment = payment_ledger.apply_payment(
        ctx, invoice.id, Decimal("500.00"), datetime(2024, 1, 3, tzinfo=UTC), "BANK",
    )
    return invoice_engine.get(ctx, invoice.id), payment


class TestPaymentImmutability:

    def test_update_blocked(self, session, paid_invoice):
        _, payment = paid_invoice
        payment.amount = Decimal("1.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert exc_info.value.entity_type == "Payment"
        session.rollback()

    def test_delete_blocked(self, session, paid_invoice):
        _, payment = paid_invoice
        session.delete(payment)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

    def test_audit_metadata_may_change(self, session, paid_invoice, test_actor_id):
        _, payment = paid_invoice
        payment.updated_by_id = test_actor_id
        session.flush()


class TestInvoiceImmutability:

    def test_amount_paid_cannot_decrease(self, session, paid_invoice):
        invoice, _ = paid_invoice
        invoice.amount_paid = Decimal("100.00")

        with pytest.raises(ImmutabilityViolationError) as exc_info:
            session.flush()
        assert "amount_paid" in exc_info.value.reason
        session.rollback()

    def test_physical_delete_blocked(self, session, ctx, invoice_engine, create_occupancy):
        invoice = invoice_engine.generate_for_occupancy(ctx, create_occupancy().id, "2024-01")
        session.delete(invoice)

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()


class TestCompanyOwnership:

    def test_company_id_cannot_change(self, session, other_company, create_apartment, captured_logs):
        apartment = create_apartment()
        apartment.company_id = other_company.id

        with pytest.raises(ImmutabilityViolationError):
            session.flush()
        session.rollback()

        assert any(r["message"] == "immutability_violation_blocked" for r in captured_logs())


class TestListenerRegistration:
    """Listeners are installed by every entry point that hands out sessions."""

    @pytest.fixture
    def unregistered(self):
        unregister_immutability_listeners()
        assert not immutability_listeners_registered()
        yield
        register_immutability_listeners()

    def test_engine_init_registers(self, unregistered, tmp_path, monkeypatch):
        # Keep the suite's module-level engine in place after this test.
        monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
        monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)

        engine = engine_module.init_engine_from_url(f"sqlite:///{tmp_path / 'init.db'}")
        engine.dispose()

        assert immutability_listeners_registered()

    def test_engine_init_from_config_registers(self, unregistered, tmp_path, monkeypatch):
        monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
        monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)
        config = LeaseCoreConfig(database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'config.db'}"))

        engine_module.init_engine_from_config(config).dispose()

        assert immutability_listeners_registered()

    def test_dispatcher_registers(self, unregistered):
        InvoiceJobDispatcher(sessionmaker(), config=LeaseCoreConfig())

        assert immutability_listeners_registered()

