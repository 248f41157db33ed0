"""
Payment model.

Payments are immutable once created and are never deleted (see
db/immutability.py).  A payment references its invoice; it is not owned by
it, so invoice soft-deletion leaves payments in place as the audit trail.
"""

from datetime import datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String
from sqlalchemy.orm import Mapped, mapped_column

from lease_kernel.db.base import CompanyScopedBase


class PaymentMethod(str, Enum):
    CASH = "CASH"
    BANK = "BANK"
    MOBILE = "MOBILE"
    CARD = "CARD"
    OTHER = "OTHER"


class Payment(CompanyScopedBase):
    """A single amount received against an invoice."""

    __tablename__ = "payments"

    __table_args__ = (
        Index("idx_payments_invoice", "invoice_id"),
        Index("idx_payments_company_paid_at", "company_id", "paid_at"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    paid_at: Mapped[datetime] = mapped_column(nullable=False)
    method: Mapped[PaymentMethod] = mapped_column(String(20), nullable=False)
    reference: Mapped[str | None] = mapped_column(String(255), nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    def __repr__(self) -> str:
        return f"<Payment {self.amount} {self.method}>"
