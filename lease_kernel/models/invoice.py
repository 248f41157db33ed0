"""
Invoice and InvoiceLineItem models.

Invariants enforced at the storage layer:
    - uq_invoices_company_number: invoice_number unique within a company.
    - uq_invoices_occupancy_period: at most one invoice per
      (company, occupancy, billing_period).  Rows without a billing period
      (ad-hoc drafts) are not constrained.  Soft-deleted rows still hold
      their period.
    - version is the optimistic-lock counter (mapper version_id_col).

amount_paid never decreases (see db/immutability.py).
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, Integer, Numeric, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_kernel.db.base import CompanyScopedBase
from lease_kernel.models.occupancy import Occupancy


class InvoiceStatus(str, Enum):
    DRAFT = "draft"
    SENT = "sent"
    PAID = "paid"
    OVERDUE = "overdue"
    CANCELLED = "cancelled"


class Invoice(CompanyScopedBase):
    """A bill against one occupancy."""

    __tablename__ = "invoices"

    __table_args__ = (
        UniqueConstraint("company_id", "invoice_number", name="uq_invoices_company_number"),
        UniqueConstraint(
            "company_id", "occupancy_id", "billing_period",
            name="uq_invoices_occupancy_period",
        ),
        Index("idx_invoices_company_status", "company_id", "status"),
        Index("idx_invoices_company_due_date", "company_id", "due_date"),
        Index("idx_invoices_occupancy_status", "company_id", "occupancy_id", "status"),
    )

    occupancy_id: Mapped[UUID] = mapped_column(ForeignKey("occupancies.id"), nullable=False)
    invoice_number: Mapped[str] = mapped_column(String(50), nullable=False)
    invoice_date: Mapped[date] = mapped_column(nullable=False)
    due_date: Mapped[date] = mapped_column(nullable=False)
    billing_period: Mapped[str | None] = mapped_column(String(7), nullable=True)

    subtotal: Mapped[Decimal] = mapped_column(nullable=False)
    tax_amount: Mapped[Decimal] = mapped_column(default=Decimal("0.00"), nullable=False)
    total_amount: Mapped[Decimal] = mapped_column(nullable=False)
    amount_paid: Mapped[Decimal] = mapped_column(default=Decimal("0.00"), nullable=False)

    status: Mapped[InvoiceStatus] = mapped_column(
        String(20),
        default=InvoiceStatus.DRAFT,
        nullable=False,
    )
    sent_at: Mapped[datetime | None] = mapped_column(nullable=True)
    paid_date: Mapped[date | None] = mapped_column(nullable=True)
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    version: Mapped[int] = mapped_column(Integer, nullable=False)

    occupancy: Mapped[Occupancy] = relationship()
    line_items: Mapped[list["InvoiceLineItem"]] = relationship(
        back_populates="invoice",
        order_by="InvoiceLineItem.position",
        cascade="save-update, merge",
        passive_deletes="all",
    )

    __mapper_args__ = {"version_id_col": version}

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid

    def __repr__(self) -> str:
        return f"<Invoice {self.invoice_number}: {self.status}>"


class InvoiceLineItem(CompanyScopedBase):
    """A priced line on an invoice.  Owned by its invoice."""

    __tablename__ = "invoice_line_items"

    __table_args__ = (
        UniqueConstraint("invoice_id", "position", name="uq_invoice_line_items_position"),
    )

    invoice_id: Mapped[UUID] = mapped_column(ForeignKey("invoices.id"), nullable=False)
    position: Mapped[int] = mapped_column(nullable=False)
    description: Mapped[str] = mapped_column(String(500), nullable=False)
    item_type: Mapped[str] = mapped_column(String(20), nullable=False)
    quantity: Mapped[Decimal] = mapped_column(Numeric(15, 4), nullable=False)
    unit_price: Mapped[Decimal] = mapped_column(nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)

    invoice: Mapped[Invoice] = relationship(back_populates="line_items")
