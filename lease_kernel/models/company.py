"""
Company -- the tenancy root.

Every other entity carries a company_id pointing here.  currency is drawn
from the closed SupportedCurrency set (validated in the service layer
before any write); is_active gates all writes of child entities.
"""

from sqlalchemy import Boolean, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lease_kernel.db.base import TrackedBase


class Company(TrackedBase):
    """A SaaS customer owning compounds, residents, leases and invoices."""

    __tablename__ = "companies"

    __table_args__ = (
        UniqueConstraint("slug", name="uq_companies_slug"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    slug: Mapped[str] = mapped_column(String(100), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False)
    email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    def __repr__(self) -> str:
        return f"<Company {self.slug} ({self.currency})>"
