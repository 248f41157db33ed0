"""
Occupancy (lease) model.

Invariants enforced at the storage layer:
    - uq_occupancies_one_active_per_apartment: partial unique index on
      (company_id, apartment_id) WHERE status = 'active'.  Two concurrent
      activations of the same apartment cannot both commit.
    - idx_occupancies_company_status supports the active-lease scans used
      by bulk invoice generation and the expiring-lease feed.
"""

from datetime import date
from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_kernel.db.base import CompanyScopedBase
from lease_kernel.models.property import Apartment
from lease_kernel.models.tenant import Tenant


class OccupancyStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    ENDED = "ended"
    CANCELLED = "cancelled"


_ACTIVE_ONLY = text("status = 'active'")


class Occupancy(CompanyScopedBase):
    """Binds one apartment to one tenant for [lease_start_date, lease_end_date]."""

    __tablename__ = "occupancies"

    __table_args__ = (
        Index(
            "uq_occupancies_one_active_per_apartment",
            "company_id",
            "apartment_id",
            unique=True,
            postgresql_where=_ACTIVE_ONLY,
            sqlite_where=_ACTIVE_ONLY,
        ),
        Index("idx_occupancies_company_status", "company_id", "status"),
        Index("idx_occupancies_company_lease_end", "company_id", "lease_end_date"),
        Index("idx_occupancies_tenant", "tenant_id"),
    )

    apartment_id: Mapped[UUID] = mapped_column(ForeignKey("apartments.id"), nullable=False)
    tenant_id: Mapped[UUID] = mapped_column(ForeignKey("tenants.id"), nullable=False)

    lease_start_date: Mapped[date] = mapped_column(nullable=False)
    lease_end_date: Mapped[date] = mapped_column(nullable=False)
    move_in_date: Mapped[date | None] = mapped_column(nullable=True)
    move_out_date: Mapped[date | None] = mapped_column(nullable=True)

    monthly_rent: Mapped[Decimal] = mapped_column(nullable=False)
    security_deposit: Mapped[Decimal | None] = mapped_column(nullable=True)
    deposit_paid: Mapped[Decimal] = mapped_column(default=Decimal("0.00"), nullable=False)

    status: Mapped[OccupancyStatus] = mapped_column(
        String(20),
        default=OccupancyStatus.PENDING,
        nullable=False,
    )
    notes: Mapped[str | None] = mapped_column(String(2000), nullable=True)

    apartment: Mapped[Apartment] = relationship()
    tenant: Mapped[Tenant] = relationship()

    def covers(self, start: date, end: date) -> bool:
        """True when the lease range intersects [start, end]."""
        return self.lease_start_date <= end and self.lease_end_date >= start

    def __repr__(self) -> str:
        return f"<Occupancy {self.id}: {self.status}>"
