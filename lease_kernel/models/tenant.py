"""Tenant (resident) model."""

from enum import Enum

from sqlalchemy import Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from lease_kernel.db.base import CompanyScopedBase


class TenantStatus(str, Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class Tenant(CompanyScopedBase):
    """
    A resident who signs leases.  Not to be confused with the SaaS tenant,
    which is the Company.

    Guarantees:
        - email is unique within the company (uq_tenants_company_email).
    """

    __tablename__ = "tenants"

    __table_args__ = (
        UniqueConstraint("company_id", "email", name="uq_tenants_company_email"),
        Index("idx_tenants_company_status", "company_id", "status"),
    )

    first_name: Mapped[str] = mapped_column(String(100), nullable=False)
    last_name: Mapped[str] = mapped_column(String(100), nullable=False)
    email: Mapped[str] = mapped_column(String(255), nullable=False)
    phone: Mapped[str | None] = mapped_column(String(50), nullable=True)
    id_number: Mapped[str | None] = mapped_column(String(100), nullable=True)
    status: Mapped[TenantStatus] = mapped_column(
        String(20),
        default=TenantStatus.ACTIVE,
        nullable=False,
    )

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"

    def __repr__(self) -> str:
        return f"<Tenant {self.email}>"
