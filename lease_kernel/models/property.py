"""
Compound and Apartment models.

An apartment's status is ``occupied`` if and only if it has an active
occupancy.  Only services/occupancy_lifecycle.py sets or clears that value.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from lease_kernel.db.base import CompanyScopedBase


class ApartmentStatus(str, Enum):
    AVAILABLE = "available"
    OCCUPIED = "occupied"
    MAINTENANCE = "maintenance"
    RESERVED = "reserved"


class Compound(CompanyScopedBase):
    """A building or group of units owned by one company."""

    __tablename__ = "compounds"

    __table_args__ = (
        Index("idx_compounds_company_name", "company_id", "name"),
    )

    name: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[str | None] = mapped_column(String(2000), nullable=True)
    city: Mapped[str | None] = mapped_column(String(100), nullable=True)

    apartments: Mapped[list["Apartment"]] = relationship(back_populates="compound")

    def __repr__(self) -> str:
        return f"<Compound {self.name}>"


class Apartment(CompanyScopedBase):
    """
    A leasable unit.

    Guarantees:
        - unit_number is unique within (company, compound)
          (uq_apartments_compound_unit).
    """

    __tablename__ = "apartments"

    __table_args__ = (
        UniqueConstraint(
            "company_id", "compound_id", "unit_number",
            name="uq_apartments_compound_unit",
        ),
        Index("idx_apartments_company_status", "company_id", "status"),
    )

    compound_id: Mapped[UUID] = mapped_column(ForeignKey("compounds.id"), nullable=False)
    unit_number: Mapped[str] = mapped_column(String(50), nullable=False)
    floor: Mapped[int | None] = mapped_column(nullable=True)
    bedrooms: Mapped[int | None] = mapped_column(nullable=True)
    monthly_rent: Mapped[Decimal | None] = mapped_column(nullable=True)
    status: Mapped[ApartmentStatus] = mapped_column(
        String(20),
        default=ApartmentStatus.AVAILABLE,
        nullable=False,
    )

    compound: Mapped[Compound] = relationship(back_populates="apartments")

    def __repr__(self) -> str:
        return f"<Apartment {self.unit_number}: {self.status}>"
