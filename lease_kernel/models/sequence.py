"""Named counter rows backing per-company invoice numbering."""

from sqlalchemy import Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from lease_kernel.db.base import Base


class SequenceCounter(Base):
    """
    One row per named sequence.

    Row-level locking on this table serializes concurrent allocations.
    """

    __tablename__ = "sequence_counters"

    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    current_value: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
