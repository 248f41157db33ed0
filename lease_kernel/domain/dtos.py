"""
DTOs -- immutable data structures returned across the kernel boundary.

Responsibility:
    Bulk generation results, audit events and read-feed statistics.  Services
    return these rather than ORM rows wherever the caller may outlive the
    session.

Architecture position:
    Kernel > Domain -- pure, zero I/O.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any
from uuid import UUID


class GenerationOutcome(str, Enum):
    """Per-occupancy outcome within a bulk generation run."""

    CREATED = "created"
    SKIPPED = "skipped"
    FAILED = "failed"


@dataclass(frozen=True)
class GenerationError:
    """One failed occupancy: the error kind plus a human-readable message."""

    occupancy_id: UUID
    error: str
    message: str = ""


@dataclass(frozen=True)
class BulkGenerationResult:
    """
    Summary of one generate_monthly call.

    Always returned, even when every occupancy failed.  processed equals
    created + skipped + failed.
    """

    company_id: UUID
    billing_period: str
    processed: int
    created: int
    skipped: int
    failed: int
    created_invoice_ids: tuple[UUID, ...]
    skipped_invoice_ids: tuple[UUID, ...]
    errors: tuple[GenerationError, ...]
    total_amount: Decimal
    cancelled: bool = False

    @property
    def has_failures(self) -> bool:
        return self.failed > 0


@dataclass(frozen=True)
class AuditEvent:
    """
    Structured record of a committed mutation.

    before/after are plain snapshots (MappingProxyType) of the fields that
    matter for the action; either may be None (create has no before).
    """

    entity: str
    entity_id: UUID
    action: str
    company_id: UUID
    actor_id: UUID
    occurred_at: datetime
    before: MappingProxyType | None = None
    after: MappingProxyType | None = None
    correlation_id: str | None = None

    def as_dict(self) -> dict[str, Any]:
        return {
            "entity": self.entity,
            "entity_id": str(self.entity_id),
            "action": self.action,
            "company_id": str(self.company_id),
            "actor_id": str(self.actor_id),
            "occurred_at": self.occurred_at.isoformat(),
            "before": dict(self.before) if self.before is not None else None,
            "after": dict(self.after) if self.after is not None else None,
            "correlation_id": self.correlation_id,
        }


@dataclass(frozen=True)
class InvoiceStats:
    as_of: date
    counts_by_status: MappingProxyType
    total_invoiced: Decimal
    total_paid: Decimal
    outstanding: Decimal
    overdue_count: int


@dataclass(frozen=True)
class OccupancyStats:
    as_of: date
    counts_by_status: MappingProxyType
    expiring_soon: int
    monthly_rent_roll: Decimal


@dataclass(frozen=True)
class PaymentStats:
    start: date | None
    end: date | None
    count: int
    total: Decimal
    by_method: MappingProxyType = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class InvoiceSummary:
    """Read-feed row for reminder scheduling."""

    invoice_id: UUID
    invoice_number: str
    occupancy_id: UUID
    status: str
    due_date: date
    total_amount: Decimal
    amount_paid: Decimal

    @property
    def balance_due(self) -> Decimal:
        return self.total_amount - self.amount_paid
