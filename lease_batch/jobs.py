"""
lease_batch.jobs -- closed set of typed invoice job variants.

Queue payloads arrive as loosely-typed mappings (``{"type":
"generate-monthly", "companyId": ..., "month": ...}``).  ``parse_job``
validates a payload once, at the edge, and returns one of the frozen
variants below.  An unknown ``type`` is an error, never a silent no-op.

Invariants enforced:
    - Every variant is a frozen dataclass; fields are already validated
      (UUIDs parsed, month normalized to YYYY-MM, due_day in 1..31).
    - InvoiceJob is exactly GenerateMonthlyJob | GenerateSingleJob.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Mapping
from uuid import UUID, uuid4

from lease_kernel.domain.billing import BillingPeriod
from lease_kernel.exceptions import (
    InvalidBillingMonthError,
    InvalidJobPayloadError,
    UnknownJobTypeError,
)

GENERATE_MONTHLY = "generate-monthly"
GENERATE_SINGLE = "generate-single"

# Actor recorded on writes made by queue jobs that carry no actorId.
SYSTEM_ACTOR_ID = UUID(int=0)


@dataclass(frozen=True)
class GenerateMonthlyJob:
    """Bulk rent generation for one company and month."""

    job_id: UUID
    company_id: UUID
    actor_id: UUID
    month: str
    due_day: int | None = None
    occupancy_ids: tuple[UUID, ...] | None = None
    skip_existing: bool = True

    job_type = GENERATE_MONTHLY


@dataclass(frozen=True)
class GenerateSingleJob:
    """Rent invoice for one occupancy and month."""

    job_id: UUID
    company_id: UUID
    actor_id: UUID
    occupancy_id: UUID
    month: str
    due_day: int | None = None

    job_type = GENERATE_SINGLE


InvoiceJob = GenerateMonthlyJob | GenerateSingleJob


# ---------------------------------------------------------------------------
# Field parsers
# ---------------------------------------------------------------------------


def _uuid(job_type: str, payload: Mapping[str, Any], key: str, required: bool = True) -> UUID | None:
    value = payload.get(key)
    if value is None:
        if required:
            raise InvalidJobPayloadError(job_type, key, "missing")
        return None
    if isinstance(value, UUID):
        return value
    try:
        return UUID(str(value))
    except ValueError as exc:
        raise InvalidJobPayloadError(job_type, key, f"not a UUID: {value!r}") from exc


def _month(job_type: str, payload: Mapping[str, Any]) -> str:
    value = payload.get("month")
    if value is None:
        raise InvalidJobPayloadError(job_type, "month", "missing")
    try:
        return BillingPeriod.parse(value).key
    except InvalidBillingMonthError as exc:
        raise InvalidJobPayloadError(job_type, "month", exc.reason) from exc


def _due_day(job_type: str, payload: Mapping[str, Any]) -> int | None:
    value = payload.get("dueDay")
    if value is None:
        return None
    if isinstance(value, bool) or not isinstance(value, int) or not 1 <= value <= 31:
        raise InvalidJobPayloadError(job_type, "dueDay", f"expected an integer 1..31, got {value!r}")
    return value


def _common(job_type: str, payload: Mapping[str, Any]) -> dict[str, Any]:
    return {
        "job_id": _uuid(job_type, payload, "jobId", required=False) or uuid4(),
        "company_id": _uuid(job_type, payload, "companyId"),
        "actor_id": _uuid(job_type, payload, "actorId", required=False) or SYSTEM_ACTOR_ID,
        "month": _month(job_type, payload),
        "due_day": _due_day(job_type, payload),
    }


def _parse_monthly(payload: Mapping[str, Any]) -> GenerateMonthlyJob:
    occupancy_ids = None
    raw_ids = payload.get("occupancyIds")
    if raw_ids is not None:
        if isinstance(raw_ids, (str, bytes)) or not isinstance(raw_ids, (list, tuple)):
            raise InvalidJobPayloadError(GENERATE_MONTHLY, "occupancyIds", "expected a list")
        occupancy_ids = tuple(
            _uuid(GENERATE_MONTHLY, {"occupancyIds": raw}, "occupancyIds") for raw in raw_ids
        )

    skip_existing = payload.get("skipExisting", True)
    if not isinstance(skip_existing, bool):
        raise InvalidJobPayloadError(GENERATE_MONTHLY, "skipExisting", "expected a boolean")

    return GenerateMonthlyJob(
        **_common(GENERATE_MONTHLY, payload),
        occupancy_ids=occupancy_ids,
        skip_existing=skip_existing,
    )


def _parse_single(payload: Mapping[str, Any]) -> GenerateSingleJob:
    return GenerateSingleJob(
        **_common(GENERATE_SINGLE, payload),
        occupancy_id=_uuid(GENERATE_SINGLE, payload, "occupancyId"),
    )


_PARSERS = {
    GENERATE_MONTHLY: _parse_monthly,
    GENERATE_SINGLE: _parse_single,
}


def parse_job(payload: Mapping[str, Any]) -> InvoiceJob:
    """
    Validate a raw queue payload into a typed job.

    Raises:
        UnknownJobTypeError: ``type`` is missing or not a known variant.
        InvalidJobPayloadError: a field is missing or malformed.
    """
    job_type = payload.get("type")
    parser = _PARSERS.get(job_type) if isinstance(job_type, str) else None
    if parser is None:
        raise UnknownJobTypeError(job_type)
    return parser(payload)
