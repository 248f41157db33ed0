"""
Service layer for compounds, apartments and residents.

Business preconditions are checked before any soft-delete flag is set:
an occupied apartment and a resident with an active lease cannot be
deleted.  Apartment ``occupied`` status is owned by OccupancyLifecycle and
cannot be set or cleared here.
"""

from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from lease_kernel.db.types import to_money
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.exceptions import (
    ApartmentOccupiedError,
    DuplicateValueError,
    InvalidAmountError,
    InvalidTransitionError,
    TenantHasActiveOccupancyError,
)
from lease_kernel.logging_config import get_logger
from lease_kernel.models.occupancy import Occupancy, OccupancyStatus
from lease_kernel.models.property import Apartment, ApartmentStatus, Compound
from lease_kernel.models.tenant import Tenant, TenantStatus
from lease_kernel.services.audit_emitter import snapshot
from lease_kernel.services.base import BaseService

logger = get_logger("services.property")

_APARTMENT_FIELDS = ("compound_id", "unit_number", "monthly_rent", "status")
_TENANT_FIELDS = ("first_name", "last_name", "email", "status")


class PropertyService(BaseService):
    """Compounds and apartments."""

    def get_compound(self, ctx: TenancyContext, compound_id: UUID) -> Compound:
        return self._guard.get(ctx, Compound, compound_id)

    def get_apartment(self, ctx: TenancyContext, apartment_id: UUID, include_deleted: bool = False) -> Apartment:
        return self._guard.get(ctx, Apartment, apartment_id, include_deleted=include_deleted)

    def list_apartments(
        self,
        ctx: TenancyContext,
        compound_id: UUID | None = None,
        status: ApartmentStatus | None = None,
    ) -> list[Apartment]:
        stmt = self._guard.scoped(ctx, Apartment)
        if compound_id is not None:
            stmt = stmt.where(Apartment.compound_id == compound_id)
        if status is not None:
            stmt = stmt.where(Apartment.status == ApartmentStatus(status))
        return list(self._session.execute(stmt.order_by(Apartment.unit_number)).scalars())

    def create_compound(
        self,
        ctx: TenancyContext,
        name: str,
        address: str | None = None,
        city: str | None = None,
    ) -> Compound:
        with self._unit_of_work(ctx, "compound_create"):
            self._guard.require_writable(ctx)
            compound = Compound(
                company_id=ctx.company_id,
                name=name,
                address=address,
                city=city,
                created_by_id=ctx.actor_id,
            )
            self._session.add(compound)
            self._session.flush()
            self._audit.record(ctx, "Compound", compound.id, "create",
                               after=snapshot(compound, ("name", "city")))
        return compound

    def create_apartment(
        self,
        ctx: TenancyContext,
        compound_id: UUID,
        unit_number: str,
        monthly_rent: Decimal | None = None,
        floor: int | None = None,
        bedrooms: int | None = None,
    ) -> Apartment:
        """
        Create an available apartment in one of the company's compounds.

        Raises:
            CrossTenantReferenceError: The compound belongs to another company.
            DuplicateValueError: unit_number already exists in the compound.
        """
        rent = to_money(monthly_rent, "monthly_rent") if monthly_rent is not None else None
        if rent is not None and rent <= 0:
            raise InvalidAmountError("monthly_rent", rent)

        with self._unit_of_work(ctx, "apartment_create"):
            self._guard.require_writable(ctx)
            compound = self._guard.get_reference(ctx, Compound, compound_id)
            apartment = Apartment(
                company_id=ctx.company_id,
                compound_id=compound.id,
                unit_number=unit_number,
                monthly_rent=rent,
                floor=floor,
                bedrooms=bedrooms,
                status=ApartmentStatus.AVAILABLE,
                created_by_id=ctx.actor_id,
            )
            self._session.add(apartment)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateValueError("Apartment", "unit_number", unit_number) from exc
            self._audit.record(ctx, "Apartment", apartment.id, "create",
                               after=snapshot(apartment, _APARTMENT_FIELDS))

        logger.info(
            "apartment_created",
            extra={"apartment_id": str(apartment.id), "unit_number": unit_number},
        )
        return apartment

    def set_apartment_status(
        self,
        ctx: TenancyContext,
        apartment_id: UUID,
        status: ApartmentStatus | str,
    ) -> Apartment:
        """Move between available, maintenance and reserved."""
        target = ApartmentStatus(status)
        with self._unit_of_work(ctx, "apartment_set_status"):
            self._guard.require_writable(ctx)
            apartment = self._guard.get(ctx, Apartment, apartment_id, for_update=True)
            if target == ApartmentStatus.OCCUPIED or apartment.status == ApartmentStatus.OCCUPIED:
                raise InvalidTransitionError("Apartment", str(apartment.id), apartment.status, "set_status")
            if apartment.status == target:
                return apartment
            before = snapshot(apartment, _APARTMENT_FIELDS)
            apartment.status = target
            apartment.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Apartment", apartment.id, "status_change",
                               before=before, after=snapshot(apartment, _APARTMENT_FIELDS))
        return apartment

    def delete_apartment(self, ctx: TenancyContext, apartment_id: UUID) -> None:
        with self._unit_of_work(ctx, "apartment_delete"):
            self._guard.require_writable(ctx)
            apartment = self._guard.get(ctx, Apartment, apartment_id, for_update=True)
            if apartment.status == ApartmentStatus.OCCUPIED:
                raise ApartmentOccupiedError(str(apartment.id))
            self._soft_delete.soft_delete(apartment, ctx.actor_id)
            self._audit.record(ctx, "Apartment", apartment.id, "delete",
                               before=snapshot(apartment, _APARTMENT_FIELDS))

    def restore_apartment(self, ctx: TenancyContext, apartment_id: UUID) -> Apartment:
        with self._unit_of_work(ctx, "apartment_restore"):
            self._guard.require_writable(ctx)
            apartment = self._guard.get(ctx, Apartment, apartment_id, include_deleted=True)
            if apartment.deleted_at is None:
                return apartment
            self._guard.get_reference(ctx, Compound, apartment.compound_id)
            self._soft_delete.restore(apartment, ctx.actor_id)
            self._audit.record(ctx, "Apartment", apartment.id, "restore",
                               after=snapshot(apartment, _APARTMENT_FIELDS))
        return apartment


class ResidentService(BaseService):
    """Residents (the Tenant model)."""

    def get(self, ctx: TenancyContext, tenant_id: UUID, include_deleted: bool = False) -> Tenant:
        return self._guard.get(ctx, Tenant, tenant_id, include_deleted=include_deleted)

    def find_by_email(self, ctx: TenancyContext, email: str) -> Tenant | None:
        return self._session.execute(
            select(Tenant).where(
                Tenant.company_id == ctx.company_id,
                Tenant.email == email.strip().lower(),
            )
        ).scalar_one_or_none()

    def create_resident(
        self,
        ctx: TenancyContext,
        first_name: str,
        last_name: str,
        email: str,
        phone: str | None = None,
        id_number: str | None = None,
    ) -> Tenant:
        """
        Create an active resident.

        Emails are stored lower-cased and are unique within the company,
        soft-deleted residents included.
        """
        normalized = email.strip().lower()
        with self._unit_of_work(ctx, "resident_create"):
            self._guard.require_writable(ctx)
            if self.find_by_email(ctx, normalized) is not None:
                raise DuplicateValueError("Tenant", "email", normalized)
            tenant = Tenant(
                company_id=ctx.company_id,
                first_name=first_name,
                last_name=last_name,
                email=normalized,
                phone=phone,
                id_number=id_number,
                status=TenantStatus.ACTIVE,
                created_by_id=ctx.actor_id,
            )
            self._session.add(tenant)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateValueError("Tenant", "email", normalized) from exc
            self._audit.record(ctx, "Tenant", tenant.id, "create",
                               after=snapshot(tenant, _TENANT_FIELDS))

        logger.info("resident_created", extra={"tenant_id": str(tenant.id)})
        return tenant

    def set_resident_status(self, ctx: TenancyContext, tenant_id: UUID, status: TenantStatus | str) -> Tenant:
        target = TenantStatus(status)
        with self._unit_of_work(ctx, "resident_set_status"):
            self._guard.require_writable(ctx)
            tenant = self._guard.get(ctx, Tenant, tenant_id, for_update=True)
            if tenant.status == target:
                return tenant
            before = snapshot(tenant, _TENANT_FIELDS)
            tenant.status = target
            tenant.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Tenant", tenant.id, "status_change",
                               before=before, after=snapshot(tenant, _TENANT_FIELDS))
        return tenant

    def _has_active_occupancy(self, ctx: TenancyContext, tenant_id: UUID) -> bool:
        stmt = self._guard.scoped(ctx, Occupancy).where(
            Occupancy.tenant_id == tenant_id,
            Occupancy.status == OccupancyStatus.ACTIVE,
        )
        return self._session.execute(stmt.limit(1)).first() is not None

    def delete_resident(self, ctx: TenancyContext, tenant_id: UUID) -> None:
        with self._unit_of_work(ctx, "resident_delete"):
            self._guard.require_writable(ctx)
            tenant = self._guard.get(ctx, Tenant, tenant_id, for_update=True)
            if self._has_active_occupancy(ctx, tenant.id):
                raise TenantHasActiveOccupancyError(str(tenant.id))
            self._soft_delete.soft_delete(tenant, ctx.actor_id)
            self._audit.record(ctx, "Tenant", tenant.id, "delete",
                               before=snapshot(tenant, _TENANT_FIELDS))

    def restore_resident(self, ctx: TenancyContext, tenant_id: UUID) -> Tenant:
        with self._unit_of_work(ctx, "resident_restore"):
            self._guard.require_writable(ctx)
            tenant = self._guard.get(ctx, Tenant, tenant_id, include_deleted=True)
            if tenant.deleted_at is None:
                return tenant
            self._soft_delete.restore(tenant, ctx.actor_id)
            self._audit.record(ctx, "Tenant", tenant.id, "restore",
                               after=snapshot(tenant, _TENANT_FIELDS))
        return tenant
