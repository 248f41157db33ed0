"""
TenancyGuard -- company-scoped access on every read and write.

Responsibility:
    Resolves entities addressed by opaque ID and builds scoped query
    predicates.  Never trusts a client-supplied ID's implicit scope: the row
    is loaded unscoped and its company_id is compared with the context.

Architecture position:
    Kernel > Services.  Used by every service and selector; re-applied at
    each entity boundary (apartment, tenant, occupancy, invoice, payment),
    not only at the outermost request.

Invariants enforced:
    - Every default predicate is ``company_id = ctx.company_id AND
      deleted_at IS NULL``.  Soft-deleted rows appear only when the caller
      passes include_deleted=True.
    - A company mismatch is checked before the soft-delete filter, so a
      foreign row is always reported as CrossTenantAccessError.

Failure modes:
    - EntityNotFoundError: row missing, or soft-deleted without
      include_deleted.
    - CrossTenantAccessError: the addressed entity belongs to another
      company.  Fatal; never recovered inside the kernel.
    - CrossTenantReferenceError: a referenced entity (apartment, tenant,
      compound) belongs to another company.
    - CompanyInactiveError: write attempted under a deactivated company.
"""

from uuid import UUID

from sqlalchemy import Select, select
from sqlalchemy.orm import Session

from lease_kernel.db.base import CompanyScopedBase
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.exceptions import (
    CompanyInactiveError,
    CrossTenantAccessError,
    CrossTenantReferenceError,
    EntityNotFoundError,
)
from lease_kernel.logging_config import get_logger
from lease_kernel.models.company import Company

logger = get_logger("services.tenancy_guard")


class TenancyGuard:
    """Company-scoped entity resolution and query filtering."""

    def __init__(self, session: Session):
        self._session = session

    # ------------------------------------------------------------------
    # Predicates
    # ------------------------------------------------------------------

    @staticmethod
    def predicates(ctx: TenancyContext, model, include_deleted: bool = False) -> list:
        clauses = [model.company_id == ctx.company_id]
        if not include_deleted:
            clauses.append(model.deleted_at.is_(None))
        return clauses

    def scoped(self, ctx: TenancyContext, model, include_deleted: bool = False) -> Select:
        """SELECT of ``model`` restricted to the context's company."""
        return select(model).where(*self.predicates(ctx, model, include_deleted))

    # ------------------------------------------------------------------
    # Entity resolution
    # ------------------------------------------------------------------

    def _load(self, model, entity_id: UUID, for_update: bool):
        stmt = select(model).where(model.id == entity_id)
        if for_update:
            stmt = stmt.with_for_update()
        return self._session.execute(
            stmt.execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def get(
        self,
        ctx: TenancyContext,
        model: type[CompanyScopedBase],
        entity_id: UUID,
        *,
        include_deleted: bool = False,
        for_update: bool = False,
    ):
        """
        Load an entity the caller is addressing by ID.

        Raises:
            EntityNotFoundError, CrossTenantAccessError
        """
        entity = self._load(model, entity_id, for_update)
        if entity is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        if entity.company_id != ctx.company_id:
            logger.warning(
                "cross_tenant_access_blocked",
                extra={
                    "entity_type": model.__name__,
                    "entity_id": str(entity_id),
                    "owner_company_id": str(entity.company_id),
                },
            )
            raise CrossTenantAccessError(model.__name__, str(entity_id), str(ctx.company_id))
        if entity.deleted_at is not None and not include_deleted:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return entity

    def get_reference(
        self,
        ctx: TenancyContext,
        model: type[CompanyScopedBase],
        entity_id: UUID,
        *,
        for_update: bool = False,
    ):
        """
        Load an entity referenced by another entity being written.

        Raises:
            EntityNotFoundError, CrossTenantReferenceError
        """
        entity = self._load(model, entity_id, for_update)
        if entity is None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        if entity.company_id != ctx.company_id:
            logger.warning(
                "cross_tenant_reference_blocked",
                extra={
                    "entity_type": model.__name__,
                    "entity_id": str(entity_id),
                    "owner_company_id": str(entity.company_id),
                },
            )
            raise CrossTenantReferenceError(model.__name__, str(entity_id), str(ctx.company_id))
        if entity.deleted_at is not None:
            raise EntityNotFoundError(model.__name__, str(entity_id))
        return entity

    def require_ids_in_scope(self, ctx: TenancyContext, model, entity_ids) -> None:
        """
        Verify every ID belongs to the context's company.

        Missing IDs are ignored here; callers report them per item.
        """
        ids = list(entity_ids)
        if not ids:
            return
        rows = self._session.execute(
            select(model.id, model.company_id).where(model.id.in_(ids))
        ).all()
        for entity_id, company_id in rows:
            if company_id != ctx.company_id:
                logger.warning(
                    "cross_tenant_access_blocked",
                    extra={"entity_type": model.__name__, "entity_id": str(entity_id)},
                )
                raise CrossTenantAccessError(model.__name__, str(entity_id), str(ctx.company_id))

    # ------------------------------------------------------------------
    # Company
    # ------------------------------------------------------------------

    def company(self, ctx: TenancyContext) -> Company:
        company = self._session.get(Company, ctx.company_id, populate_existing=True)
        if company is None:
            raise EntityNotFoundError("Company", str(ctx.company_id))
        return company

    def require_writable(self, ctx: TenancyContext) -> Company:
        """Return the context's company, refusing writes when it is inactive."""
        company = self.company(ctx)
        if not company.is_active:
            raise CompanyInactiveError(str(ctx.company_id))
        return company
