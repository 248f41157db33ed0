"""
Service layer for Company operations.

Manages the tenancy root: creation, currency changes and the
active/inactive switch that gates every child write.
"""

from uuid import UUID, uuid4

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError

from lease_kernel.domain.currency import validate_currency
from lease_kernel.domain.tenancy import TenancyContext
from lease_kernel.exceptions import DuplicateValueError
from lease_kernel.logging_config import get_logger
from lease_kernel.models.company import Company
from lease_kernel.services.audit_emitter import snapshot
from lease_kernel.services.base import BaseService

logger = get_logger("services.company")

_AUDIT_FIELDS = ("name", "slug", "currency", "is_active")


class CompanyService(BaseService):
    """
    Service for managing companies.

    Currency is validated against the closed SupportedCurrency set on every
    write; there is no runtime fallback to a default currency.
    """

    def get(self, ctx: TenancyContext) -> Company:
        return self._guard.company(ctx)

    def find_by_slug(self, slug: str) -> Company | None:
        return self._session.execute(
            select(Company).where(Company.slug == slug)
        ).scalar_one_or_none()

    def create(
        self,
        actor_id: UUID,
        name: str,
        slug: str,
        currency: str,
        email: str | None = None,
        phone: str | None = None,
    ) -> Company:
        """
        Create a company.

        Args:
            actor_id: User performing the operation.
            name: Display name.
            slug: Globally unique short name.
            currency: ISO 4217 code from SupportedCurrency.

        Returns:
            The new Company.

        Raises:
            UnsupportedCurrencyError: If currency is not supported.
            DuplicateValueError: If slug is taken.
        """
        code = validate_currency(currency)
        ctx = TenancyContext(company_id=uuid4(), actor_id=actor_id)

        with self._unit_of_work(ctx, "company_create"):
            if self.find_by_slug(slug) is not None:
                raise DuplicateValueError("Company", "slug", slug)
            company = Company(
                id=ctx.company_id,
                name=name,
                slug=slug,
                currency=code.value,
                email=email,
                phone=phone,
                is_active=True,
                created_by_id=actor_id,
            )
            self._session.add(company)
            try:
                self._session.flush()
            except IntegrityError as exc:
                raise DuplicateValueError("Company", "slug", slug) from exc
            self._audit.record(ctx, "Company", company.id, "create",
                               after=snapshot(company, _AUDIT_FIELDS))

        logger.info("company_created", extra={"slug": slug, "currency": code.value})
        return company

    def change_currency(self, ctx: TenancyContext, currency: str) -> Company:
        """Switch the company's currency.  Existing amounts are not converted."""
        code = validate_currency(currency)
        with self._unit_of_work(ctx, "company_change_currency"):
            company = self._guard.require_writable(ctx)
            if company.currency == code.value:
                return company
            before = snapshot(company, _AUDIT_FIELDS)
            company.currency = code.value
            company.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Company", company.id, "change_currency",
                               before=before, after=snapshot(company, _AUDIT_FIELDS))

        logger.info("company_currency_changed", extra={"currency": code.value})
        return company

    def _set_active(self, ctx: TenancyContext, active: bool) -> Company:
        action = "reactivate" if active else "deactivate"
        with self._unit_of_work(ctx, f"company_{action}"):
            company = self._guard.company(ctx)
            if company.is_active == active:
                return company
            before = snapshot(company, _AUDIT_FIELDS)
            company.is_active = active
            company.updated_by_id = ctx.actor_id
            self._session.flush()
            self._audit.record(ctx, "Company", company.id, action,
                               before=before, after=snapshot(company, _AUDIT_FIELDS))

        logger.info("company_reactivated" if active else "company_deactivated")
        return company

    def deactivate(self, ctx: TenancyContext) -> Company:
        """Block every child write with CompanyInactiveError; reads stay allowed."""
        return self._set_active(ctx, False)

    def reactivate(self, ctx: TenancyContext) -> Company:
        return self._set_active(ctx, True)
