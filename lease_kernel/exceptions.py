"""
Typed Exception Hierarchy for the Lease Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Leasing and billing errors are handled by type, never by message text.
Every exception:
  1. Has its own class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (not just a message string)

Example:
    try:
        ledger.apply_payment(ctx, invoice_id, amount, paid_at, method)
    except OverpaymentError as e:
        api_response(code=e.code, outstanding=e.outstanding)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

All exceptions inherit from LeaseKernelError:

    LeaseKernelError (base)
    |
    +-- TenancyError
    |   +-- CrossTenantAccessError
    |   +-- CrossTenantReferenceError
    |   +-- CompanyInactiveError
    |   +-- EntityNotFoundError
    |
    +-- ValidationError
    |   +-- InvalidDateRangeError
    |   +-- InvalidLineItemError
    |   +-- InvalidAmountError
    |   +-- InvalidBillingMonthError
    |   +-- DuplicateValueError
    |
    +-- LifecycleError
    |   +-- InvalidTransitionError
    |
    +-- OccupancyError
    |   +-- ApartmentNotAvailableError
    |   +-- ApartmentOccupiedError
    |   +-- TenantHasActiveOccupancyError
    |   +-- OccupancyNotBillableError
    |   +-- DepositExceedsRequiredError
    |   +-- LeaseDatesLockedError
    |
    +-- InvoiceError
    |   +-- DuplicateInvoicePeriodError
    |   +-- InvoiceHasPaymentsError
    |   +-- InvoiceCancelledError
    |
    +-- PaymentError
    |   +-- OverpaymentError
    |
    +-- CurrencyError
    |   +-- UnsupportedCurrencyError
    |
    +-- ConcurrencyError
    |   +-- OptimisticLockError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- JobError
        +-- UnknownJobTypeError
        +-- InvalidJobPayloadError

===============================================================================
PROPAGATION
===============================================================================

- Validation errors are raised before any write.
- CrossTenantAccessError is always fatal for the request.  Nothing in the
  kernel catches it; bulk generation lets it abort the whole call.
- DuplicateInvoicePeriodError reaches single-invoice callers directly.
  Inside bulk generation it is reclassified into the result's
  skipped/failed buckets.
- ConcurrencyError is the only category a caller may blindly retry.
"""


class LeaseKernelError(Exception):
    """Base exception for all lease kernel errors."""

    code: str = "LEASE_KERNEL_ERROR"


# Tenancy-related exceptions


class TenancyError(LeaseKernelError):
    """Base exception for tenancy scoping errors."""

    code: str = "TENANCY_ERROR"


class CrossTenantAccessError(TenancyError):
    """An entity addressed by ID belongs to a different company."""

    code: str = "CROSS_TENANT_ACCESS"

    def __init__(self, entity_type: str, entity_id: str, company_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.company_id = company_id
        super().__init__(
            f"{entity_type} {entity_id} is not accessible from company {company_id}"
        )


class CrossTenantReferenceError(TenancyError):
    """A referenced entity (apartment, tenant, compound) is owned by another company."""

    code: str = "CROSS_TENANT_REFERENCE"

    def __init__(self, entity_type: str, entity_id: str, company_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.company_id = company_id
        super().__init__(
            f"Referenced {entity_type} {entity_id} does not belong to company {company_id}"
        )


class CompanyInactiveError(TenancyError):
    """Writes are refused while the owning company is deactivated."""

    code: str = "COMPANY_INACTIVE"

    def __init__(self, company_id: str):
        self.company_id = company_id
        super().__init__(f"Company {company_id} is inactive")


class EntityNotFoundError(TenancyError):
    """Entity does not exist or is soft-deleted."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Validation exceptions


class ValidationError(LeaseKernelError):
    """Base exception for input validation errors."""

    code: str = "VALIDATION_ERROR"


class InvalidDateRangeError(ValidationError):
    """A date range is inverted (end before start)."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, field: str, start, end):
        self.field = field
        self.start = start
        self.end = end
        super().__init__(f"Invalid {field}: {end} is before {start}")


class InvalidLineItemError(ValidationError):
    """A line item or invoice total fails arithmetic validation."""

    code: str = "INVALID_LINE_ITEM"

    def __init__(self, reason: str, index: int | None = None):
        self.reason = reason
        self.index = index
        where = f" (line {index})" if index is not None else ""
        super().__init__(f"Invalid line item{where}: {reason}")


class InvalidAmountError(ValidationError):
    """A monetary amount is zero, negative or otherwise unusable."""

    code: str = "INVALID_AMOUNT"

    def __init__(self, field: str, amount):
        self.field = field
        self.amount = amount
        super().__init__(f"Invalid {field}: {amount}")


class InvalidBillingMonthError(ValidationError):
    """Billing month is not a valid YYYY-MM value or due day is out of range."""

    code: str = "INVALID_BILLING_MONTH"

    def __init__(self, value, reason: str = "expected YYYY-MM"):
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid billing month {value!r}: {reason}")


class DuplicateValueError(ValidationError):
    """A value that must be unique within its scope already exists."""

    code: str = "DUPLICATE_VALUE"

    def __init__(self, entity_type: str, field: str, value: str):
        self.entity_type = entity_type
        self.field = field
        self.value = value
        super().__init__(f"{entity_type} with {field}={value!r} already exists")


# Lifecycle exceptions


class LifecycleError(LeaseKernelError):
    """Base exception for state machine errors."""

    code: str = "LIFECYCLE_ERROR"


class InvalidTransitionError(LifecycleError):
    """The requested transition is not allowed from the current state."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, entity_type: str, entity_id: str, from_status: str, action: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.from_status = from_status
        self.action = action
        super().__init__(
            f"Cannot {action} {entity_type} {entity_id} in status '{from_status}'"
        )


# Occupancy-related exceptions


class OccupancyError(LeaseKernelError):
    """Base exception for occupancy and apartment binding errors."""

    code: str = "OCCUPANCY_ERROR"


class ApartmentNotAvailableError(OccupancyError):
    """Apartment already has an active occupancy."""

    code: str = "APARTMENT_NOT_AVAILABLE"

    def __init__(self, apartment_id: str, active_occupancy_id: str | None = None):
        self.apartment_id = apartment_id
        self.active_occupancy_id = active_occupancy_id
        super().__init__(f"Apartment {apartment_id} already has an active occupancy")


class ApartmentOccupiedError(OccupancyError):
    """Apartment cannot be deleted or manually re-statused while occupied."""

    code: str = "APARTMENT_OCCUPIED"

    def __init__(self, apartment_id: str):
        self.apartment_id = apartment_id
        super().__init__(f"Apartment {apartment_id} is occupied")


class TenantHasActiveOccupancyError(OccupancyError):
    """Resident cannot be deleted while bound to an active occupancy."""

    code: str = "TENANT_HAS_ACTIVE_OCCUPANCY"

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        super().__init__(f"Tenant {tenant_id} has an active occupancy")


class OccupancyNotBillableError(OccupancyError):
    """Occupancy is not active or its lease does not cover the billing month."""

    code: str = "OCCUPANCY_NOT_BILLABLE"

    def __init__(self, occupancy_id: str, reason: str):
        self.occupancy_id = occupancy_id
        self.reason = reason
        super().__init__(f"Occupancy {occupancy_id} is not billable: {reason}")


class DepositExceedsRequiredError(OccupancyError):
    """Deposit paid would exceed the required security deposit."""

    code: str = "DEPOSIT_EXCEEDS_REQUIRED"

    def __init__(self, occupancy_id: str | None, security_deposit, deposit_paid):
        self.occupancy_id = occupancy_id
        self.security_deposit = security_deposit
        self.deposit_paid = deposit_paid
        super().__init__(
            f"Deposit paid {deposit_paid} exceeds required deposit {security_deposit}"
        )


class LeaseDatesLockedError(OccupancyError):
    """Lease dates can no longer change (move-out recorded or lease terminal)."""

    code: str = "LEASE_DATES_LOCKED"

    def __init__(self, occupancy_id: str, status: str):
        self.occupancy_id = occupancy_id
        self.status = status
        super().__init__(
            f"Lease dates of occupancy {occupancy_id} are locked (status '{status}')"
        )


# Invoice-related exceptions


class InvoiceError(LeaseKernelError):
    """Base exception for invoice errors."""

    code: str = "INVOICE_ERROR"


class DuplicateInvoicePeriodError(InvoiceError):
    """An invoice already exists for this occupancy and billing period."""

    code: str = "DUPLICATE_INVOICE_PERIOD"

    def __init__(self, occupancy_id: str, billing_period: str, existing_invoice_id: str | None = None):
        self.occupancy_id = occupancy_id
        self.billing_period = billing_period
        self.existing_invoice_id = existing_invoice_id
        super().__init__(
            f"Invoice already exists for occupancy {occupancy_id} period {billing_period}"
        )


class InvoiceHasPaymentsError(InvoiceError):
    """Invoice (or its occupancy) cannot be cancelled or deleted once money has moved."""

    code: str = "INVOICE_HAS_PAYMENTS"

    def __init__(self, invoice_id: str, amount_paid):
        self.invoice_id = invoice_id
        self.amount_paid = amount_paid
        super().__init__(f"Invoice {invoice_id} has payments totalling {amount_paid}")


class InvoiceCancelledError(InvoiceError):
    """Payments cannot be applied to a cancelled invoice."""

    code: str = "INVOICE_CANCELLED"

    def __init__(self, invoice_id: str):
        self.invoice_id = invoice_id
        super().__init__(f"Invoice {invoice_id} is cancelled")


# Payment-related exceptions


class PaymentError(LeaseKernelError):
    """Base exception for payment errors."""

    code: str = "PAYMENT_ERROR"


class OverpaymentError(PaymentError):
    """Payment would push amount_paid above total_amount."""

    code: str = "OVERPAYMENT"

    def __init__(self, invoice_id: str, amount, amount_paid, total_amount):
        self.invoice_id = invoice_id
        self.amount = amount
        self.amount_paid = amount_paid
        self.total_amount = total_amount
        self.outstanding = total_amount - amount_paid
        super().__init__(
            f"Payment of {amount} exceeds outstanding balance {self.outstanding} "
            f"on invoice {invoice_id}"
        )


# Currency-related exceptions


class CurrencyError(LeaseKernelError):
    """Base exception for currency errors."""

    code: str = "CURRENCY_ERROR"


class UnsupportedCurrencyError(CurrencyError):
    """Currency code is outside the supported set."""

    code: str = "UNSUPPORTED_CURRENCY"

    def __init__(self, currency):
        self.currency = currency
        super().__init__(f"Unsupported currency: {currency!r}")


# Concurrency-related exceptions


class ConcurrencyError(LeaseKernelError):
    """Base exception for concurrency errors."""

    code: str = "CONCURRENCY_ERROR"


class OptimisticLockError(ConcurrencyError):
    """Concurrent modification detected and retries were exhausted."""

    code: str = "OPTIMISTIC_LOCK_CONFLICT"

    def __init__(self, entity_type: str, entity_id: str, attempts: int):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.attempts = attempts
        super().__init__(
            f"Concurrent modification of {entity_type} {entity_id} "
            f"after {attempts} attempt(s)"
        )


# Immutability exceptions


class ImmutabilityError(LeaseKernelError):
    """Base exception for immutability violations."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """Attempted to modify or delete an immutable record or field."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Job exceptions


class JobError(LeaseKernelError):
    """Base exception for invoice job payload errors."""

    code: str = "JOB_ERROR"


class UnknownJobTypeError(JobError):
    """Queue payload names a job type outside the closed set."""

    code: str = "UNKNOWN_JOB_TYPE"

    def __init__(self, job_type):
        self.job_type = job_type
        super().__init__(f"Unknown invoice job type: {job_type!r}")


class InvalidJobPayloadError(JobError):
    """Queue payload is missing a field or carries an invalid value."""

    code: str = "INVALID_JOB_PAYLOAD"

    def __init__(self, job_type: str, field: str, reason: str):
        self.job_type = job_type
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid {job_type} payload field '{field}': {reason}")
