"""ORM models for the lease kernel."""

from lease_kernel.models.company import Company
from lease_kernel.models.invoice import Invoice, InvoiceLineItem, InvoiceStatus
from lease_kernel.models.occupancy import Occupancy, OccupancyStatus
from lease_kernel.models.payment import Payment, PaymentMethod
from lease_kernel.models.property import Apartment, ApartmentStatus, Compound
from lease_kernel.models.tenant import Tenant, TenantStatus
from lease_kernel.models.sequence import SequenceCounter

__all__ = [
    "Company",
    "Compound",
    "Apartment",
    "ApartmentStatus",
    "Tenant",
    "TenantStatus",
    "Occupancy",
    "OccupancyStatus",
    "Invoice",
    "InvoiceLineItem",
    "InvoiceStatus",
    "Payment",
    "PaymentMethod",
    "SequenceCounter",
]
