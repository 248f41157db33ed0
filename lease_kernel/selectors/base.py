"""
Module: lease_kernel.selectors.base
Responsibility: Base class for read-only selectors.  Selectors provide the
    query side used by the reminder and reporting collaborators.
Architecture position: Kernel > Selectors.  May import from db/, models/ and
    domain/.  MUST NOT import from services/ beyond TenancyGuard predicates.

Invariants enforced:
    - Read-only: selectors never add, flush, delete or commit.
    - Every query is company-scoped and excludes soft-deleted rows.
    - The caller owns the session and its transaction scope.
"""

from sqlalchemy.orm import Session

from lease_kernel.domain.clock import Clock, SystemClock
from lease_kernel.services.tenancy_guard import TenancyGuard


class BaseSelector:
    """
    Base class for all selectors.

    Contract:
        Selectors accept a Session from the caller, perform read-only
        queries, and return DTOs or computed results.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        self.session = session
        self.clock = clock or SystemClock()
        self.guard = TenancyGuard(session)
