"""
TenancyContext -- the explicit company scope threaded into every operation.

Derived upstream from authenticated identity.  Never stored in a global or
request-scoped container; every service method takes one as its first
argument.
"""

from dataclasses import dataclass
from uuid import UUID


@dataclass(frozen=True)
class TenancyContext:
    """Company scope and acting user for one request or job."""

    company_id: UUID
    actor_id: UUID
    correlation_id: str | None = None

    def log_fields(self) -> dict[str, str | None]:
        return {
            "company_id": str(self.company_id),
            "actor_id": str(self.actor_id),
            "correlation_id": self.correlation_id,
        }
