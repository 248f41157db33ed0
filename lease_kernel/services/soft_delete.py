"""
SoftDeleteStore -- logical deletion shared by every company-scoped entity.

Sets and clears ``deleted_at``.  Business preconditions (occupied
apartment, invoice with payments, active lease) are checked by the owning
service BEFORE calling soft_delete(); this store never bypasses them.
"""

from uuid import UUID

from sqlalchemy.orm import Session

from lease_kernel.db.base import CompanyScopedBase
from lease_kernel.domain.clock import Clock
from lease_kernel.logging_config import get_logger

logger = get_logger("services.soft_delete")


class SoftDeleteStore:
    def __init__(self, session: Session, clock: Clock):
        self._session = session
        self._clock = clock

    @staticmethod
    def live(model):
        """Predicate selecting rows that are not soft-deleted."""
        return model.deleted_at.is_(None)

    def soft_delete(self, entity: CompanyScopedBase, actor_id: UUID) -> None:
        """Stamp deleted_at (no-op if already deleted)."""
        if entity.deleted_at is not None:
            return
        entity.deleted_at = self._clock.now()
        entity.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "entity_soft_deleted",
            extra={"entity_type": type(entity).__name__, "entity_id": str(entity.id)},
        )

    def restore(self, entity: CompanyScopedBase, actor_id: UUID) -> None:
        """Clear deleted_at (no-op if the entity is live)."""
        if entity.deleted_at is None:
            return
        entity.deleted_at = None
        entity.updated_by_id = actor_id
        self._session.flush()
        logger.info(
            "entity_restored",
            extra={"entity_type": type(entity).__name__, "entity_id": str(entity.id)},
        )
