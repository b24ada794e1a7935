"""
BaseService -- abstract base for all write-side services.

Responsibility:
    Common constructor and session-handling contract.  Services receive a
    SQLAlchemy ``Session`` and an injected ``Clock`` and use
    ``session.flush()`` -- never ``session.commit()``.  The caller
    (``WorkshopService`` or a test harness) owns commit/rollback.

Invariants enforced:
    - Flush-only: multi-step operations stay atomic because nothing below
      the transaction owner ends the transaction.
    - A lost optimistic-lock race surfaces as ``OptimisticLockError`` naming
      the entity, never as a raw ``StaleDataError``.
"""

from abc import ABC
from datetime import datetime
from typing import Generic, TypeVar
from uuid import UUID

from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from fabshop_kernel.db.base import Base
from fabshop_kernel.domain.clock import Clock, SystemClock
from fabshop_kernel.domain.notifications import (
    ChangeAction,
    ChangedEntity,
    record_change,
)
from fabshop_kernel.exceptions import OptimisticLockError

ModelType = TypeVar("ModelType", bound=Base)


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for all services.

    Guarantees:
        - The service never calls ``session.commit()`` or
          ``session.rollback()``; savepoints (``begin_nested``) are the only
          transaction control used below the facade.
    """

    def __init__(self, session: Session, clock: Clock | None = None):
        """
        Args:
            session: SQLAlchemy session for database operations.
            clock: Time source; defaults to the system clock.
        """
        self.session = session
        self.clock = clock or SystemClock()

    def _now(self) -> datetime:
        return self.clock.now_utc()

    def _flush(self, entity_type: str, entity_id: UUID | None) -> None:
        """Flush, translating version conflicts into OptimisticLockError."""
        try:
            self.session.flush()
        except StaleDataError as exc:
            raise OptimisticLockError(entity_type, str(entity_id)) from exc

    def _changed(
        self,
        entity: ChangedEntity,
        entity_id: UUID,
        action: ChangeAction = ChangeAction.UPDATED,
    ) -> None:
        record_change(self.session, entity, entity_id, action, self._now())
