"""
Change notifications (``fabshop_kernel.domain.notifications``).

Responsibility
--------------
Entity-and-id-tagged "something changed, re-fetch" hints for UI caches and
reporting consumers.  Events carry no entity data: consumers re-query.

Services record events into a per-session pending buffer while they work
(``record_change``).  The transaction owner publishes the buffer only after
a successful commit (``ChangeNotifier.publish_pending``) and discards it on
rollback (``discard_pending``), so a rolled-back mutation never produces a
notification.

Architecture position
---------------------
**Kernel domain layer**.  Knows nothing about transports; subscribers are
plain callables.

Failure modes
-------------
* A subscriber that raises is logged with its traceback and skipped.  The
  mutation is already committed and other subscribers still run.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Callable
from uuid import UUID

from fabshop_kernel.logging_config import get_logger

logger = get_logger("domain.notifications")

_PENDING_KEY = "fabshop_pending_changes"


class ChangeAction(str, Enum):
    CREATED = "created"
    UPDATED = "updated"
    DELETED = "deleted"


class ChangedEntity(str, Enum):
    BUDGET = "budget"
    SERVICE_ORDER = "service_order"
    TASK = "task"
    TIME_LOG = "time_log"
    INVOICE = "invoice"
    PARTY = "party"


@dataclass(frozen=True)
class ChangeEvent:
    """A re-fetch hint for one entity."""
    entity: ChangedEntity
    entity_id: UUID
    action: ChangeAction
    occurred_at: datetime


Subscriber = Callable[[ChangeEvent], Any]


def record_change(
    session,
    entity: ChangedEntity,
    entity_id: UUID,
    action: ChangeAction,
    occurred_at: datetime,
) -> None:
    """Buffer a change on the session until its owner commits."""
    session.info.setdefault(_PENDING_KEY, []).append(
        ChangeEvent(entity, entity_id, action, occurred_at)
    )


def pending_changes(session) -> tuple[ChangeEvent, ...]:
    return tuple(session.info.get(_PENDING_KEY, ()))


def discard_pending(session) -> int:
    """Drop buffered changes (after rollback). Returns how many were dropped."""
    return len(session.info.pop(_PENDING_KEY, []))


class ChangeNotifier:
    """
    In-process fan-out of committed change events.

    Contract:
        ``subscribe`` returns an unsubscribe callable.  ``publish`` delivers
        to every subscriber in registration order; duplicate events for the
        same (entity, id, action) within one publish are collapsed.
    """

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, subscriber: Subscriber) -> Callable[[], None]:
        with self._lock:
            self._subscribers.append(subscriber)

        def _unsubscribe() -> None:
            with self._lock:
                if subscriber in self._subscribers:
                    self._subscribers.remove(subscriber)

        return _unsubscribe

    def publish(self, events: list[ChangeEvent] | tuple[ChangeEvent, ...]) -> int:
        """Deliver events; returns the number of distinct events delivered."""
        seen: set[tuple] = set()
        distinct: list[ChangeEvent] = []
        for ev in events:
            key = (ev.entity, ev.entity_id, ev.action)
            if key not in seen:
                seen.add(key)
                distinct.append(ev)

        with self._lock:
            subscribers = list(self._subscribers)

        for ev in distinct:
            for subscriber in subscribers:
                try:
                    subscriber(ev)
                except Exception:
                    logger.exception(
                        "change_subscriber_failed",
                        extra={
                            "entity": ev.entity.value,
                            "entity_id": str(ev.entity_id),
                            "action": ev.action.value,
                        },
                    )
        if distinct:
            logger.debug(
                "changes_published",
                extra={"count": len(distinct), "subscribers": len(subscribers)},
            )
        return len(distinct)

    def publish_pending(self, session) -> int:
        """Publish and clear the session's buffered changes."""
        events = session.info.pop(_PENDING_KEY, [])
        return self.publish(events)
