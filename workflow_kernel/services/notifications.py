"""
workflow_kernel.services.notifications -- Notification trigger boundary.

Responsibility:
    Define the dispatcher protocol that the notification collaborator
    implements, and a per-session outbox that hands queued events to the
    dispatcher only after the surrounding transaction commits.

Architecture position:
    Kernel > Services.  Delivery (email, chat, webhooks) is external; this
    module only decides WHEN an event leaves the kernel.

Invariants enforced:
    - No event for a transition that did not commit: events queued in a
      transaction that rolls back (or is closed without commit) are
      discarded.
    - Events are dispatched in the order they were queued.
    - A dispatcher failure never undoes a committed transition; it is
      logged and the remaining events are still dispatched.
"""

from __future__ import annotations

import threading
from typing import Protocol, runtime_checkable

from sqlalchemy import event
from sqlalchemy.orm import Session, SessionTransaction

from workflow_kernel.domain.workflow import WorkflowNotification
from workflow_kernel.logging_config import get_logger

logger = get_logger("services.notifications")


@runtime_checkable
class NotificationDispatcher(Protocol):
    """Collaborator that delivers abstract workflow events."""

    def dispatch(self, notification: WorkflowNotification) -> None:
        ...


class LoggingDispatcher:
    """Dispatcher that only logs.  Default when no collaborator is wired."""

    def dispatch(self, notification: WorkflowNotification) -> None:
        logger.info(
            "notification_emitted",
            extra={
                "event": notification.event.value,
                "request_id": str(notification.request_id),
                "step_id": notification.step_id,
                "recipient_roles": list(notification.recipient_roles),
            },
        )


# Services built without a dispatcher share this instance and its outbox
default_dispatcher = LoggingDispatcher()


class InMemoryDispatcher:
    """Dispatcher that records every event.  Thread-safe.

    Used by tests and by embedding callers that poll for events.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._events: list[WorkflowNotification] = []

    def dispatch(self, notification: WorkflowNotification) -> None:
        with self._lock:
            self._events.append(notification)

    @property
    def events(self) -> list[WorkflowNotification]:
        with self._lock:
            return list(self._events)

    def events_for(self, request_id) -> list[WorkflowNotification]:
        return [e for e in self.events if e.request_id == request_id]

    def clear(self) -> None:
        with self._lock:
            self._events.clear()


class NotificationOutbox:
    """Per-session queue of notifications awaiting commit.

    Obtain through :meth:`for_session`; one outbox exists per
    (session, dispatcher) pair and is stored in ``session.info``.
    """

    _INFO_KEY = "workflow_notification_outbox"

    def __init__(self, session: Session, dispatcher: NotificationDispatcher):
        self._dispatcher = dispatcher
        self._pending: list[WorkflowNotification] = []
        event.listen(session, "after_commit", self._after_commit)
        event.listen(session, "after_transaction_end", self._after_transaction_end)

    @classmethod
    def for_session(
        cls,
        session: Session,
        dispatcher: NotificationDispatcher,
    ) -> NotificationOutbox:
        outboxes = session.info.setdefault(cls._INFO_KEY, {})
        outbox = outboxes.get(id(dispatcher))
        if outbox is None:
            outbox = cls(session, dispatcher)
            outboxes[id(dispatcher)] = outbox
        return outbox

    @property
    def pending(self) -> tuple[WorkflowNotification, ...]:
        return tuple(self._pending)

    def enqueue(self, notification: WorkflowNotification) -> None:
        self._pending.append(notification)

    def _after_commit(self, session: Session) -> None:
        # Savepoint releases also fire after_commit; wait for the outer commit
        if session.in_nested_transaction():
            return
        pending, self._pending = self._pending, []
        for notification in pending:
            try:
                self._dispatcher.dispatch(notification)
            except Exception:
                logger.exception(
                    "notification_dispatch_failed",
                    extra={
                        "event": notification.event.value,
                        "request_id": str(notification.request_id),
                        "step_id": notification.step_id,
                    },
                )

    def _after_transaction_end(
        self,
        session: Session,
        transaction: SessionTransaction,
    ) -> None:
        # Runs after _after_commit on commit; anything left here never committed
        if transaction.parent is not None:
            return
        if self._pending:
            logger.debug(
                "notifications_discarded",
                extra={"count": len(self._pending)},
            )
            self._pending = []
