"""
workflow_engines.recipients -- Notification recipient resolution.

Responsibility:
    Map an emitted event to the roles that should hear about it.  The
    request's notification snapshot wins when it names the event;
    otherwise a default derived from the transition applies.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
"""

from __future__ import annotations

from collections.abc import Iterable

from workflow_kernel.domain.workflow import NotificationEvent, RequestInstance


def _dedupe(roles: Iterable[str | None]) -> tuple[str, ...]:
    seen: dict[str, None] = {}
    for role in roles:
        if role:
            seen.setdefault(role, None)
    return tuple(seen)


def default_recipients(
    event: NotificationEvent,
    request: RequestInstance,
    *,
    next_role: str | None = None,
    escalation_target: str | None = None,
) -> tuple[str, ...]:
    """Recipients when the snapshot has no mapping for ``event``.

    ``request`` is the state before the transition.  ``next_role`` is the
    role of the step being armed by an approval (None on final approval).
    """
    if event is NotificationEvent.ON_SUBMIT:
        return _dedupe([request.effective_role])
    if event is NotificationEvent.ON_APPROVE:
        return _dedupe([next_role])
    if event is NotificationEvent.ON_ESCALATE:
        return _dedupe([escalation_target])
    if event is NotificationEvent.ON_OVERDUE:
        return _dedupe([request.effective_role])
    return ()


def resolve_recipients(
    event: NotificationEvent,
    request: RequestInstance,
    *,
    next_role: str | None = None,
    escalation_target: str | None = None,
) -> tuple[str, ...]:
    """Recipient roles for ``event``, order-preserving and de-duplicated."""
    configured = request.notifications.get(event.value)
    if configured is None:
        return default_recipients(
            event,
            request,
            next_role=next_role,
            escalation_target=escalation_target,
        )

    roles = list(configured)
    # The approver of the next step must always hear about an advance
    if event is NotificationEvent.ON_APPROVE and next_role:
        roles.append(next_role)
    return _dedupe(roles)
