"""
workflow_engines.progression -- Pure step transition planner.

Responsibility:
    Validate who may act on a request and compute the exact field changes
    each transition produces (approve, reject, cancel, escalation
    outcomes).  The persistence layer applies a ``TransitionPlan`` as-is.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain types, workflow_kernel
    exceptions and sibling engines.

Invariants enforced:
    - Authorization order: terminal/stale -> InvalidStateError, wrong role
      -> ForbiddenError, action not in step -> ActionNotPermittedError.
    - current_step_index only moves forward, by exactly one, and never
      after a terminal status.
    - completed_at is set iff the planned status is terminal.
    - Arming a step clears the escalation and overdue markers and derives
      the deadline from the arming instant.
    - Purity: ``as_of`` is always passed in.
"""

from __future__ import annotations

from collections.abc import Iterable
from dataclasses import dataclass
from datetime import datetime

from workflow_engines.escalation import EscalationDecision, EscalationKind
from workflow_engines.recipients import resolve_recipients
from workflow_engines.sla import compute_deadline
from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.workflow import (
    ActingContext,
    HistoryAction,
    NotificationEvent,
    RequestInstance,
    RequestStatus,
    StepAction,
    StepDefinition,
)
from workflow_kernel.exceptions import (
    ActionNotPermittedError,
    ForbiddenError,
    InvalidStateError,
)


@dataclass(frozen=True)
class TransitionPlan:
    """Every field a transition writes, plus what to record and emit.

    ``step_id``/``step_index`` identify the step that was acted on (before
    the transition), which is what history rows and events refer to.
    """

    status: RequestStatus
    current_step_index: int
    step_started_at: datetime | None
    sla_deadline: datetime | None
    history_action: HistoryAction
    step_id: str | None
    step_index: int
    completed_at: datetime | None = None
    escalated_to: str | None = None
    escalated_at: datetime | None = None
    overdue_reported_at: datetime | None = None
    event: NotificationEvent | None = None
    recipient_roles: tuple[str, ...] = ()
    current_role: str | None = None

    @property
    def is_terminal(self) -> bool:
        return self.status != RequestStatus.PENDING


def arm_step(step: StepDefinition, as_of: datetime) -> tuple[datetime, datetime | None]:
    """(step_started_at, sla_deadline) for a step becoming current at ``as_of``."""
    return as_of, compute_deadline(as_of, step.sla_hours)


def _require_pending(request: RequestInstance) -> StepDefinition:
    step = request.current_step
    if request.status != RequestStatus.PENDING or step is None:
        raise InvalidStateError(
            str(request.request_id),
            request.status.value,
            "request is already terminal",
        )
    return step


def authorize_decision(
    request: RequestInstance,
    action: StepAction,
    actor: ActingContext,
    override_roles: Iterable[str] = (),
    expected_step_id: str | None = None,
) -> StepDefinition:
    """Check that ``actor`` may take ``action`` on the current step.

    Returns:
        The current StepDefinition.

    Raises:
        InvalidStateError: Request is terminal, or ``expected_step_id`` no
            longer names the current step.
        ForbiddenError: ``actor.role`` is neither the effective role nor an
            override role.
        ActionNotPermittedError: ``action`` is not permitted on this step.
    """
    step = _require_pending(request)

    if expected_step_id is not None and expected_step_id != step.step_id:
        raise InvalidStateError(
            str(request.request_id),
            request.status.value,
            f"decision targets step '{expected_step_id}' "
            f"but current step is '{step.step_id}'",
        )

    effective_role = request.effective_role
    if actor.role != effective_role and actor.role not in set(override_roles):
        raise ForbiddenError(str(request.request_id), actor.role, effective_role)

    if not step.permits(action):
        raise ActionNotPermittedError(
            str(request.request_id),
            action.value,
            tuple(a.value for a in step.actions),
        )

    return step


@traced_engine("progression", "1.0")
def plan_approval(
    request: RequestInstance,
    as_of: datetime,
    history_action: HistoryAction = HistoryAction.APPROVE,
) -> TransitionPlan:
    """Approve the current step: advance to the next one or complete.

    Auto-advance of a timed-out optional step uses the same plan with
    ``history_action=HistoryAction.AUTO_ADVANCE``.
    """
    step = _require_pending(request)
    index = request.current_step_index

    if request.is_final_step:
        return TransitionPlan(
            status=RequestStatus.APPROVED,
            current_step_index=index,
            step_started_at=request.step_started_at,
            sla_deadline=request.sla_deadline,
            completed_at=as_of,
            escalated_to=request.escalated_to,
            escalated_at=request.escalated_at,
            overdue_reported_at=request.overdue_reported_at,
            history_action=history_action,
            step_id=step.step_id,
            step_index=index,
            event=NotificationEvent.ON_APPROVE,
            recipient_roles=resolve_recipients(NotificationEvent.ON_APPROVE, request),
        )

    next_step = request.steps_snapshot[index + 1]
    started_at, deadline = arm_step(next_step, as_of)
    return TransitionPlan(
        status=RequestStatus.PENDING,
        current_step_index=index + 1,
        step_started_at=started_at,
        sla_deadline=deadline,
        history_action=history_action,
        step_id=step.step_id,
        step_index=index,
        event=NotificationEvent.ON_APPROVE,
        recipient_roles=resolve_recipients(
            NotificationEvent.ON_APPROVE, request, next_role=next_step.role,
        ),
        current_role=next_step.role,
    )


@traced_engine("progression", "1.0")
def plan_rejection(request: RequestInstance, as_of: datetime) -> TransitionPlan:
    """Reject at the current step; the whole request terminates."""
    step = _require_pending(request)
    return TransitionPlan(
        status=RequestStatus.REJECTED,
        current_step_index=request.current_step_index,
        step_started_at=request.step_started_at,
        sla_deadline=request.sla_deadline,
        completed_at=as_of,
        escalated_to=request.escalated_to,
        escalated_at=request.escalated_at,
        overdue_reported_at=request.overdue_reported_at,
        history_action=HistoryAction.REJECT,
        step_id=step.step_id,
        step_index=request.current_step_index,
        event=NotificationEvent.ON_REJECT,
        recipient_roles=resolve_recipients(NotificationEvent.ON_REJECT, request),
    )


@traced_engine("progression", "1.0")
def plan_cancellation(request: RequestInstance, as_of: datetime) -> TransitionPlan:
    """Cancel from any pending state.  Cancellation emits no event."""
    step = _require_pending(request)
    return TransitionPlan(
        status=RequestStatus.CANCELLED,
        current_step_index=request.current_step_index,
        step_started_at=request.step_started_at,
        sla_deadline=request.sla_deadline,
        completed_at=as_of,
        escalated_to=request.escalated_to,
        escalated_at=request.escalated_at,
        overdue_reported_at=request.overdue_reported_at,
        history_action=HistoryAction.CANCEL,
        step_id=step.step_id,
        step_index=request.current_step_index,
    )


@traced_engine("progression", "1.0")
def plan_escalation(
    request: RequestInstance,
    decision: EscalationDecision,
    as_of: datetime,
) -> TransitionPlan:
    """Turn a resolver decision into a plan.

    Raises:
        ValueError: If ``decision.kind`` is ``none`` (nothing to apply).
        InvalidStateError: If the request is terminal.
    """
    step = _require_pending(request)
    index = request.current_step_index

    if decision.kind is EscalationKind.REASSIGN:
        return TransitionPlan(
            status=RequestStatus.PENDING,
            current_step_index=index,
            step_started_at=as_of,
            sla_deadline=decision.new_deadline,
            escalated_to=decision.new_role,
            escalated_at=as_of,
            history_action=HistoryAction.ESCALATE,
            step_id=step.step_id,
            step_index=index,
            event=NotificationEvent.ON_ESCALATE,
            recipient_roles=resolve_recipients(
                NotificationEvent.ON_ESCALATE,
                request,
                escalation_target=decision.new_role,
            ),
            current_role=decision.new_role,
        )

    if decision.kind is EscalationKind.SKIP:
        return plan_approval(request, as_of, HistoryAction.AUTO_ADVANCE)

    if decision.kind is EscalationKind.OVERDUE:
        return TransitionPlan(
            status=RequestStatus.PENDING,
            current_step_index=index,
            step_started_at=request.step_started_at,
            sla_deadline=request.sla_deadline,
            escalated_to=request.escalated_to,
            escalated_at=request.escalated_at,
            overdue_reported_at=as_of,
            history_action=HistoryAction.SLA_TIMEOUT,
            step_id=step.step_id,
            step_index=index,
            event=NotificationEvent.ON_OVERDUE,
            recipient_roles=resolve_recipients(NotificationEvent.ON_OVERDUE, request),
            current_role=request.effective_role,
        )

    raise ValueError(f"No transition for escalation kind '{decision.kind.value}'")
