"""
workflow_kernel.services.progression_service -- Step transition engine.

Responsibility:
    Submit requests against a workflow template and move them through
    their snapshotted steps: human decisions, cancellation, and the
    scheduler-driven escalation.  Authorization and field changes are
    computed by the pure planner in ``workflow_engines.progression``; this
    service loads, applies, records and queues.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the
    pure engines.

Invariants enforced:
    - Every state change goes through ``_apply_plan``: REQUEST_TRANSITIONS
      is checked, one history row is appended, at most one notification
      is queued, and the flush runs under the optimistic version check.
    - Per-record exclusivity: rows are loaded with SELECT ... FOR UPDATE
      and ``populate_existing``; a lost race surfaces as
      ConcurrentTransitionError (an InvalidStateError), never as a lost
      update.
    - Notifications leave the kernel only after the caller commits.
    - Templates are read once, at submission.

Failure modes:
    - RequestNotFoundError, InvalidStateError, ConcurrentTransitionError,
      ForbiddenError, ActionNotPermittedError from decide()/cancel().
    - TemplateNotFoundError, TemplateInactiveError from submit().
    - After ConcurrentTransitionError the session must be rolled back by
      the caller.
"""

from __future__ import annotations

import copy
from collections.abc import Iterable, Mapping
from datetime import datetime
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session
from sqlalchemy.orm.exc import StaleDataError

from workflow_engines.escalation import EscalationKind, resolve_escalation
from workflow_engines.progression import (
    TransitionPlan,
    arm_step,
    authorize_decision,
    plan_approval,
    plan_cancellation,
    plan_escalation,
    plan_rejection,
)
from workflow_engines.recipients import resolve_recipients
from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.workflow import (
    REQUEST_TRANSITIONS,
    ActingContext,
    EscalationOutcome,
    EscalationResult,
    HistoryAction,
    NotificationEvent,
    RequestInstance,
    RequestStatus,
    StepAction,
    WorkflowNotification,
)
from workflow_kernel.exceptions import (
    ConcurrentTransitionError,
    ForbiddenError,
    InvalidStateError,
    RequestNotFoundError,
    WorkflowKernelError,
)
from workflow_kernel.logging_config import LogContext, get_logger
from workflow_kernel.models.request import RequestHistoryModel, RequestInstanceModel
from workflow_kernel.services.base import BaseService
from workflow_kernel.services.notifications import (
    NotificationDispatcher,
    NotificationOutbox,
    default_dispatcher,
)
from workflow_kernel.services.template_service import TemplateService

logger = get_logger("services.progression")

_ESCALATION_OUTCOMES = {
    EscalationKind.REASSIGN: EscalationOutcome.ESCALATED,
    EscalationKind.OVERDUE: EscalationOutcome.OVERDUE_REPORTED,
}


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


class RequestProgressionService(BaseService):
    """Submission, decision, cancellation and escalation of requests.

    Args:
        session: Caller-owned session; this service only flushes.
        dispatcher: Notification collaborator.  Defaults to logging only.
        clock: Time source.  Defaults to the system clock.
        admin_roles: Roles allowed to cancel any request.
        override_roles: Roles allowed to decide on any step.
    """

    def __init__(
        self,
        session: Session,
        dispatcher: NotificationDispatcher | None = None,
        clock: Clock | None = None,
        admin_roles: Iterable[str] = ("admin",),
        override_roles: Iterable[str] = (),
    ) -> None:
        super().__init__(session, clock)
        self._outbox = NotificationOutbox.for_session(
            session, dispatcher if dispatcher is not None else default_dispatcher,
        )
        self._admin_roles = frozenset(admin_roles)
        self._override_roles = frozenset(override_roles)

    # ------------------------------------------------------------------
    # Loading
    # ------------------------------------------------------------------

    def _load_for_update(self, request_id: UUID) -> RequestInstanceModel:
        model = self._session.execute(
            select(RequestInstanceModel)
            .where(RequestInstanceModel.id == request_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model

    def get_request(self, request_id: UUID) -> RequestInstance:
        """Read-only lookup."""
        model = self._session.get(RequestInstanceModel, request_id)
        if model is None:
            raise RequestNotFoundError(str(request_id))
        return model.to_dto()

    # ------------------------------------------------------------------
    # Submission
    # ------------------------------------------------------------------

    def submit(
        self,
        template_id: UUID | None,
        request_type: str,
        payload: Mapping[str, Any] | None,
        submitter_id: UUID,
        flow_id: str | None = None,
    ) -> RequestInstance:
        """Create a pending request snapshotted from a template.

        Exactly one of ``template_id`` and ``flow_id`` identifies the
        template.  The step list and notification mapping are deep-copied
        into the request; later template edits do not reach it.

        Raises:
            TemplateNotFoundError: No such template.
            TemplateInactiveError: Template is deactivated.
        """
        templates = TemplateService(self._session, self._clock)
        template = templates.resolve_for_submission(template_id=template_id, flow_id=flow_id)

        now = self._clock.now()
        first_step = template.steps[0]
        started_at, deadline = arm_step(first_step, now)

        model = RequestInstanceModel(
            request_type=request_type,
            template_id=template.template_id,
            template_version=template.version,
            submitter_id=submitter_id,
            payload=copy.deepcopy(dict(payload or {})),
            status=RequestStatus.PENDING.value,
            current_step_index=0,
            steps_snapshot=[s.to_dict() for s in template.steps],
            notifications={e: list(r) for e, r in template.notifications.items()},
            current_role=first_step.role,
            submitted_at=now,
            step_started_at=started_at,
            sla_deadline=deadline,
        )
        self._session.add(model)
        self._session.flush()

        request = model.to_dto()
        self._session.add(
            RequestHistoryModel(
                request_id=request.request_id,
                action=HistoryAction.SUBMIT.value,
                step_id=first_step.step_id,
                step_index=0,
                actor_id=submitter_id,
                details={
                    "flow_id": template.flow_id,
                    "template_version": template.version,
                    "sla_deadline": _iso(deadline),
                },
                performed_at=now,
                request_version=request.version,
            )
        )
        self._session.flush()

        self._outbox.enqueue(
            WorkflowNotification(
                event=NotificationEvent.ON_SUBMIT,
                request_id=request.request_id,
                step_id=first_step.step_id,
                recipient_roles=resolve_recipients(NotificationEvent.ON_SUBMIT, request),
                occurred_at=now,
            )
        )

        logger.info(
            "request_submitted",
            extra={
                "request_id": str(request.request_id),
                "request_type": request_type,
                "flow_id": template.flow_id,
                "template_version": template.version,
                "step_count": len(template.steps),
                "sla_deadline": _iso(deadline),
            },
        )
        return request

    # ------------------------------------------------------------------
    # Human transitions
    # ------------------------------------------------------------------

    def decide(
        self,
        request_id: UUID,
        action: StepAction | str,
        actor: ActingContext,
        comment: str = "",
        expected_step_id: str | None = None,
    ) -> RequestInstance:
        """Approve or reject the current step.

        ``expected_step_id`` guards against deciding on a step that moved
        on since the caller last looked.

        Raises:
            RequestNotFoundError, InvalidStateError, ForbiddenError,
            ActionNotPermittedError, ConcurrentTransitionError.
            ValueError if ``action`` is not approve/reject.
        """
        action = StepAction(action)
        with LogContext.bind(request_id=request_id, actor_id=actor.user_id):
            try:
                model = self._load_for_update(request_id)
                request = model.to_dto()
                step = authorize_decision(
                    request,
                    action,
                    actor,
                    override_roles=self._override_roles,
                    expected_step_id=expected_step_id,
                )
                now = self._clock.now()
                if action is StepAction.APPROVE:
                    plan = plan_approval(request, now)
                else:
                    plan = plan_rejection(request, now)
                result = self._apply_plan(
                    model, plan, now, actor=actor, comment=comment,
                )
            except WorkflowKernelError as exc:
                logger.warning(
                    "request_decision_refused",
                    extra={"action": action.value, "error_code": exc.code},
                )
                raise

            logger.info(
                "request_decided",
                extra={
                    "action": action.value,
                    "step_id": step.step_id,
                    "actor_role": actor.role,
                    "new_status": result.status.value,
                    "current_step_index": result.current_step_index,
                },
            )
            return result

    def cancel(
        self,
        request_id: UUID,
        actor: ActingContext,
        comment: str = "",
    ) -> RequestInstance:
        """Cancel a pending request.

        Allowed for the submitter and for admin roles.  No notification
        event is emitted.

        Raises:
            RequestNotFoundError, InvalidStateError, ForbiddenError,
            ConcurrentTransitionError.
        """
        with LogContext.bind(request_id=request_id, actor_id=actor.user_id):
            model = self._load_for_update(request_id)
            request = model.to_dto()

            if request.is_terminal:
                raise InvalidStateError(
                    str(request_id), request.status.value, "request is already terminal",
                )
            if actor.user_id != request.submitter_id and actor.role not in self._admin_roles:
                raise ForbiddenError(str(request_id), actor.role, "submitter or admin")

            now = self._clock.now()
            plan = plan_cancellation(request, now)
            result = self._apply_plan(model, plan, now, actor=actor, comment=comment)

            logger.info(
                "request_cancelled",
                extra={
                    "actor_role": actor.role,
                    "by_submitter": actor.user_id == request.submitter_id,
                    "step_id": plan.step_id,
                },
            )
            return result

    # ------------------------------------------------------------------
    # Scheduler transition
    # ------------------------------------------------------------------

    def escalate(self, request_id: UUID) -> EscalationResult:
        """Handle a lapsed deadline on the current step.

        Called by the deadline scheduler only.  Re-checks status and
        deadline under the row lock, so a request decided between the
        sweep query and this call comes back as a no-op outcome.
        """
        with LogContext.bind(request_id=request_id):
            model = self._load_for_update(request_id)
            request = model.to_dto()

            if request.is_terminal:
                return EscalationResult(
                    request, EscalationOutcome.NOT_PENDING,
                    f"Request is {request.status.value}",
                )

            now = self._clock.now()
            step = request.current_step
            decision = resolve_escalation(step, request, now)
            if decision.kind is EscalationKind.NONE:
                logger.debug("escalation_not_due", extra={"reason": decision.reason})
                return EscalationResult(request, EscalationOutcome.NOT_DUE, decision.reason)

            plan = plan_escalation(request, decision, now)
            if decision.kind is EscalationKind.SKIP:
                outcome = (
                    EscalationOutcome.AUTO_COMPLETED
                    if plan.is_terminal
                    else EscalationOutcome.AUTO_ADVANCED
                )
            else:
                outcome = _ESCALATION_OUTCOMES[decision.kind]

            result = self._apply_plan(
                model,
                plan,
                now,
                comment=decision.reason,
                details={
                    "outcome": outcome.value,
                    "from_role": request.effective_role,
                    "to_role": decision.new_role,
                    "lapsed_deadline": _iso(request.sla_deadline),
                    "new_deadline": _iso(plan.sla_deadline),
                },
            )

            logger.info(
                "request_escalated",
                extra={
                    "step_id": step.step_id,
                    "outcome": outcome.value,
                    "from_role": request.effective_role,
                    "to_role": decision.new_role,
                    "new_status": result.status.value,
                    "current_step_index": result.current_step_index,
                },
            )
            return EscalationResult(result, outcome, decision.reason)

    # ------------------------------------------------------------------
    # Apply
    # ------------------------------------------------------------------

    def _apply_plan(
        self,
        model: RequestInstanceModel,
        plan: TransitionPlan,
        as_of: datetime,
        actor: ActingContext | None = None,
        comment: str = "",
        details: dict[str, Any] | None = None,
    ) -> RequestInstance:
        """Write ``plan`` onto ``model``, record history and queue the event."""
        # a lost flush expires model; its attributes are unreadable afterwards
        request_id = model.id
        current = RequestStatus(model.status)
        if plan.status not in REQUEST_TRANSITIONS[current]:
            raise InvalidStateError(
                str(request_id),
                current.value,
                f"transition to {plan.status.value} is not allowed",
            )

        model.status = plan.status.value
        model.current_step_index = plan.current_step_index
        model.step_started_at = plan.step_started_at
        model.sla_deadline = plan.sla_deadline
        model.completed_at = plan.completed_at
        model.escalated_to = plan.escalated_to
        model.escalated_at = plan.escalated_at
        model.overdue_reported_at = plan.overdue_reported_at
        model.current_role = plan.current_role

        try:
            self._session.flush()
        except StaleDataError as exc:
            logger.warning("request_transition_lost_race", extra={"request_id": str(request_id)})
            raise ConcurrentTransitionError(str(request_id)) from exc

        # version was bumped by the flush above
        self._session.add(
            RequestHistoryModel(
                request_id=request_id,
                action=plan.history_action.value,
                step_id=plan.step_id,
                step_index=plan.step_index,
                actor_id=actor.user_id if actor is not None else None,
                actor_role=actor.role if actor is not None else None,
                comment=comment,
                details=details or {},
                performed_at=as_of,
                request_version=model.version,
            )
        )
        self._session.flush()

        if plan.event is not None:
            self._outbox.enqueue(
                WorkflowNotification(
                    event=plan.event,
                    request_id=request_id,
                    step_id=plan.step_id,
                    recipient_roles=plan.recipient_roles,
                    occurred_at=as_of,
                )
            )

        return model.to_dto()
