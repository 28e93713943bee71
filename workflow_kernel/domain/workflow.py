"""
Workflow domain types (``workflow_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the approval progression engine.  Defines the
request lifecycle state machine, the closed step-definition structure,
the request snapshot DTO, history and notification records.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``models/``, ``services/``, ``selectors/`` or outer layers.

Invariants enforced
-------------------
* Lifecycle state machine -- ``REQUEST_TRANSITIONS`` defines the only
  valid status edges.  Terminal states have no outgoing edges.
* Closed step shape -- ``StepDefinition.actions`` only holds
  ``StepAction`` members; unknown actions fail at parse time, not on the
  transition path.
* Snapshot -- ``RequestInstance.steps_snapshot`` is a tuple of frozen
  ``StepDefinition`` values; nothing in a request refers back to a live
  template.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any
from uuid import UUID

MAX_STEPS = 10


# =========================================================================
# Enumerations
# =========================================================================


class StepAction(str, Enum):
    """Decisions a human approver can take on a step."""

    APPROVE = "approve"
    REJECT = "reject"


class RequestStatus(str, Enum):
    """Request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    CANCELLED = "cancelled"


REQUEST_TRANSITIONS: dict[RequestStatus, frozenset[RequestStatus]] = {
    # pending -> pending is a step advance or an escalation re-arm
    RequestStatus.PENDING: frozenset({
        RequestStatus.PENDING,
        RequestStatus.APPROVED,
        RequestStatus.REJECTED,
        RequestStatus.CANCELLED,
    }),
    RequestStatus.APPROVED: frozenset(),
    RequestStatus.REJECTED: frozenset(),
    RequestStatus.CANCELLED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[RequestStatus] = frozenset({
    RequestStatus.APPROVED,
    RequestStatus.REJECTED,
    RequestStatus.CANCELLED,
})


class NotificationEvent(str, Enum):
    """Abstract events handed to the notification collaborator."""

    ON_SUBMIT = "onSubmit"
    ON_APPROVE = "onApprove"
    ON_REJECT = "onReject"
    ON_ESCALATE = "onEscalate"
    ON_OVERDUE = "onOverdue"


class HistoryAction(str, Enum):
    """Actions recorded in a request's history."""

    SUBMIT = "submit"
    APPROVE = "approve"
    REJECT = "reject"
    CANCEL = "cancel"
    ESCALATE = "escalate"
    SLA_TIMEOUT = "sla_timeout"
    AUTO_ADVANCE = "auto_advance"


class EscalationOutcome(str, Enum):
    """What a call to ``escalate()`` did."""

    NOT_PENDING = "not_pending"
    NOT_DUE = "not_due"
    ESCALATED = "escalated"
    AUTO_ADVANCED = "auto_advanced"
    AUTO_COMPLETED = "auto_completed"
    OVERDUE_REPORTED = "overdue_reported"

    @property
    def changed_state(self) -> bool:
        return self in (
            EscalationOutcome.ESCALATED,
            EscalationOutcome.AUTO_ADVANCED,
            EscalationOutcome.AUTO_COMPLETED,
        )


# =========================================================================
# Template types
# =========================================================================


@dataclass(frozen=True)
class StepDefinition:
    """One approval stage of a workflow template.

    ``sla_hours=None`` means the step has no deadline and is never picked
    up by the deadline sweep.  ``escalate_to`` is the single escalation
    target used when the deadline lapses.
    """

    step_id: str
    order: int
    role: str
    actions: tuple[StepAction, ...] = (StepAction.APPROVE, StepAction.REJECT)
    sla_hours: int | None = None
    required: bool = True
    escalate_to: str | None = None

    def permits(self, action: StepAction) -> bool:
        return action in self.actions

    def to_dict(self) -> dict[str, Any]:
        """JSON shape used for persisted snapshots and template rows."""
        return {
            "step_id": self.step_id,
            "order": self.order,
            "role": self.role,
            "actions": [a.value for a in self.actions],
            "sla_hours": self.sla_hours,
            "required": self.required,
            "on_timeout": (
                {"escalate_to": self.escalate_to}
                if self.escalate_to is not None
                else None
            ),
        }

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> StepDefinition:
        """Parse the JSON shape.

        Raises:
            KeyError: If ``step_id``, ``order`` or ``role`` is missing.
            ValueError: If an action is not a known ``StepAction``.
        """
        on_timeout = data.get("on_timeout") or {}
        escalate_to = on_timeout.get("escalate_to", data.get("escalate_to"))
        raw_actions = data.get("actions")
        actions = (
            tuple(StepAction(a) for a in raw_actions)
            if raw_actions is not None
            else (StepAction.APPROVE, StepAction.REJECT)
        )
        sla_hours = data.get("sla_hours")
        return cls(
            step_id=str(data["step_id"]),
            order=int(data["order"]),
            role=str(data["role"]),
            actions=actions,
            sla_hours=int(sla_hours) if sla_hours is not None else None,
            required=bool(data.get("required", True)),
            escalate_to=escalate_to,
        )


@dataclass(frozen=True)
class WorkflowTemplate:
    """A named, versioned, ordered list of step definitions.

    ``version`` increases on every step edit.  Requests record the
    version they were snapshotted from.
    """

    template_id: UUID
    flow_id: str
    name: str
    steps: tuple[StepDefinition, ...]
    description: str = ""
    notifications: dict[str, tuple[str, ...]] = field(default_factory=dict)
    is_active: bool = True
    version: int = 1
    created_at: datetime | None = None
    updated_at: datetime | None = None


# =========================================================================
# Request types
# =========================================================================


@dataclass(frozen=True)
class ActingContext:
    """Identity of the caller, established by the trust layer."""

    user_id: UUID
    role: str


@dataclass(frozen=True)
class RequestInstance:
    """Immutable snapshot of a request as stored.

    ``escalated_to`` is the escalation marker: when set it replaces the
    current step's role as the effective acting role.
    """

    request_id: UUID
    request_type: str
    template_id: UUID
    template_version: int
    submitter_id: UUID
    status: RequestStatus
    current_step_index: int
    steps_snapshot: tuple[StepDefinition, ...]
    payload: dict[str, Any] = field(default_factory=dict)
    notifications: dict[str, tuple[str, ...]] = field(default_factory=dict)
    submitted_at: datetime | None = None
    completed_at: datetime | None = None
    step_started_at: datetime | None = None
    sla_deadline: datetime | None = None
    escalated_to: str | None = None
    escalated_at: datetime | None = None
    overdue_reported_at: datetime | None = None
    version: int = 1

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES

    @property
    def current_step(self) -> StepDefinition | None:
        """The step awaiting a decision, or None once terminal."""
        if self.is_terminal:
            return None
        if not 0 <= self.current_step_index < len(self.steps_snapshot):
            return None
        return self.steps_snapshot[self.current_step_index]

    @property
    def effective_role(self) -> str | None:
        step = self.current_step
        if step is None:
            return None
        return self.escalated_to or step.role

    @property
    def is_final_step(self) -> bool:
        return self.current_step_index >= len(self.steps_snapshot) - 1


@dataclass(frozen=True)
class RequestHistoryEntry:
    """One append-only history row. Immutable.

    ``request_version`` is the request's version after the transition,
    so entries of one request are totally ordered.
    """

    entry_id: UUID
    request_id: UUID
    action: HistoryAction
    step_id: str | None = None
    step_index: int | None = None
    actor_id: UUID | None = None
    actor_role: str | None = None
    comment: str = ""
    metadata: dict[str, Any] = field(default_factory=dict)
    performed_at: datetime | None = None
    request_version: int | None = None


@dataclass(frozen=True)
class WorkflowNotification:
    """Abstract event for the notification collaborator."""

    event: NotificationEvent
    request_id: UUID
    step_id: str | None
    recipient_roles: tuple[str, ...]
    occurred_at: datetime | None = None


@dataclass(frozen=True)
class EscalationResult:
    """Result of one ``escalate()`` call."""

    request: RequestInstance
    outcome: EscalationOutcome
    reason: str = ""
