"""
workflow_engines.escalation -- Pure escalation resolver.

Responsibility:
    Given the current step definition and the request snapshot, decide what
    a lapsed deadline means: reassign to the escalation target, skip an
    optional step, report an overdue required step, or nothing at all.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain types and sibling engines.

Invariants enforced:
    - Single hop: a step instance is escalated at most once.  Once
      ``escalated_to`` is set the step is treated as having no target.
    - An overdue report is produced once per step instance; after
      ``overdue_reported_at`` is set the resolver answers ``none``.
    - Re-armed deadline = as_of + the same sla_hours.
    - Purity: no clock access, no I/O, no database.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum

from workflow_engines.sla import compute_deadline, is_lapsed
from workflow_engines.tracer import traced_engine
from workflow_kernel.domain.workflow import (
    RequestInstance,
    RequestStatus,
    StepDefinition,
)


class EscalationKind(str, Enum):
    NONE = "none"
    REASSIGN = "reassign"
    SKIP = "skip"
    OVERDUE = "overdue"


@dataclass(frozen=True)
class EscalationDecision:
    """Outcome of :func:`resolve_escalation`.

    ``new_role`` and ``new_deadline`` are only populated for ``reassign``.
    """

    kind: EscalationKind
    new_role: str | None = None
    new_deadline: datetime | None = None
    reason: str = ""


@traced_engine("escalation", "1.0")
def resolve_escalation(
    step: StepDefinition,
    request: RequestInstance,
    as_of: datetime,
) -> EscalationDecision:
    """Decide what to do with ``step`` of ``request`` at ``as_of``.

    Args:
        step: The request's current step (from its snapshot).
        request: The request as currently stored.
        as_of: The instant the sweep is evaluating.

    Returns:
        EscalationDecision.  ``none`` covers every no-op case: request not
        pending, no deadline, deadline not lapsed, overdue already reported.
    """
    if request.status != RequestStatus.PENDING:
        return EscalationDecision(EscalationKind.NONE, reason="Request is not pending")

    if request.overdue_reported_at is not None:
        return EscalationDecision(
            EscalationKind.NONE,
            reason="Overdue already reported for this step",
        )

    if request.sla_deadline is None:
        return EscalationDecision(EscalationKind.NONE, reason="Step has no deadline")

    if not is_lapsed(request.sla_deadline, as_of):
        return EscalationDecision(EscalationKind.NONE, reason="Deadline has not lapsed")

    if step.escalate_to and request.escalated_to is None:
        return EscalationDecision(
            EscalationKind.REASSIGN,
            new_role=step.escalate_to,
            new_deadline=compute_deadline(as_of, step.sla_hours),
            reason=f"Reassigned from '{step.role}' to '{step.escalate_to}'",
        )

    already = " after escalation" if request.escalated_to is not None else ""

    if not step.required:
        return EscalationDecision(
            EscalationKind.SKIP,
            reason=f"Optional step '{step.step_id}' timed out{already}",
        )

    return EscalationDecision(
        EscalationKind.OVERDUE,
        reason=f"Required step '{step.step_id}' timed out{already} with no escalation target",
    )
