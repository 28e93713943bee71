"""
Module: workflow_engines
Responsibility:
    Package entrypoint re-exporting the pure calculation engines used by
    the progression service and the deadline scheduler.

Architecture position:
    Engines -- pure calculation layer, zero I/O.
    May only import workflow_kernel/domain, workflow_kernel.exceptions and
    sibling engine modules.  MUST NOT import services, models or selectors.

Invariants enforced:
    - Purity: engines never read a clock.  ``as_of`` is always a parameter.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from workflow_engines import resolve_escalation, plan_approval
    from workflow_engines.sla import compute_deadline
"""

from workflow_engines.escalation import (
    EscalationDecision,
    EscalationKind,
    resolve_escalation,
)
from workflow_engines.progression import (
    TransitionPlan,
    arm_step,
    authorize_decision,
    plan_approval,
    plan_cancellation,
    plan_escalation,
    plan_rejection,
)
from workflow_engines.recipients import default_recipients, resolve_recipients
from workflow_engines.sla import (
    SLAState,
    classify_sla,
    compute_deadline,
    hours_remaining,
    is_lapsed,
)
from workflow_engines.template_rules import parse_steps, validate_template

__all__ = [
    # Escalation
    "EscalationDecision",
    "EscalationKind",
    "resolve_escalation",
    # Progression
    "TransitionPlan",
    "arm_step",
    "authorize_decision",
    "plan_approval",
    "plan_rejection",
    "plan_cancellation",
    "plan_escalation",
    # Recipients
    "default_recipients",
    "resolve_recipients",
    # SLA
    "SLAState",
    "classify_sla",
    "compute_deadline",
    "hours_remaining",
    "is_lapsed",
    # Template rules
    "parse_steps",
    "validate_template",
]
