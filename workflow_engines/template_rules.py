"""
workflow_engines.template_rules -- Workflow template validation.

Responsibility:
    Parse raw step records into ``StepDefinition`` values and check the
    structural rules a template must satisfy before it can be used.  Runs
    once, when a template is registered, edited or re-activated, so the
    transition path never re-validates template shape.

Architecture position:
    Engines -- pure calculation layer, zero I/O.

Failure modes:
    - Never raises for bad input: every problem is returned as a message.
      The template service turns a non-empty list into InvalidTemplateError.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any

from workflow_kernel.domain.workflow import (
    MAX_STEPS,
    NotificationEvent,
    StepDefinition,
)

_KNOWN_EVENTS = frozenset(e.value for e in NotificationEvent)


def parse_steps(
    raw_steps: Sequence[StepDefinition | Mapping[str, Any]],
) -> tuple[tuple[StepDefinition, ...], list[str]]:
    """Parse raw step records, collecting one message per bad record.

    Already-built StepDefinition values pass through untouched.  The
    result is ordered by ``order``.
    """
    steps: list[StepDefinition] = []
    errors: list[str] = []
    for position, raw in enumerate(raw_steps):
        if isinstance(raw, StepDefinition):
            steps.append(raw)
            continue
        if not isinstance(raw, Mapping):
            errors.append(f"Step {position}: expected a mapping, got {type(raw).__name__}")
            continue
        try:
            steps.append(StepDefinition.from_dict(dict(raw)))
        except KeyError as exc:
            errors.append(f"Step {position}: missing field {exc.args[0]!r}")
        except (TypeError, ValueError) as exc:
            errors.append(f"Step {position}: {exc}")
    return tuple(sorted(steps, key=lambda s: s.order)), errors


def validate_template(
    flow_id: str,
    name: str,
    steps: Sequence[StepDefinition],
    notifications: Mapping[str, Sequence[str]] | None = None,
) -> list[str]:
    """Return every rule violation; an empty list means the template is valid."""
    errors: list[str] = []

    if not flow_id or not flow_id.strip():
        errors.append("Flow ID is required")
    if not name or not name.strip():
        errors.append("Workflow name is required")

    if not steps:
        errors.append("At least one step is required")
    elif len(steps) > MAX_STEPS:
        errors.append(f"Maximum {MAX_STEPS} steps allowed, got {len(steps)}")

    seen_ids: set[str] = set()
    for step in steps:
        label = step.step_id or f"#{step.order}"
        if not step.step_id or not step.step_id.strip():
            errors.append(f"Step {label}: step_id is required")
        elif step.step_id in seen_ids:
            errors.append(f"Duplicate step_id: {step.step_id}")
        seen_ids.add(step.step_id)

        if not step.role or not step.role.strip():
            errors.append(f"Step {label}: role is required")
        if not step.actions:
            errors.append(f"Step {label}: at least one action is required")
        elif len(set(step.actions)) != len(step.actions):
            errors.append(f"Step {label}: duplicate actions")
        if step.sla_hours is not None and step.sla_hours <= 0:
            errors.append(f"Step {label}: sla_hours must be positive")
        if step.escalate_to is not None and not step.escalate_to.strip():
            errors.append(f"Step {label}: on_timeout.escalate_to must not be empty")

    if steps:
        orders = sorted(s.order for s in steps)
        start = orders[0]
        if start not in (0, 1) or orders != list(range(start, start + len(orders))):
            errors.append(
                f"Step order must be contiguous starting at 0 or 1, got {orders}"
            )

    for event, roles in (notifications or {}).items():
        if event not in _KNOWN_EVENTS:
            errors.append(f"Unknown notification event: {event}")
            continue
        if isinstance(roles, str) or any(not r or not str(r).strip() for r in roles):
            errors.append(f"Notification '{event}': recipients must be a list of roles")

    return errors
