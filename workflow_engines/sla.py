"""
workflow_engines.sla -- Pure SLA deadline arithmetic.

Responsibility:
    Compute step deadlines from the moment a step became current, decide
    whether a deadline has lapsed, and classify a deadline against a
    warning window.

Architecture position:
    Engines -- pure calculation layer, zero I/O.  The current time is
    always passed in; nothing here reads a clock.

Invariants enforced:
    - deadline = started_at + sla_hours, or None when the step has no SLA.
    - A deadline has lapsed only when it is strictly in the past.
"""

from __future__ import annotations

from datetime import datetime, timedelta
from enum import Enum


class SLAState(str, Enum):
    """Position of a pending step relative to its deadline."""

    UNTIMED = "untimed"
    ON_TRACK = "on_track"
    AT_RISK = "at_risk"
    BREACHED = "breached"


def compute_deadline(started_at: datetime, sla_hours: int | None) -> datetime | None:
    """Deadline for a step that became current at ``started_at``.

    Raises:
        ValueError: If ``sla_hours`` is zero or negative.
    """
    if sla_hours is None:
        return None
    if sla_hours <= 0:
        raise ValueError(f"sla_hours must be positive, got {sla_hours}")
    return started_at + timedelta(hours=sla_hours)


def is_lapsed(deadline: datetime | None, as_of: datetime) -> bool:
    return deadline is not None and deadline < as_of


def hours_remaining(deadline: datetime | None, as_of: datetime) -> float | None:
    """Hours until the deadline (negative once breached), None if untimed."""
    if deadline is None:
        return None
    return (deadline - as_of).total_seconds() / 3600


def classify_sla(
    deadline: datetime | None,
    as_of: datetime,
    warning_hours: float = 4,
) -> SLAState:
    """Classify a deadline as untimed, on track, at risk or breached.

    ``at_risk`` covers the window ``[deadline - warning_hours, deadline]``.
    """
    if deadline is None:
        return SLAState.UNTIMED
    if is_lapsed(deadline, as_of):
        return SLAState.BREACHED
    if deadline - timedelta(hours=warning_hours) <= as_of:
        return SLAState.AT_RISK
    return SLAState.ON_TRACK
