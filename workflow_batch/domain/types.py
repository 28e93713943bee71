"""
workflow_batch.domain.types -- Pure frozen dataclasses for the deadline sweep.

ZERO I/O.  Frozen dataclasses with enum status fields and tuples for
immutable collections.

Invariants enforced:
    - Every overdue request picked by a sweep has exactly one
      SweepItemResult in that sweep's SweepResult.
    - No-op outcomes and lost races count as success.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from uuid import UUID


class SweepItemStatus(str, Enum):
    """Per-request result of one sweep.

    The first six values mirror ``EscalationOutcome``; the rest are
    produced by the scheduler itself.
    """

    NOT_PENDING = "not_pending"  # Resolved by a human before the lock
    NOT_DUE = "not_due"  # Deadline moved or overdue already reported
    ESCALATED = "escalated"
    AUTO_ADVANCED = "auto_advanced"
    AUTO_COMPLETED = "auto_completed"
    OVERDUE_REPORTED = "overdue_reported"
    SUPERSEDED = "superseded"  # Lost the optimistic version race
    FAILED = "failed"  # Unexpected error, logged
    TIMED_OUT = "timed_out"  # Exceeded the per-record budget
    SKIPPED = "skipped"  # Not attempted because the scheduler is stopping

    @property
    def is_success(self) -> bool:
        return self not in (
            SweepItemStatus.FAILED,
            SweepItemStatus.TIMED_OUT,
            SweepItemStatus.SKIPPED,
        )

    @property
    def changed_state(self) -> bool:
        return self in (
            SweepItemStatus.ESCALATED,
            SweepItemStatus.AUTO_ADVANCED,
            SweepItemStatus.AUTO_COMPLETED,
            SweepItemStatus.OVERDUE_REPORTED,
        )


@dataclass(frozen=True)
class SweepItemResult:
    """Immutable result of handling one overdue request."""

    request_id: UUID
    status: SweepItemStatus
    reason: str = ""
    error_code: str | None = None
    error_message: str | None = None
    duration_ms: int = 0


@dataclass(frozen=True)
class SweepResult:
    """Immutable result of one ``DeadlineScheduler.tick()``."""

    sweep_id: UUID
    as_of: datetime
    items: tuple[SweepItemResult, ...] = ()
    duration_ms: int = 0

    @property
    def total(self) -> int:
        return len(self.items)

    @property
    def succeeded(self) -> int:
        return sum(1 for i in self.items if i.status.is_success)

    @property
    def failed(self) -> int:
        return sum(1 for i in self.items if i.status is SweepItemStatus.FAILED)

    @property
    def timed_out(self) -> int:
        return sum(1 for i in self.items if i.status is SweepItemStatus.TIMED_OUT)

    @property
    def changed(self) -> int:
        return sum(1 for i in self.items if i.status.changed_state)

    def by_status(self) -> dict[SweepItemStatus, int]:
        counts: dict[SweepItemStatus, int] = {}
        for item in self.items:
            counts[item.status] = counts.get(item.status, 0) + 1
        return counts
