"""
Module: workflow_kernel.selectors.request_selector
Responsibility: Read-only queries over requests and their history:
    filtered listings, the deadline sweep candidate query, SLA warnings,
    audit history and usage analytics.
Architecture position: Kernel > Selectors.  May import from models/,
    domain/ and selectors/base.py.

Invariants enforced:
    - Read-only: no mutation of queried data.
    - find_overdue() never returns a request whose overdue report for the
      current deadline was already emitted, so repeated sweeps do not
      re-report a stuck required step.
    - Listings are newest first; history is in request-version order.

Failure modes:
    - Returns empty collections (never raises) when nothing matches.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from uuid import UUID

from sqlalchemy import case, func, select

from workflow_kernel.domain.workflow import (
    RequestHistoryEntry,
    RequestInstance,
    RequestStatus,
)
from workflow_kernel.models.request import RequestHistoryModel, RequestInstanceModel
from workflow_kernel.selectors.base import BaseSelector

_PENDING = RequestStatus.PENDING.value


@dataclass(frozen=True)
class SLAWarning:
    """A pending request whose deadline falls inside the warning window."""

    request: RequestInstance
    hours_remaining: float


@dataclass(frozen=True)
class RequestAnalytics:
    """Counts and completion time over a submission window."""

    date_from: datetime
    date_to: datetime
    total_requests: int
    pending_count: int
    approved_count: int
    rejected_count: int
    cancelled_count: int
    avg_completion_hours: float | None

    @property
    def completed_count(self) -> int:
        return self.approved_count + self.rejected_count + self.cancelled_count


class RequestSelector(BaseSelector):
    """Query side for ``workflow_requests`` and ``workflow_request_history``."""

    def get(self, request_id: UUID) -> RequestInstance | None:
        model = self.session.get(RequestInstanceModel, request_id)
        return model.to_dto() if model is not None else None

    def list_requests(
        self,
        status: RequestStatus | None = None,
        request_type: str | None = None,
        submitter_id: UUID | None = None,
        pending_for_role: str | None = None,
        sla_breached_as_of: datetime | None = None,
        template_id: UUID | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[RequestInstance]:
        """Filtered listing, newest submission first.

        ``pending_for_role`` matches the effective acting role of the
        current step, so escalated requests list under the escalation
        target.  ``sla_breached_as_of`` keeps pending requests whose
        deadline is before that instant.
        """
        stmt = select(RequestInstanceModel)
        if status is not None:
            stmt = stmt.where(RequestInstanceModel.status == RequestStatus(status).value)
        if request_type is not None:
            stmt = stmt.where(RequestInstanceModel.request_type == request_type)
        if submitter_id is not None:
            stmt = stmt.where(RequestInstanceModel.submitter_id == submitter_id)
        if template_id is not None:
            stmt = stmt.where(RequestInstanceModel.template_id == template_id)
        if pending_for_role is not None:
            stmt = stmt.where(
                RequestInstanceModel.status == _PENDING,
                RequestInstanceModel.current_role == pending_for_role,
            )
        if sla_breached_as_of is not None:
            stmt = stmt.where(
                RequestInstanceModel.status == _PENDING,
                RequestInstanceModel.sla_deadline.is_not(None),
                RequestInstanceModel.sla_deadline < sla_breached_as_of,
            )

        stmt = (
            stmt.order_by(
                RequestInstanceModel.submitted_at.desc(),
                RequestInstanceModel.id,
            )
            .limit(limit)
            .offset(offset)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def find_overdue(self, as_of: datetime, limit: int = 500) -> list[UUID]:
        """IDs of pending requests whose deadline lapsed before ``as_of``.

        Oldest deadline first.  Requests already reported overdue for the
        current deadline are excluded.
        """
        stmt = (
            select(RequestInstanceModel.id)
            .where(
                RequestInstanceModel.status == _PENDING,
                RequestInstanceModel.sla_deadline.is_not(None),
                RequestInstanceModel.sla_deadline < as_of,
                RequestInstanceModel.overdue_reported_at.is_(None),
            )
            .order_by(RequestInstanceModel.sla_deadline, RequestInstanceModel.id)
            .limit(limit)
        )
        return list(self.session.execute(stmt).scalars())

    def sla_warnings(
        self,
        as_of: datetime,
        hours_before: float = 4,
    ) -> list[SLAWarning]:
        """Pending requests due within ``hours_before`` hours of ``as_of``."""
        window_end = as_of + timedelta(hours=hours_before)
        stmt = (
            select(RequestInstanceModel)
            .where(
                RequestInstanceModel.status == _PENDING,
                RequestInstanceModel.sla_deadline.is_not(None),
                RequestInstanceModel.sla_deadline >= as_of,
                RequestInstanceModel.sla_deadline <= window_end,
            )
            .order_by(RequestInstanceModel.sla_deadline)
        )
        warnings = []
        for model in self.session.execute(stmt).scalars():
            remaining = (model.sla_deadline - as_of).total_seconds() / 3600
            warnings.append(SLAWarning(model.to_dto(), round(remaining, 2)))
        return warnings

    def history(self, request_id: UUID) -> list[RequestHistoryEntry]:
        stmt = (
            select(RequestHistoryModel)
            .where(RequestHistoryModel.request_id == request_id)
            .order_by(RequestHistoryModel.request_version)
        )
        return [m.to_dto() for m in self.session.execute(stmt).scalars()]

    def analytics(
        self,
        date_from: datetime,
        date_to: datetime,
        template_id: UUID | None = None,
    ) -> RequestAnalytics:
        """Status counts and average completion hours for requests
        submitted in ``[date_from, date_to]``.
        """
        window = [
            RequestInstanceModel.submitted_at >= date_from,
            RequestInstanceModel.submitted_at <= date_to,
        ]
        if template_id is not None:
            window.append(RequestInstanceModel.template_id == template_id)

        def _count(status: RequestStatus):
            return func.count(case((RequestInstanceModel.status == status.value, 1)))

        row = self.session.execute(
            select(
                func.count(RequestInstanceModel.id),
                _count(RequestStatus.PENDING),
                _count(RequestStatus.APPROVED),
                _count(RequestStatus.REJECTED),
                _count(RequestStatus.CANCELLED),
            ).where(*window)
        ).one()

        # Duration arithmetic differs per dialect; average in Python.
        durations = self.session.execute(
            select(
                RequestInstanceModel.submitted_at,
                RequestInstanceModel.completed_at,
            ).where(*window, RequestInstanceModel.completed_at.is_not(None))
        ).all()
        avg_hours = None
        if durations:
            total_seconds = sum(
                (completed - submitted).total_seconds()
                for submitted, completed in durations
            )
            avg_hours = round(total_seconds / len(durations) / 3600, 2)

        return RequestAnalytics(
            date_from=date_from,
            date_to=date_to,
            total_requests=row[0],
            pending_count=row[1],
            approved_count=row[2],
            rejected_count=row[3],
            cancelled_count=row[4],
            avg_completion_hours=avg_hours,
        )
