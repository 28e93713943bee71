"""
Module: workflow_kernel.models.request
Responsibility: ORM persistence for request instances and their
    append-only history.
Architecture position: Kernel > Models.  May import from db/base.py,
    domain/ and exceptions only.

Invariants enforced:
    - Lifecycle: DB check constraint limits status values; the
      progression service enforces REQUEST_TRANSITIONS; an ORM listener
      refuses any UPDATE of a row whose stored status is terminal.
    - Snapshot: steps_snapshot, notifications and the other submission
      fields are written once; a before_update listener refuses changes,
      including in-place edits of the JSON snapshot.
    - Optimistic concurrency: ``version`` is the mapper's version_id_col,
      so a flush against a row changed by another transaction raises
      StaleDataError instead of silently overwriting it.
    - History is append-only: UPDATE and DELETE raise
      ImmutabilityViolationError.

Failure modes:
    - ImmutabilityViolationError on UPDATE of a terminal request.
    - ImmutabilityViolationError on UPDATE of a submission field.
    - ImmutabilityViolationError on history UPDATE/DELETE.
    - sqlalchemy.orm.exc.StaleDataError on a lost update race.
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import (
    JSON,
    CheckConstraint,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    event,
    inspect,
    select,
)
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString
from workflow_kernel.exceptions import ImmutabilityViolationError

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import RequestHistoryEntry, RequestInstance

_TERMINAL_STATUS_VALUES = frozenset({"approved", "rejected", "cancelled"})


class RequestInstanceModel(Base):
    """Persistent request instance.

    Contract:
        Status transitions are lifecycle-constrained.  Terminal statuses
        (approved, rejected, cancelled) cannot be changed once set.

    Guarantees:
        - ``current_role`` mirrors the effective acting role while pending
          and is NULL once terminal, so pending-for-role listings are an
          indexed lookup.
    """

    __tablename__ = "workflow_requests"

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="ck_workflow_requests_valid_status",
        ),
        CheckConstraint(
            "current_step_index >= 0",
            name="ck_workflow_requests_step_index",
        ),
        # Deadline sweep: pending rows with a lapsed deadline
        Index("ix_workflow_requests_sla", "status", "sla_deadline"),
        Index("ix_workflow_requests_role", "current_role", "status"),
        Index("ix_workflow_requests_submitter", "submitter_id", "submitted_at"),
    )

    request_type: Mapped[str] = mapped_column(String(100), nullable=False)
    template_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_templates.id"),
        nullable=False,
    )
    template_version: Mapped[int] = mapped_column(nullable=False)
    submitter_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)
    payload: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="pending")
    current_step_index: Mapped[int] = mapped_column(nullable=False, default=0)
    steps_snapshot: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    notifications: Mapped[dict[str, list[str]]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    current_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    submitted_at: Mapped[datetime] = mapped_column(nullable=False)
    completed_at: Mapped[datetime | None] = mapped_column(nullable=True)
    step_started_at: Mapped[datetime | None] = mapped_column(nullable=True)
    sla_deadline: Mapped[datetime | None] = mapped_column(nullable=True)
    escalated_to: Mapped[str | None] = mapped_column(String(100), nullable=True)
    escalated_at: Mapped[datetime | None] = mapped_column(nullable=True)
    overdue_reported_at: Mapped[datetime | None] = mapped_column(nullable=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)

    __mapper_args__ = {"version_id_col": version}

    def __repr__(self) -> str:
        return (
            f"<RequestInstance {self.id} {self.request_type} "
            f"status={self.status} step={self.current_step_index}>"
        )

    def to_dto(self) -> RequestInstance:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import (
            RequestInstance as RequestDTO,
            RequestStatus,
            StepDefinition,
        )

        return RequestDTO(
            request_id=self.id,
            request_type=self.request_type,
            template_id=self.template_id,
            template_version=self.template_version,
            submitter_id=self.submitter_id,
            status=RequestStatus(self.status),
            current_step_index=self.current_step_index,
            steps_snapshot=tuple(StepDefinition.from_dict(s) for s in self.steps_snapshot),
            payload=dict(self.payload or {}),
            notifications={
                event: tuple(roles)
                for event, roles in (self.notifications or {}).items()
            },
            submitted_at=self.submitted_at,
            completed_at=self.completed_at,
            step_started_at=self.step_started_at,
            sla_deadline=self.sla_deadline,
            escalated_to=self.escalated_to,
            escalated_at=self.escalated_at,
            overdue_reported_at=self.overdue_reported_at,
            version=self.version,
        )


class RequestHistoryModel(Base):
    """Persistent history entry. Append-only.

    Contract:
        History rows are immutable once created -- no UPDATE, no DELETE.
    """

    __tablename__ = "workflow_request_history"

    __table_args__ = (
        Index("ix_workflow_request_history_request", "request_id", "performed_at"),
        Index("ix_workflow_request_history_action", "action", "performed_at"),
        # One history row per request version; a double apply fails here too
        UniqueConstraint(
            "request_id", "request_version",
            name="uq_workflow_request_history_version",
        ),
    )

    request_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("workflow_requests.id"),
        nullable=False,
    )
    action: Mapped[str] = mapped_column(String(30), nullable=False)
    step_id: Mapped[str | None] = mapped_column(String(100), nullable=True)
    step_index: Mapped[int | None] = mapped_column(nullable=True)
    actor_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)
    actor_role: Mapped[str | None] = mapped_column(String(100), nullable=True)
    comment: Mapped[str] = mapped_column(Text, default="", nullable=False)
    details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    performed_at: Mapped[datetime] = mapped_column(nullable=False)
    request_version: Mapped[int] = mapped_column(nullable=False)

    def __repr__(self) -> str:
        return (
            f"<RequestHistory {self.id} request={self.request_id} "
            f"action={self.action} step={self.step_id}>"
        )

    def to_dto(self) -> RequestHistoryEntry:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import HistoryAction
        from workflow_kernel.domain.workflow import RequestHistoryEntry as EntryDTO

        return EntryDTO(
            entry_id=self.id,
            request_id=self.request_id,
            action=HistoryAction(self.action),
            step_id=self.step_id,
            step_index=self.step_index,
            actor_id=self.actor_id,
            actor_role=self.actor_role,
            comment=self.comment,
            metadata=dict(self.details or {}),
            performed_at=self.performed_at,
            request_version=self.request_version,
        )

    @classmethod
    def from_dto(cls, dto: RequestHistoryEntry) -> RequestHistoryModel:
        """Create ORM model from domain DTO."""
        return cls(
            id=dto.entry_id,
            request_id=dto.request_id,
            action=dto.action.value,
            step_id=dto.step_id,
            step_index=dto.step_index,
            actor_id=dto.actor_id,
            actor_role=dto.actor_role,
            comment=dto.comment,
            details=dict(dto.metadata),
            performed_at=dto.performed_at,
            request_version=dto.request_version,
        )


# =============================================================================
# ORM-level lifecycle guard for requests
# =============================================================================


@event.listens_for(RequestInstanceModel, "before_update")
def prevent_terminal_request_update(mapper, connection, target):
    """Refuse to write a request whose stored status is already terminal."""
    state = inspect(target)
    status_history = state.attrs.status.history
    if status_history.deleted:
        stored_status = status_history.deleted[0]
    elif status_history.unchanged:
        stored_status = status_history.unchanged[0]
    else:
        stored_status = target.status

    if stored_status not in _TERMINAL_STATUS_VALUES:
        return

    if not any(attr.history.has_changes() for attr in state.attrs):
        return

    raise ImmutabilityViolationError(
        entity_type="RequestInstance",
        entity_id=str(target.id),
        reason=f"Request is {stored_status} -- terminal requests cannot be modified",
    )


_SUBMISSION_FIELDS = (
    "request_type",
    "template_id",
    "template_version",
    "submitter_id",
    "submitted_at",
    "steps_snapshot",
    "notifications",
)

# JSON values can be edited in place without registering attribute history
_SNAPSHOT_JSON_FIELDS = ("steps_snapshot", "notifications")


@event.listens_for(RequestInstanceModel, "before_update")
def prevent_snapshot_update(mapper, connection, target):
    """Refuse to rewrite the fields captured at submission.

    Reassignments show up in attribute history.  In-place edits of the
    JSON snapshot do not, so the loaded values are compared with the
    stored row as well.
    """
    state = inspect(target)
    for field in _SUBMISSION_FIELDS:
        if state.attrs[field].history.has_changes():
            raise ImmutabilityViolationError(
                entity_type="RequestInstance",
                entity_id=str(target.id),
                reason=f"{field} is fixed at submission -- cannot modify",
            )

    loaded = [f for f in _SNAPSHOT_JSON_FIELDS if f in state.dict]
    if not loaded:
        return
    table = RequestInstanceModel.__table__
    stored = connection.execute(
        select(*(table.c[f] for f in loaded)).where(table.c.id == target.id)
    ).one_or_none()
    if stored is None:
        return
    for field, stored_value in zip(loaded, stored):
        if state.dict[field] != stored_value:
            raise ImmutabilityViolationError(
                entity_type="RequestInstance",
                entity_id=str(target.id),
                reason=f"{field} is fixed at submission -- cannot modify",
            )


# =============================================================================
# ORM-level immutability for history (append-only)
# =============================================================================


@event.listens_for(RequestHistoryModel, "before_update")
def prevent_history_update(mapper, connection, target):
    """Prevent updates to request history records."""
    raise ImmutabilityViolationError(
        entity_type="RequestHistory",
        entity_id=str(target.id),
        reason="Request history is append-only -- cannot modify",
    )


@event.listens_for(RequestHistoryModel, "before_delete")
def prevent_history_delete(mapper, connection, target):
    """Prevent deletion of request history records."""
    raise ImmutabilityViolationError(
        entity_type="RequestHistory",
        entity_id=str(target.id),
        reason="Request history is append-only -- cannot delete",
    )
