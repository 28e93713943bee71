"""
Module: workflow_kernel.models.workflow_template
Responsibility: ORM persistence for workflow templates (named, versioned
    step lists that requests are snapshotted from).
Architecture position: Kernel > Models.  May import from db/base.py and
    domain/ only.

Invariants enforced:
    - flow_id is unique across all templates.
    - version is incremented by the template service on every step edit;
      requests keep the version they were created from.

Failure modes:
    - IntegrityError on duplicate flow_id (normally caught earlier as
      DuplicateTemplateError by the template service).
"""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING, Any
from uuid import UUID

from sqlalchemy import JSON, Boolean, Index, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from workflow_kernel.db.base import Base, UUIDString

if TYPE_CHECKING:
    from workflow_kernel.domain.workflow import WorkflowTemplate


class WorkflowTemplateModel(Base):
    """Persistent workflow template.

    ``steps`` holds the JSON shape produced by ``StepDefinition.to_dict``.
    ``notifications`` maps event name to a list of recipient roles.
    """

    __tablename__ = "workflow_templates"

    __table_args__ = (
        Index("ix_workflow_templates_active", "is_active", "flow_id"),
    )

    flow_id: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str] = mapped_column(Text, default="", nullable=False)
    steps: Mapped[list[dict[str, Any]]] = mapped_column(JSON, nullable=False)
    notifications: Mapped[dict[str, list[str]]] = mapped_column(
        JSON, nullable=False, default=dict,
    )
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    version: Mapped[int] = mapped_column(nullable=False, default=1)
    created_at: Mapped[datetime] = mapped_column(nullable=False)
    updated_at: Mapped[datetime] = mapped_column(nullable=False)
    created_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    def __repr__(self) -> str:
        return (
            f"<WorkflowTemplate {self.flow_id} v{self.version} "
            f"steps={len(self.steps or [])} active={self.is_active}>"
        )

    def to_dto(self) -> WorkflowTemplate:
        """Convert ORM model to frozen domain DTO."""
        from workflow_kernel.domain.workflow import StepDefinition
        from workflow_kernel.domain.workflow import WorkflowTemplate as TemplateDTO

        return TemplateDTO(
            template_id=self.id,
            flow_id=self.flow_id,
            name=self.name,
            description=self.description,
            steps=tuple(StepDefinition.from_dict(s) for s in self.steps),
            notifications={
                event: tuple(roles)
                for event, roles in (self.notifications or {}).items()
            },
            is_active=self.is_active,
            version=self.version,
            created_at=self.created_at,
            updated_at=self.updated_at,
        )
