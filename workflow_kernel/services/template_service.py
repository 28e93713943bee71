"""
workflow_kernel.services.template_service -- Workflow template store.

Responsibility:
    Register, read, edit, activate and deactivate workflow templates, and
    resolve the template a new request is snapshotted from.  Template
    shape is validated here, once, so the transition path never has to.

Architecture position:
    Kernel > Services.  May import from domain/, models/, db/ and the
    pure template rules engine.

Invariants enforced:
    - flow_id is unique.
    - Every stored template passes validate_template().
    - Step edits bump ``version``; existing request snapshots are never
      touched.

Failure modes:
    - InvalidTemplateError on any rule violation (all messages attached).
    - DuplicateTemplateError on an existing flow_id.
    - TemplateNotFoundError / TemplateInactiveError from
      resolve_for_submission().
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from typing import Any
from uuid import UUID

from sqlalchemy import select

from workflow_engines.template_rules import parse_steps, validate_template
from workflow_kernel.domain.workflow import StepDefinition, WorkflowTemplate
from workflow_kernel.exceptions import (
    DuplicateTemplateError,
    InvalidTemplateError,
    TemplateInactiveError,
    TemplateNotFoundError,
)
from workflow_kernel.logging_config import get_logger
from workflow_kernel.models.workflow_template import WorkflowTemplateModel
from workflow_kernel.services.base import BaseService

logger = get_logger("services.template")

StepInput = StepDefinition | Mapping[str, Any]


def _normalize_notifications(
    notifications: Mapping[str, Sequence[str]] | None,
) -> dict[str, list[str]]:
    return {event: list(roles) for event, roles in (notifications or {}).items()}


class TemplateService(BaseService):
    """Template store backed by ``workflow_templates``."""

    def _checked_steps(
        self,
        flow_id: str,
        name: str,
        raw_steps: Sequence[StepInput],
        notifications: Mapping[str, Sequence[str]] | None,
    ) -> tuple[StepDefinition, ...]:
        steps, errors = parse_steps(raw_steps)
        errors.extend(validate_template(flow_id, name, steps, notifications))
        if errors:
            logger.warning(
                "template_validation_failed",
                extra={"flow_id": flow_id, "errors": errors},
            )
            raise InvalidTemplateError(flow_id, tuple(errors))
        return steps

    def _load(self, template_id: UUID) -> WorkflowTemplateModel:
        model = self._session.get(WorkflowTemplateModel, template_id)
        if model is None:
            raise TemplateNotFoundError(str(template_id))
        return model

    def _load_by_flow_id(self, flow_id: str) -> WorkflowTemplateModel | None:
        return self._session.execute(
            select(WorkflowTemplateModel).where(
                WorkflowTemplateModel.flow_id == flow_id,
            )
        ).scalar_one_or_none()

    def register_template(
        self,
        flow_id: str,
        name: str,
        steps: Sequence[StepInput],
        description: str = "",
        notifications: Mapping[str, Sequence[str]] | None = None,
        is_active: bool = True,
        created_by_id: UUID | None = None,
    ) -> WorkflowTemplate:
        """Validate and store a new template.

        ``steps`` may be StepDefinition values or their dict form (the
        shape used in templates.yaml).
        """
        parsed = self._checked_steps(flow_id, name, steps, notifications)

        if self._load_by_flow_id(flow_id) is not None:
            raise DuplicateTemplateError(flow_id)

        now = self._clock.now()
        model = WorkflowTemplateModel(
            flow_id=flow_id,
            name=name,
            description=description,
            steps=[s.to_dict() for s in parsed],
            notifications=_normalize_notifications(notifications),
            is_active=is_active,
            version=1,
            created_at=now,
            updated_at=now,
            created_by_id=created_by_id,
        )
        self._session.add(model)
        self._session.flush()

        logger.info(
            "template_registered",
            extra={
                "template_id": str(model.id),
                "flow_id": flow_id,
                "step_count": len(parsed),
                "is_active": is_active,
            },
        )
        return model.to_dto()

    def get_template(self, template_id: UUID) -> WorkflowTemplate:
        return self._load(template_id).to_dto()

    def get_by_flow_id(self, flow_id: str) -> WorkflowTemplate:
        model = self._load_by_flow_id(flow_id)
        if model is None:
            raise TemplateNotFoundError(flow_id)
        return model.to_dto()

    def list_templates(self, active_only: bool = True) -> list[WorkflowTemplate]:
        stmt = select(WorkflowTemplateModel).order_by(WorkflowTemplateModel.name)
        if active_only:
            stmt = stmt.where(WorkflowTemplateModel.is_active.is_(True))
        return [m.to_dto() for m in self._session.execute(stmt).scalars()]

    def update_steps(
        self,
        template_id: UUID,
        steps: Sequence[StepInput],
        notifications: Mapping[str, Sequence[str]] | None = None,
    ) -> WorkflowTemplate:
        """Replace a template's steps and bump its version.

        In-flight requests keep the snapshot they were submitted with.
        ``notifications=None`` leaves the event mapping unchanged.
        """
        model = self._load(template_id)
        effective_notifications = (
            notifications if notifications is not None else model.notifications
        )
        parsed = self._checked_steps(
            model.flow_id, model.name, steps, effective_notifications,
        )

        model.steps = [s.to_dict() for s in parsed]
        model.notifications = _normalize_notifications(effective_notifications)
        model.version = model.version + 1
        model.updated_at = self._clock.now()
        self._session.flush()

        logger.info(
            "template_steps_updated",
            extra={
                "template_id": str(template_id),
                "flow_id": model.flow_id,
                "version": model.version,
                "step_count": len(parsed),
            },
        )
        return model.to_dto()

    def deactivate(self, template_id: UUID) -> WorkflowTemplate:
        model = self._load(template_id)
        model.is_active = False
        model.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "template_deactivated",
            extra={"template_id": str(template_id), "flow_id": model.flow_id},
        )
        return model.to_dto()

    def activate(self, template_id: UUID) -> WorkflowTemplate:
        """Re-activate a template; its steps are re-validated first."""
        model = self._load(template_id)
        self._checked_steps(model.flow_id, model.name, model.steps, model.notifications)
        model.is_active = True
        model.updated_at = self._clock.now()
        self._session.flush()
        logger.info(
            "template_activated",
            extra={"template_id": str(template_id), "flow_id": model.flow_id},
        )
        return model.to_dto()

    def resolve_for_submission(
        self,
        template_id: UUID | None = None,
        flow_id: str | None = None,
    ) -> WorkflowTemplate:
        """The template a new request will be snapshotted from.

        Raises:
            ValueError: If neither or both identifiers are given.
            TemplateNotFoundError: No such template.
            TemplateInactiveError: Template exists but is deactivated.
        """
        if (template_id is None) == (flow_id is None):
            raise ValueError("Exactly one of template_id or flow_id is required")

        if template_id is not None:
            template = self.get_template(template_id)
        else:
            template = self.get_by_flow_id(flow_id)

        if not template.is_active:
            raise TemplateInactiveError(str(template.template_id), template.flow_id)
        return template
