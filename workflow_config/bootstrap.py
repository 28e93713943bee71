"""
Template bootstrap (``workflow_config.bootstrap``).

Installs the templates of a loaded configuration into the template store.
Idempotent by flow id: a template that already exists is left untouched,
whatever its current steps, so edits made after the first install are
never overwritten by a restart.
"""

from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy.orm import Session

from workflow_config.schema import TemplateDefinition
from workflow_kernel.domain.clock import Clock
from workflow_kernel.domain.workflow import WorkflowTemplate
from workflow_kernel.exceptions import TemplateNotFoundError
from workflow_kernel.logging_config import get_logger
from workflow_kernel.services.template_service import TemplateService

_logger = get_logger("config.bootstrap")


def install_templates(
    session: Session,
    templates: Iterable[TemplateDefinition],
    clock: Clock | None = None,
) -> list[WorkflowTemplate]:
    """Register every template whose flow id is not in the store yet.

    Flushes only; the caller commits.

    Returns:
        The templates that were newly registered.
    """
    service = TemplateService(session, clock)
    installed: list[WorkflowTemplate] = []
    skipped = 0

    for definition in templates:
        try:
            service.get_by_flow_id(definition.flow_id)
        except TemplateNotFoundError:
            installed.append(
                service.register_template(
                    flow_id=definition.flow_id,
                    name=definition.name,
                    steps=definition.steps,
                    description=definition.description,
                    notifications=definition.notifications,
                    is_active=definition.is_active,
                )
            )
        else:
            skipped += 1

    _logger.info(
        "templates_installed",
        extra={"installed": len(installed), "already_present": skipped},
    )
    return installed
