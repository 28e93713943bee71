"""ORM models for the workflow kernel."""

from workflow_kernel.models.request import RequestHistoryModel, RequestInstanceModel
from workflow_kernel.models.workflow_template import WorkflowTemplateModel

__all__ = [
    "WorkflowTemplateModel",
    "RequestInstanceModel",
    "RequestHistoryModel",
]
