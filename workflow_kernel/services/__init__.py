"""Kernel services -- write-side operations over the workflow store."""

from workflow_kernel.services.notifications import (
    InMemoryDispatcher,
    LoggingDispatcher,
    NotificationDispatcher,
    NotificationOutbox,
)
from workflow_kernel.services.progression_service import RequestProgressionService
from workflow_kernel.services.template_service import TemplateService

__all__ = [
    "RequestProgressionService",
    "TemplateService",
    "NotificationDispatcher",
    "NotificationOutbox",
    "LoggingDispatcher",
    "InMemoryDispatcher",
]
