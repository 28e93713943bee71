"""Pure domain types for the workflow kernel. ZERO I/O."""

from workflow_kernel.domain.clock import Clock, DeterministicClock, SystemClock
from workflow_kernel.domain.workflow import (
    MAX_STEPS,
    REQUEST_TRANSITIONS,
    TERMINAL_REQUEST_STATUSES,
    ActingContext,
    EscalationOutcome,
    EscalationResult,
    HistoryAction,
    NotificationEvent,
    RequestHistoryEntry,
    RequestInstance,
    RequestStatus,
    StepAction,
    StepDefinition,
    WorkflowNotification,
    WorkflowTemplate,
)

__all__ = [
    "MAX_STEPS",
    "REQUEST_TRANSITIONS",
    "TERMINAL_REQUEST_STATUSES",
    "ActingContext",
    "Clock",
    "DeterministicClock",
    "EscalationOutcome",
    "EscalationResult",
    "HistoryAction",
    "NotificationEvent",
    "RequestHistoryEntry",
    "RequestInstance",
    "RequestStatus",
    "StepAction",
    "StepDefinition",
    "SystemClock",
    "WorkflowNotification",
    "WorkflowTemplate",
]
