"""
Typed Exception Hierarchy for the Workflow Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

The engine is called from very different places: an HTTP handler acting for
a human approver, and a background sweep acting for the clock.  Both need to
know precisely what went wrong without parsing message strings.

Every error therefore:
  1. Has a TYPED exception class (catch by type, not message)
  2. Has a CODE class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes (request_id, role, action, ...)

Example - WRONG way to handle errors:
    try:
        service.decide(request_id, StepAction.APPROVE, actor)
    except Exception as e:
        if "not permitted" in str(e):  # FRAGILE - message might change
            ...

Example - RIGHT way:
    try:
        service.decide(request_id, StepAction.APPROVE, actor)
    except ForbiddenError as e:
        return response(403, code=e.code, expected_role=e.expected_role)
    except InvalidStateError as e:
        return response(409, code=e.code, status=e.status)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    WorkflowKernelError (base)
    |
    +-- RequestError
    |   +-- RequestNotFoundError
    |   +-- InvalidStateError
    |   |   +-- ConcurrentTransitionError
    |   +-- ForbiddenError
    |   +-- ActionNotPermittedError
    |
    +-- TemplateError
    |   +-- TemplateNotFoundError
    |   +-- TemplateInactiveError
    |   +-- InvalidTemplateError
    |   +-- DuplicateTemplateError
    |
    +-- ImmutabilityError
    |   +-- ImmutabilityViolationError
    |
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                     | When Raised
-------------|--------------------------|--------------------------------------
Request      | NOT_FOUND                | Request ID doesn't exist
             | INVALID_STATE            | Request is terminal / step is stale
             | CONCURRENT_TRANSITION    | Lost an optimistic version check
             | FORBIDDEN                | Role may not act on this step
             | ACTION_NOT_PERMITTED     | Action not allowed at this step
-------------|--------------------------|--------------------------------------
Template     | TEMPLATE_NOT_FOUND       | Template ID / flow ID doesn't exist
             | TEMPLATE_INACTIVE        | Submission against inactive template
             | TEMPLATE_INVALID         | Step list fails activation rules
             | TEMPLATE_ALREADY_EXISTS  | Duplicate flow ID
-------------|--------------------------|--------------------------------------
Immutability | IMMUTABILITY_VIOLATION   | Modifying terminal request / history
-------------|--------------------------|--------------------------------------
Config       | CONFIGURATION_INVALID    | Malformed configuration set

===============================================================================
HANDLING PATTERNS
===============================================================================

1. NO-OPS ARE NOT ERRORS.  ``escalate()`` reports races with the human path
   as an ``EscalationOutcome`` value, never by raising.

2. LOST RACES ARE INVALID STATE.  ``ConcurrentTransitionError`` subclasses
   ``InvalidStateError``, so callers that only care about "this request can
   no longer take that transition" catch one type.

3. THE SCHEDULER NEVER RAISES.  Per-record failures are logged with their
   code and the sweep continues.
"""


class WorkflowKernelError(Exception):
    """
    Base exception for all workflow kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "WORKFLOW_KERNEL_ERROR"


# Request-related exceptions


class RequestError(WorkflowKernelError):
    """Base exception for request transition errors."""

    code: str = "REQUEST_ERROR"


class RequestNotFoundError(RequestError):
    """Request with given ID was not found."""

    code: str = "NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Request not found: {request_id}")


class InvalidStateError(RequestError):
    """Transition attempted on a request that cannot take it."""

    code: str = "INVALID_STATE"

    def __init__(self, request_id: str, status: str, reason: str = ""):
        self.request_id = request_id
        self.status = status
        self.reason = reason
        message = f"Request {request_id} cannot transition from status '{status}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class ConcurrentTransitionError(InvalidStateError):
    """Another transaction changed the request first (optimistic lock lost)."""

    code: str = "CONCURRENT_TRANSITION"

    def __init__(self, request_id: str):
        super().__init__(
            request_id,
            "unknown",
            "request was modified by another transaction",
        )


class ForbiddenError(RequestError):
    """Acting role may not act on the request at its current step."""

    code: str = "FORBIDDEN"

    def __init__(self, request_id: str, actor_role: str, expected_role: str):
        self.request_id = request_id
        self.actor_role = actor_role
        self.expected_role = expected_role
        super().__init__(
            f"Role '{actor_role}' cannot act on request {request_id}; "
            f"expected '{expected_role}'"
        )


class ActionNotPermittedError(RequestError):
    """Action is not in the current step's permitted action set."""

    code: str = "ACTION_NOT_PERMITTED"

    def __init__(self, request_id: str, action: str, allowed: tuple[str, ...]):
        self.request_id = request_id
        self.action = action
        self.allowed = allowed
        super().__init__(
            f"Action '{action}' not permitted on request {request_id}. "
            f"Allowed: {', '.join(allowed)}"
        )


# Template-related exceptions


class TemplateError(WorkflowKernelError):
    """Base exception for workflow template errors."""

    code: str = "TEMPLATE_ERROR"


class TemplateNotFoundError(TemplateError):
    """Template with given ID or flow ID was not found."""

    code: str = "TEMPLATE_NOT_FOUND"

    def __init__(self, template_ref: str):
        self.template_ref = template_ref
        super().__init__(f"Workflow template not found: {template_ref}")


class TemplateInactiveError(TemplateError):
    """Submission attempted against a deactivated template."""

    code: str = "TEMPLATE_INACTIVE"

    def __init__(self, template_id: str, flow_id: str):
        self.template_id = template_id
        self.flow_id = flow_id
        super().__init__(f"Workflow template '{flow_id}' ({template_id}) is inactive")


class InvalidTemplateError(TemplateError):
    """Template step list fails activation rules."""

    code: str = "TEMPLATE_INVALID"

    def __init__(self, flow_id: str, errors: tuple[str, ...]):
        self.flow_id = flow_id
        self.errors = errors
        super().__init__(
            f"Workflow template '{flow_id}' is invalid: {'; '.join(errors)}"
        )


class DuplicateTemplateError(TemplateError):
    """A template with the same flow ID already exists."""

    code: str = "TEMPLATE_ALREADY_EXISTS"

    def __init__(self, flow_id: str):
        self.flow_id = flow_id
        super().__init__(f"Workflow template already exists: {flow_id}")


# Immutability-related exceptions


class ImmutabilityError(WorkflowKernelError):
    """Base exception for immutability-related errors."""

    code: str = "IMMUTABILITY_ERROR"


class ImmutabilityViolationError(ImmutabilityError):
    """
    Attempted to modify or delete an immutable record.

    Terminal requests and request history entries are immutable.
    """

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(
            f"Immutability violation on {entity_type} {entity_id}: {reason}"
        )


# Configuration exceptions


class ConfigurationError(WorkflowKernelError):
    """Configuration set is missing or malformed."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, source: str, reason: str):
        self.source = source
        self.reason = reason
        super().__init__(f"Invalid configuration in {source}: {reason}")
