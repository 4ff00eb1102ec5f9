"""
Typed Exception Hierarchy for the Approval Kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Approval transitions are driven by HTTP handlers, the escalation sweep and
operator tooling.  Each caller reacts differently to a failure: a client
race is surfaced, a configuration gap stalls the request, a notification
outage is only logged.  Callers therefore catch by TYPE and read structured
attributes, never parse messages.

Every exception:
  1. Has a TYPED class (catch by type, not message)
  2. Has a ``code`` class attribute (machine-readable, API-safe)
  3. Carries structured DATA as attributes

Example:
    try:
        orchestrator.process_approval_action(...)
    except UnauthorizedApproverError as e:
        api_response(status=403, code=e.code, approval=e.approval_id)
    except InvalidTransitionError as e:
        api_response(status=409, code=e.code, current=e.current_state)

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ApprovalKernelError (base)
    |
    +-- WorkflowError
    |   +-- WorkflowNotFoundError
    |   +-- WorkflowDefinitionError
    |   +-- WorkflowInUseError
    |
    +-- ResolutionError
    |   +-- NoApproverFoundError
    |
    +-- TransitionError
    |   +-- InvalidTransitionError
    |   +-- UnauthorizedApproverError
    |   +-- ApprovalNotFoundError
    |   +-- ApprovalRequestNotFoundError
    |
    +-- DuplicateActiveRequestError
    +-- EntityNotFoundError
    +-- ImmutabilityViolationError
    +-- AuditChainBrokenError
    +-- ConfigurationError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category     | Code                        | When Raised
-------------|-----------------------------|------------------------------------
Workflow     | WORKFLOW_NOT_FOUND          | No definition for id / entity type
             | WORKFLOW_DEFINITION_INVALID | Definition fails validation
             | WORKFLOW_IN_USE             | Delete of a referenced definition
-------------|-----------------------------|------------------------------------
Resolution   | NO_APPROVER_FOUND           | Step resolves to no active identity
-------------|-----------------------------|------------------------------------
Transition   | INVALID_TRANSITION          | Action on decided/inactive approval
             | UNAUTHORIZED_APPROVER       | Assignee is not the approver
             | APPROVAL_NOT_FOUND          | Approval id unknown for tenant
             | APPROVAL_REQUEST_NOT_FOUND  | Request id unknown for tenant
-------------|-----------------------------|------------------------------------
Uniqueness   | DUPLICATE_ACTIVE_REQUEST    | Entity already has an active request
-------------|-----------------------------|------------------------------------
Entity       | ENTITY_NOT_FOUND            | Upstream entity missing
-------------|-----------------------------|------------------------------------
Immutability | IMMUTABILITY_VIOLATION      | Update/delete of an audit row
             | AUDIT_CHAIN_BROKEN          | Stored audit hash does not recompute
-------------|-----------------------------|------------------------------------
Config       | CONFIGURATION_INVALID       | Bad engine settings

===============================================================================
PROPAGATION
===============================================================================

- WorkflowNotFoundError and NoApproverFoundError raised during request
  CREATION are absorbed by the orchestrator: the request is either
  "not required" or left stalled and logged.  They only reach callers on
  explicit lookups (get_workflow) and human-initiated escalation.
- TransitionError subclasses always reach the caller and are never retried.
- Notification and audit failures never surface as exceptions.
"""


class ApprovalKernelError(Exception):
    """
    Base exception for all approval kernel errors.

    All subclasses must have a ``code`` class attribute for
    machine-readable error identification.
    """

    code: str = "APPROVAL_KERNEL_ERROR"


# Workflow definition exceptions


class WorkflowError(ApprovalKernelError):
    """Base exception for workflow definition errors."""

    code: str = "WORKFLOW_ERROR"


class WorkflowNotFoundError(WorkflowError):
    """No workflow definition matches the lookup."""

    code: str = "WORKFLOW_NOT_FOUND"

    def __init__(self, key: str, entity_type: str | None = None):
        self.key = key
        self.entity_type = entity_type
        if entity_type:
            super().__init__(
                f"No approval workflow found for {entity_type} ({key})"
            )
        else:
            super().__init__(f"Workflow not found: {key}")


class WorkflowDefinitionError(WorkflowError):
    """Workflow definition failed validation."""

    code: str = "WORKFLOW_DEFINITION_INVALID"

    def __init__(self, workflow_name: str, problems: list[str]):
        self.workflow_name = workflow_name
        self.problems = list(problems)
        super().__init__(
            f"Invalid workflow '{workflow_name}': " + "; ".join(self.problems)
        )


class WorkflowInUseError(WorkflowError):
    """Workflow cannot be deleted while requests reference it."""

    code: str = "WORKFLOW_IN_USE"

    def __init__(self, workflow_id: str, request_count: int):
        self.workflow_id = workflow_id
        self.request_count = request_count
        super().__init__(
            f"Cannot delete workflow {workflow_id}: "
            f"{request_count} approval request(s) reference it"
        )


# Approver resolution exceptions


class ResolutionError(ApprovalKernelError):
    """Base exception for approver resolution errors."""

    code: str = "RESOLUTION_ERROR"


class NoApproverFoundError(ResolutionError):
    """A step resolved to no active identity."""

    code: str = "NO_APPROVER_FOUND"

    def __init__(self, step_key: str, approver_type: str, selector: str | None):
        self.step_key = step_key
        self.approver_type = approver_type
        self.selector = selector
        super().__init__(
            f"No approver found for step '{step_key}' "
            f"({approver_type}={selector})"
        )


# Transition exceptions


class TransitionError(ApprovalKernelError):
    """Base exception for approval transition errors."""

    code: str = "TRANSITION_ERROR"


class InvalidTransitionError(TransitionError):
    """Action attempted on a non-pending approval or a terminal request."""

    code: str = "INVALID_TRANSITION"

    def __init__(self, approval_id: str, current_state: str, reason: str = ""):
        self.approval_id = approval_id
        self.current_state = current_state
        self.reason = reason
        message = f"Approval {approval_id} cannot transition from '{current_state}'"
        if reason:
            message = f"{message}: {reason}"
        super().__init__(message)


class UnauthorizedApproverError(TransitionError):
    """Assignee does not match the approval's approver."""

    code: str = "UNAUTHORIZED_APPROVER"

    def __init__(self, approval_id: str, assignee_id: str):
        self.approval_id = approval_id
        self.assignee_id = assignee_id
        super().__init__(
            f"User {assignee_id} is not the approver of approval {approval_id}"
        )


class ApprovalNotFoundError(TransitionError):
    """Approval with given ID was not found for the tenant."""

    code: str = "APPROVAL_NOT_FOUND"

    def __init__(self, approval_id: str):
        self.approval_id = approval_id
        super().__init__(f"Approval not found: {approval_id}")


class ApprovalRequestNotFoundError(TransitionError):
    """Approval request with given ID was not found for the tenant."""

    code: str = "APPROVAL_REQUEST_NOT_FOUND"

    def __init__(self, request_id: str):
        self.request_id = request_id
        super().__init__(f"Approval request not found: {request_id}")


# Uniqueness


class DuplicateActiveRequestError(ApprovalKernelError):
    """Entity already has a non-terminal approval request."""

    code: str = "DUPLICATE_ACTIVE_REQUEST"

    def __init__(self, entity_type: str, entity_id: str, existing_request_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.existing_request_id = existing_request_id
        super().__init__(
            f"{entity_type} {entity_id} already has an active approval request "
            f"({existing_request_id})"
        )


# Foreign entities


class EntityNotFoundError(ApprovalKernelError):
    """Upstream entity under approval does not exist."""

    code: str = "ENTITY_NOT_FOUND"

    def __init__(self, entity_type: str, entity_id: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        super().__init__(f"{entity_type} not found: {entity_id}")


# Immutability


class ImmutabilityViolationError(ApprovalKernelError):
    """Attempted to modify an append-only record."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")


class AuditChainBrokenError(ApprovalKernelError):
    """Audit hash chain validation failed."""

    code: str = "AUDIT_CHAIN_BROKEN"

    def __init__(self, audit_event_id: str, expected_hash: str, actual_hash: str):
        self.audit_event_id = audit_event_id
        self.expected_hash = expected_hash
        self.actual_hash = actual_hash
        super().__init__(
            f"Audit chain broken at {audit_event_id}: "
            f"expected {expected_hash}, found {actual_hash}"
        )


# Configuration


class ConfigurationError(ApprovalKernelError):
    """Engine settings are invalid."""

    code: str = "CONFIGURATION_INVALID"

    def __init__(self, setting: str, value: object, reason: str):
        self.setting = setting
        self.value = value
        self.reason = reason
        super().__init__(f"Invalid setting {setting}={value!r}: {reason}")
