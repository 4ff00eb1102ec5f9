"""
Approval workflow domain types (``approval_kernel.domain.workflow``).

Responsibility
--------------
Pure value objects for the unified approval engine.  Defines the workflow
definition schema (steps, conditions, escalation rules), the request and
approval lifecycle state machines, identities, and the records the
orchestrator hands back to callers.

Architecture position
---------------------
**Kernel domain layer** -- pure value objects.  ZERO I/O.  No imports
from ``db/``, ``services/``, ``selectors/``, or outer layers.

Invariants enforced
-------------------
* Request lifecycle -- ``REQUEST_TRANSITIONS`` defines the only valid status
  transitions.  Terminal states have no outgoing edges.
* Approval lifecycle -- an ``Approval`` leaves ``pending`` exactly once
  (``DECISION_TRANSITIONS``).
* Steps sharing an ``order`` run in parallel; ``WorkflowDefinition.orders``
  is the ascending sequencing domain.
* ``SYSTEM_IDENTITY`` is reserved for system-originated decisions and is
  never produced by approver resolution.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import UUID


# =========================================================================
# Workflow definition schema
# =========================================================================


class ApproverType(str, Enum):
    """How a step's approver is resolved."""

    ROLE = "role"
    USER = "user"
    DEPARTMENT = "department"
    AMOUNT_BASED = "amount_based"


class ConditionOperator(str, Enum):
    """Comparison operators available to workflow conditions."""

    EQUALS = "equals"
    NOT_EQUALS = "not_equals"
    GREATER_THAN = "greater_than"
    LESS_THAN = "less_than"
    GREATER_OR_EQUAL = "greater_or_equal"
    LESS_OR_EQUAL = "less_or_equal"
    CONTAINS = "contains"


@dataclass(frozen=True)
class Condition:
    """A single ``{field, operator, value}`` test against request metadata.

    ``field`` is a dotted path (``vendor.country``).  A missing field fails
    the condition unless ``optional`` is set.
    """

    field: str
    operator: ConditionOperator
    value: Any
    optional: bool = False


@dataclass(frozen=True)
class Step:
    """One stage of a workflow.  Steps with equal ``order`` run in parallel."""

    key: str
    name: str
    order: int
    approver_type: ApproverType
    role: str | None = None
    user_id: str | None = None
    department: str | None = None
    amount_threshold: Decimal | None = None
    is_required: bool = True
    escalation_hours: float | None = None
    auto_approve: bool = False

    @property
    def selector(self) -> str | None:
        """The type-specific selector value, for logs and errors."""
        if self.approver_type == ApproverType.USER:
            return self.user_id
        if self.approver_type == ApproverType.DEPARTMENT:
            return self.department
        if self.approver_type == ApproverType.AMOUNT_BASED:
            return f"{self.role}@{self.amount_threshold}"
        return self.role


@dataclass(frozen=True)
class EscalationRule:
    """Where a stalled approval for ``step_key`` escalates to."""

    step_key: str
    escalate_to_role: str
    escalation_hours: float | None = None
    notification_channels: tuple[str, ...] = ()


@dataclass(frozen=True)
class WorkflowDefinition:
    """Reusable approval policy for one ``(tenant, entity_type, sub_type?)``.

    Definitions are authored by tenant admins and are read-only to the
    orchestrator.  ``priority``: higher number wins selection.
    """

    tenant_id: str
    name: str
    entity_type: str
    steps: tuple[Step, ...]
    workflow_id: UUID | None = None
    entity_sub_type: str | None = None
    company_id: str | None = None
    description: str = ""
    conditions: tuple[Condition, ...] = ()
    auto_approval: bool = False
    auto_approval_conditions: tuple[Condition, ...] = ()
    escalation_rules: tuple[EscalationRule, ...] = ()
    priority: int = 0
    is_active: bool = True
    is_default: bool = False
    version: int = 1
    created_at: datetime | None = None

    @property
    def orders(self) -> tuple[int, ...]:
        """Distinct step orders, ascending."""
        return tuple(sorted({s.order for s in self.steps}))

    def steps_at(self, order: int) -> tuple[Step, ...]:
        """Steps sharing ``order``, in definition order."""
        return tuple(s for s in self.steps if s.order == order)

    def step_by_key(self, key: str) -> Step | None:
        for step in self.steps:
            if step.key == key:
                return step
        return None

    def escalation_rule_for(self, step_key: str) -> EscalationRule | None:
        for rule in self.escalation_rules:
            if rule.step_key == step_key:
                return rule
        return None


# =========================================================================
# Request lifecycle
# =========================================================================


class ApprovalRequestStatus(str, Enum):
    """Approval request lifecycle states."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"
    COMPLETED = "completed"


REQUEST_TRANSITIONS: dict[ApprovalRequestStatus, frozenset[ApprovalRequestStatus]] = {
    ApprovalRequestStatus.PENDING: frozenset({
        ApprovalRequestStatus.ESCALATED,
        ApprovalRequestStatus.REJECTED,
        ApprovalRequestStatus.COMPLETED,
    }),
    ApprovalRequestStatus.ESCALATED: frozenset({
        ApprovalRequestStatus.PENDING,
        ApprovalRequestStatus.REJECTED,
        ApprovalRequestStatus.COMPLETED,
    }),
    ApprovalRequestStatus.APPROVED: frozenset(),
    ApprovalRequestStatus.REJECTED: frozenset(),
    ApprovalRequestStatus.COMPLETED: frozenset(),
}

TERMINAL_REQUEST_STATUSES: frozenset[ApprovalRequestStatus] = frozenset({
    ApprovalRequestStatus.APPROVED,
    ApprovalRequestStatus.REJECTED,
    ApprovalRequestStatus.COMPLETED,
})

ACTIVE_REQUEST_STATUSES: frozenset[ApprovalRequestStatus] = frozenset({
    ApprovalRequestStatus.PENDING,
    ApprovalRequestStatus.ESCALATED,
})


# =========================================================================
# Approval (decision record) lifecycle
# =========================================================================


class ApprovalDecision(str, Enum):
    """State of a single approver's decision record."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    ESCALATED = "escalated"


DECISION_TRANSITIONS: dict[ApprovalDecision, frozenset[ApprovalDecision]] = {
    ApprovalDecision.PENDING: frozenset({
        ApprovalDecision.APPROVED,
        ApprovalDecision.REJECTED,
        ApprovalDecision.ESCALATED,
    }),
    ApprovalDecision.APPROVED: frozenset(),
    ApprovalDecision.REJECTED: frozenset(),
    ApprovalDecision.ESCALATED: frozenset(),
}


class ApprovalAction(str, Enum):
    """Actions an assignee (or the scheduler) can take on a pending approval."""

    APPROVE = "approve"
    REJECT = "reject"
    ESCALATE = "escalate"

    @property
    def decision(self) -> ApprovalDecision:
        return {
            ApprovalAction.APPROVE: ApprovalDecision.APPROVED,
            ApprovalAction.REJECT: ApprovalDecision.REJECTED,
            ApprovalAction.ESCALATE: ApprovalDecision.ESCALATED,
        }[self]


class ParallelApprovalPolicy(str, Enum):
    """When an order group of parallel steps counts as satisfied.

    ALL_REQUIRED: every required approval at the order must approve.
    FIRST_RESPONSE: the first approval at the order advances the request.
    """

    ALL_REQUIRED = "all_required"
    FIRST_RESPONSE = "first_response"


class WorkflowOutcome(str, Enum):
    """Outcome reported to the entity-status callback."""

    APPROVED = "approved"
    REJECTED = "rejected"


# =========================================================================
# Identities
# =========================================================================


@dataclass(frozen=True)
class Identity:
    """A concrete user who can act on an approval."""

    user_id: str
    role: str | None = None
    name: str | None = None
    email: str | None = None
    department: str | None = None
    is_system: bool = False


SYSTEM_ACTOR_ID = "system"

SYSTEM_IDENTITY = Identity(
    user_id=SYSTEM_ACTOR_ID,
    role="system",
    name="System",
    is_system=True,
)


# =========================================================================
# Request and approval records
# =========================================================================


@dataclass(frozen=True)
class Approval:
    """Immutable snapshot of one approver's decision record."""

    approval_id: UUID
    request_id: UUID
    tenant_id: str
    step_key: str
    step_name: str
    step_order: int
    approver_id: str
    decision: ApprovalDecision = ApprovalDecision.PENDING
    is_required: bool = True
    is_escalation: bool = False
    escalated_from_id: UUID | None = None
    comments: str | None = None
    escalation_reason: str | None = None
    created_at: datetime | None = None
    due_at: datetime | None = None
    processed_at: datetime | None = None

    @property
    def is_pending(self) -> bool:
        return self.decision == ApprovalDecision.PENDING


@dataclass(frozen=True)
class ApprovalRequest:
    """Immutable snapshot of an approval request and its approvals."""

    request_id: UUID
    tenant_id: str
    company_id: str
    entity_type: str
    entity_id: str
    workflow_id: UUID
    current_step_order: int
    status: ApprovalRequestStatus
    requested_by: str
    entity_sub_type: str | None = None
    workflow_version: int = 1
    metadata: dict[str, Any] = field(default_factory=dict)
    auto_approved: bool = False
    stalled_reason: str | None = None
    created_at: datetime | None = None
    resolved_at: datetime | None = None
    approvals: tuple[Approval, ...] = ()

    @property
    def is_terminal(self) -> bool:
        return self.status in TERMINAL_REQUEST_STATUSES

    @property
    def is_stalled(self) -> bool:
        return self.stalled_reason is not None and not self.is_terminal

    @property
    def pending_approvals(self) -> tuple[Approval, ...]:
        """Actionable approvals: pending, at the current order, request active."""
        if self.is_terminal:
            return ()
        return tuple(
            a for a in self.approvals
            if a.is_pending and a.step_order == self.current_step_order
        )


@dataclass(frozen=True)
class WorkflowStartResult:
    """Result of asking the engine to start approval for an entity.

    ``approval_required=False`` means no definition applies and the caller
    treats the entity as unrestricted.
    """

    approval_required: bool
    request: ApprovalRequest | None = None
    reason: str = ""


@dataclass(frozen=True)
class ApprovalNotice:
    """What a notification dispatcher is told about a new pending approval."""

    tenant_id: str
    entity_type: str
    entity_id: str
    request_id: UUID
    approval_id: UUID
    step_name: str
    due_by: datetime | None = None
    is_escalation: bool = False
    notification_channels: tuple[str, ...] = ()


@dataclass(frozen=True)
class ApprovalStatistics:
    """Per-tenant counts for dashboards."""

    pending: int = 0
    approved: int = 0
    rejected: int = 0
    escalated: int = 0
    requests_by_status: dict[str, int] = field(default_factory=dict)
    stalled_requests: int = 0
