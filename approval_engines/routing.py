"""
approval_engines.routing -- Pure step routing for approval workflows.

Responsibility:
    Everything the orchestrator needs to know about a definition's step
    graph without touching the database: which orders exist and in what
    sequence, which steps activate at an order (including amount-bracket
    selection), whether a request qualifies for auto-approval, when an
    approval falls due, and whether an order group is satisfied.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.  No clock access; callers
    pass ``now``/``created_at`` explicitly.

Invariants enforced:
    - Ordering: orders are visited strictly ascending.  ``next_order`` never
      returns an order <= the current one.
    - Amount brackets: amount_based steps at one order are considered in
      ascending-threshold order; exactly one (the greatest threshold <=
      amount) activates.  Below every threshold, none does.
    - Gating: under ALL_REQUIRED an order is satisfied only when no required
      approval at that order is still pending and none was rejected.
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from datetime import datetime, timedelta
from decimal import Decimal
from typing import Any, Callable

from approval_engines.conditions import evaluate_conditions, resolve_field, to_decimal
from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import (
    Approval,
    ApprovalDecision,
    ApproverType,
    EscalationRule,
    ParallelApprovalPolicy,
    Step,
    WorkflowDefinition,
)

AMOUNT_FIELD = "amount"


def request_amount(metadata: Mapping[str, Any] | None) -> Decimal | None:
    """The request's ``amount`` as Decimal, or None if absent/non-numeric."""
    value = resolve_field(metadata, AMOUNT_FIELD)
    return to_decimal(value)


# =============================================================================
# Order sequencing
# =============================================================================


def group_steps_by_order(steps: Sequence[Step]) -> dict[int, tuple[Step, ...]]:
    """Steps grouped by order, keys ascending, definition order preserved."""
    groups: dict[int, list[Step]] = {}
    for step in steps:
        groups.setdefault(step.order, []).append(step)
    return {order: tuple(groups[order]) for order in sorted(groups)}


def first_order(definition: WorkflowDefinition) -> int | None:
    orders = definition.orders
    return orders[0] if orders else None


def next_order(definition: WorkflowDefinition, current: int) -> int | None:
    """The smallest order strictly greater than ``current``, or None."""
    for order in definition.orders:
        if order > current:
            return order
    return None


# =============================================================================
# Step activation
# =============================================================================


@traced_engine("amount_bracket", "1.0", fingerprint_fields=("steps", "amount"))
def select_amount_bracket(
    steps: Sequence[Step],
    amount: Decimal | None,
) -> Step | None:
    """Among amount_based steps, the one with the greatest threshold <= amount.

    Steps are scanned in ascending-threshold order.  Returns None when the
    amount is unknown or below every threshold.
    """
    if amount is None:
        return None
    bracketed = sorted(
        (
            s for s in steps
            if s.approver_type == ApproverType.AMOUNT_BASED
            and s.amount_threshold is not None
        ),
        key=lambda s: s.amount_threshold,
    )
    selected: Step | None = None
    for step in bracketed:
        if step.amount_threshold <= amount:
            selected = step
        else:
            break
    return selected


def steps_to_activate(
    definition: WorkflowDefinition,
    order: int,
    metadata: Mapping[str, Any] | None,
) -> tuple[Step, ...]:
    """Steps that produce approvals when ``order`` activates.

    All non-amount steps at the order, plus the single matching amount
    bracket (if any).  Definition order is preserved.
    """
    at_order = definition.steps_at(order)
    bracket = select_amount_bracket(
        steps=at_order, amount=request_amount(metadata),
    )
    return tuple(
        s for s in at_order
        if s.approver_type != ApproverType.AMOUNT_BASED or s is bracket
    )


# =============================================================================
# Auto-approval
# =============================================================================


def auto_approval_applies(
    definition: WorkflowDefinition,
    metadata: Mapping[str, Any] | None,
    evaluate: Callable[..., bool] = evaluate_conditions,
) -> bool:
    """Whether a request bypasses human approval entirely.

    Requires ``definition.auto_approval``.  Explicit
    ``auto_approval_conditions`` decide when present.  Otherwise the first
    order's amount thresholds act as an inverse threshold: the request's
    amount must be strictly below the smallest one.  A definition with
    neither never auto-approves.
    """
    if not definition.auto_approval:
        return False
    if definition.auto_approval_conditions:
        return evaluate(
            conditions=definition.auto_approval_conditions, metadata=metadata,
        )

    order = first_order(definition)
    if order is None:
        return False
    thresholds = [
        s.amount_threshold for s in definition.steps_at(order)
        if s.amount_threshold is not None
    ]
    amount = request_amount(metadata)
    if not thresholds or amount is None:
        return False
    return amount < min(thresholds)


# =============================================================================
# Deadlines
# =============================================================================


def escalation_hours_for(
    step: Step,
    rule: EscalationRule | None,
) -> float | None:
    """The step's own escalation hours, else its escalation rule's."""
    if step.escalation_hours is not None:
        return step.escalation_hours
    if rule is not None:
        return rule.escalation_hours
    return None


def compute_due_at(
    created_at: datetime,
    step: Step,
    rule: EscalationRule | None = None,
) -> datetime | None:
    hours = escalation_hours_for(step, rule)
    if hours is None:
        return None
    return created_at + timedelta(hours=hours)


def is_overdue(approval: Approval, now: datetime) -> bool:
    """Pending with a deadline strictly in the past."""
    return (
        approval.decision == ApprovalDecision.PENDING
        and approval.due_at is not None
        and approval.due_at < now
    )


# =============================================================================
# Gating
# =============================================================================


def order_is_satisfied(
    approvals: Sequence[Approval],
    order: int,
    policy: ParallelApprovalPolicy = ParallelApprovalPolicy.ALL_REQUIRED,
) -> bool:
    """Whether the order group may advance.

    Escalated records are superseded by their escalation approval and do
    not gate.  Optional approvals never gate.

    ALL_REQUIRED: no required approval at the order is pending or rejected.
    FIRST_RESPONSE: some required approval at the order is approved (or
    the order has no required approvals left open).
    """
    at_order = [
        a for a in approvals
        if a.step_order == order and a.is_required
        and a.decision != ApprovalDecision.ESCALATED
    ]
    if any(a.decision == ApprovalDecision.REJECTED for a in at_order):
        return False
    if policy == ParallelApprovalPolicy.FIRST_RESPONSE:
        if any(a.decision == ApprovalDecision.APPROVED for a in at_order):
            return True
    return not any(a.decision == ApprovalDecision.PENDING for a in at_order)
