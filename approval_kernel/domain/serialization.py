"""
Typed <-> JSON-document conversion for workflow definitions.

Definitions are persisted as JSON columns and authored as YAML, but the
engine only ever sees typed ``Step``/``Condition``/``EscalationRule``
records.  This module is the boundary.  Pure; no I/O.
"""

from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Mapping
from uuid import UUID

from approval_kernel.domain.workflow import (
    ApproverType,
    Condition,
    ConditionOperator,
    EscalationRule,
    Step,
    WorkflowDefinition,
)


def _to_decimal(value: Any) -> Decimal | None:
    if value is None or value == "":
        return None
    if isinstance(value, Decimal):
        return value
    try:
        return Decimal(str(value))
    except InvalidOperation as exc:
        raise ValueError(f"not a decimal amount: {value!r}") from exc


def _to_hours(value: Any) -> float | None:
    if value is None or value == "":
        return None
    return float(value)


def step_from_dict(data: Mapping[str, Any], index: int = 0) -> Step:
    """Build a ``Step``.  ``key`` defaults to ``step-<position>``."""
    return Step(
        key=str(data.get("key") or f"step-{index + 1}"),
        name=str(data.get("name") or data.get("key") or f"Step {index + 1}"),
        order=int(data["order"]),
        approver_type=ApproverType(data["approver_type"]),
        role=data.get("role"),
        user_id=data.get("user_id"),
        department=data.get("department"),
        amount_threshold=_to_decimal(data.get("amount_threshold")),
        is_required=bool(data.get("is_required", True)),
        escalation_hours=_to_hours(data.get("escalation_hours")),
        auto_approve=bool(data.get("auto_approve", False)),
    )


def step_to_dict(step: Step) -> dict[str, Any]:
    return {
        "key": step.key,
        "name": step.name,
        "order": step.order,
        "approver_type": step.approver_type.value,
        "role": step.role,
        "user_id": step.user_id,
        "department": step.department,
        "amount_threshold": (
            str(step.amount_threshold) if step.amount_threshold is not None else None
        ),
        "is_required": step.is_required,
        "escalation_hours": step.escalation_hours,
        "auto_approve": step.auto_approve,
    }


def condition_from_dict(data: Mapping[str, Any]) -> Condition:
    return Condition(
        field=str(data["field"]),
        operator=ConditionOperator(data["operator"]),
        value=data.get("value"),
        optional=bool(data.get("optional", False)),
    )


def condition_to_dict(condition: Condition) -> dict[str, Any]:
    value = condition.value
    if isinstance(value, Decimal):
        value = str(value)
    elif isinstance(value, tuple):
        value = list(value)
    return {
        "field": condition.field,
        "operator": condition.operator.value,
        "value": value,
        "optional": condition.optional,
    }


def escalation_rule_from_dict(data: Mapping[str, Any]) -> EscalationRule:
    return EscalationRule(
        step_key=str(data["step_key"]),
        escalate_to_role=str(data["escalate_to_role"]),
        escalation_hours=_to_hours(data.get("escalation_hours")),
        notification_channels=tuple(data.get("notification_channels") or ()),
    )


def escalation_rule_to_dict(rule: EscalationRule) -> dict[str, Any]:
    return {
        "step_key": rule.step_key,
        "escalate_to_role": rule.escalate_to_role,
        "escalation_hours": rule.escalation_hours,
        "notification_channels": list(rule.notification_channels),
    }


def definition_to_dict(definition: WorkflowDefinition) -> dict[str, Any]:
    """Serialize a definition to a JSON-safe document.

    Used for request snapshots and checksums.
    """
    return {
        "workflow_id": str(definition.workflow_id) if definition.workflow_id else None,
        "tenant_id": definition.tenant_id,
        "name": definition.name,
        "entity_type": definition.entity_type,
        "entity_sub_type": definition.entity_sub_type,
        "company_id": definition.company_id,
        "description": definition.description,
        "steps": [step_to_dict(s) for s in definition.steps],
        "conditions": [condition_to_dict(c) for c in definition.conditions],
        "auto_approval": definition.auto_approval,
        "auto_approval_conditions": [
            condition_to_dict(c) for c in definition.auto_approval_conditions
        ],
        "escalation_rules": [
            escalation_rule_to_dict(r) for r in definition.escalation_rules
        ],
        "priority": definition.priority,
        "is_active": definition.is_active,
        "is_default": definition.is_default,
        "version": definition.version,
    }


def definition_from_dict(data: Mapping[str, Any]) -> WorkflowDefinition:
    """Inverse of ``definition_to_dict``.  ``priority`` must already be an int."""
    raw_id = data.get("workflow_id")
    return WorkflowDefinition(
        workflow_id=UUID(str(raw_id)) if raw_id else None,
        tenant_id=str(data["tenant_id"]),
        name=str(data["name"]),
        entity_type=str(data["entity_type"]),
        entity_sub_type=data.get("entity_sub_type"),
        company_id=data.get("company_id"),
        description=data.get("description") or "",
        steps=tuple(
            step_from_dict(s, i) for i, s in enumerate(data.get("steps") or ())
        ),
        conditions=tuple(
            condition_from_dict(c) for c in data.get("conditions") or ()
        ),
        auto_approval=bool(data.get("auto_approval", False)),
        auto_approval_conditions=tuple(
            condition_from_dict(c) for c in data.get("auto_approval_conditions") or ()
        ),
        escalation_rules=tuple(
            escalation_rule_from_dict(r) for r in data.get("escalation_rules") or ()
        ),
        priority=int(data.get("priority", 0)),
        is_active=bool(data.get("is_active", True)),
        is_default=bool(data.get("is_default", False)),
        version=int(data.get("version", 1)),
    )
