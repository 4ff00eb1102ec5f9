"""
Workflow Definition Validator (``approval_config.validator``).

Responsibility
--------------
Structural validation of a workflow definition before it is stored.  Runs
on the JSON document form, so the same checks apply to YAML input (before
typing) and to typed ``WorkflowDefinition`` records (after
``definition_to_dict``).

Invariants enforced
-------------------
* At least one step; every order non-negative; step keys unique.
* Every step carries its type-specific selector: ``role`` for role and
  amount_based, ``user_id`` for user, ``department`` for department,
  ``amount_threshold`` (non-negative) for amount_based.
* Condition operators and approver types are known values.
* Escalation rules reference existing steps and name a target role.
* Escalation hours, where given, are positive.

Failure modes
-------------
* ``validate_definition`` raises ``WorkflowDefinitionError`` listing every
  problem found, not just the first.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from approval_kernel.domain.serialization import definition_to_dict
from approval_kernel.domain.workflow import (
    ApproverType,
    ConditionOperator,
    WorkflowDefinition,
)
from approval_kernel.exceptions import WorkflowDefinitionError

_APPROVER_TYPES = {t.value for t in ApproverType}
_OPERATORS = {o.value for o in ConditionOperator}

_REQUIRED_SELECTOR = {
    ApproverType.ROLE.value: "role",
    ApproverType.USER.value: "user_id",
    ApproverType.DEPARTMENT.value: "department",
    ApproverType.AMOUNT_BASED.value: "role",
}


@dataclass
class DefinitionValidationResult:
    """Errors block storage; warnings are advisory."""

    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)

    @property
    def is_valid(self) -> bool:
        return not self.errors


def _positive_hours(value: Any) -> bool:
    if value is None:
        return True
    try:
        return float(value) > 0
    except (TypeError, ValueError):
        return False


def _check_steps(steps: list, result: DefinitionValidationResult) -> set[str]:
    keys: set[str] = set()
    if not steps:
        result.errors.append("workflow has no steps")
        return keys

    for index, step in enumerate(steps):
        label = f"steps[{index}]"
        if not isinstance(step, Mapping):
            result.errors.append(f"{label}: expected a mapping")
            continue
        key = str(step.get("key") or f"step-{index + 1}")
        label = f"step '{key}'"
        if key in keys:
            result.errors.append(f"{label}: duplicate step key")
        keys.add(key)

        order = step.get("order")
        if isinstance(order, bool) or not isinstance(order, int):
            result.errors.append(f"{label}: order must be an integer")
        elif order < 0:
            result.errors.append(f"{label}: order must be non-negative")

        approver_type = step.get("approver_type")
        if approver_type not in _APPROVER_TYPES:
            result.errors.append(f"{label}: unknown approver_type {approver_type!r}")
            continue

        selector = _REQUIRED_SELECTOR[approver_type]
        if not step.get(selector):
            result.errors.append(f"{label}: {approver_type} step requires '{selector}'")

        if approver_type == ApproverType.AMOUNT_BASED.value:
            threshold = step.get("amount_threshold")
            if threshold is None or threshold == "":
                result.errors.append(f"{label}: amount_based step requires 'amount_threshold'")
            else:
                try:
                    if Decimal(str(threshold)) < 0:
                        result.errors.append(f"{label}: amount_threshold must be non-negative")
                except InvalidOperation:
                    result.errors.append(f"{label}: amount_threshold is not a number")

        if not _positive_hours(step.get("escalation_hours")):
            result.errors.append(f"{label}: escalation_hours must be positive")

    return keys


def _check_conditions(
    conditions: list,
    label: str,
    result: DefinitionValidationResult,
) -> None:
    for index, condition in enumerate(conditions or ()):
        where = f"{label}[{index}]"
        if not isinstance(condition, Mapping):
            result.errors.append(f"{where}: expected a mapping")
            continue
        if not condition.get("field"):
            result.errors.append(f"{where}: missing 'field'")
        operator = condition.get("operator")
        if operator not in _OPERATORS:
            result.errors.append(f"{where}: unknown operator {operator!r}")


def _check_escalation_rules(
    rules: list,
    step_keys: set[str],
    result: DefinitionValidationResult,
) -> None:
    for index, rule in enumerate(rules or ()):
        where = f"escalation_rules[{index}]"
        if not isinstance(rule, Mapping):
            result.errors.append(f"{where}: expected a mapping")
            continue
        step_key = rule.get("step_key")
        if step_key not in step_keys:
            result.errors.append(f"{where}: references unknown step {step_key!r}")
        if not rule.get("escalate_to_role"):
            result.errors.append(f"{where}: missing 'escalate_to_role'")
        if not _positive_hours(rule.get("escalation_hours")):
            result.errors.append(f"{where}: escalation_hours must be positive")


def check_definition_data(data: Mapping[str, Any]) -> DefinitionValidationResult:
    """Validate a definition document and return every problem found."""
    result = DefinitionValidationResult()
    if not data.get("name"):
        result.errors.append("workflow has no name")
    if not data.get("entity_type"):
        result.errors.append("workflow has no entity_type")

    step_keys = _check_steps(list(data.get("steps") or ()), result)
    _check_conditions(data.get("conditions"), "conditions", result)
    _check_conditions(
        data.get("auto_approval_conditions"), "auto_approval_conditions", result,
    )
    _check_escalation_rules(data.get("escalation_rules"), step_keys, result)

    if data.get("auto_approval_conditions") and not data.get("auto_approval"):
        result.warnings.append(
            "auto_approval_conditions are ignored while auto_approval is false"
        )
    return result


def validate_definition(definition: WorkflowDefinition | Mapping[str, Any]) -> None:
    """Raise ``WorkflowDefinitionError`` unless the definition is valid."""
    data = (
        definition_to_dict(definition)
        if isinstance(definition, WorkflowDefinition)
        else definition
    )
    result = check_definition_data(data)
    if not result.is_valid:
        raise WorkflowDefinitionError(str(data.get("name") or "<unnamed>"), result.errors)
