"""
approval_engines.conditions -- Pure condition evaluation (ConditionEvaluator).

Responsibility:
    Decide whether a list of ``Condition`` records holds for a request's
    metadata.  Used for workflow applicability and auto-approval
    eligibility.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import approval_kernel/domain types.

Invariants enforced:
    - AND semantics: every condition must hold.
    - Fail-closed: a field missing from metadata fails its condition unless
      the condition is marked ``optional``, in which case it is skipped.
    - The empty list is vacuously true.
    - Numeric comparison uses Decimal; floats in metadata are converted via
      ``str`` so 0.1 compares as 0.1.

Failure modes:
    - Ordering operators (greater_than, ...) on values that are not numeric
      evaluate to False.  They never raise.
"""

from __future__ import annotations

from collections.abc import Hashable, Mapping, Sequence
from decimal import Decimal, InvalidOperation
from typing import Any

from approval_engines.tracer import traced_engine
from approval_kernel.domain.workflow import Condition, ConditionOperator


class _Missing:
    """Sentinel for a metadata path that does not resolve."""

    def __repr__(self) -> str:
        return "MISSING"


MISSING: Any = _Missing()


def resolve_field(metadata: Mapping[str, Any] | None, path: str) -> Any:
    """Dotted-path lookup (``vendor.country``).  Returns MISSING if absent.

    Integer path segments index into lists (``lines.0.amount``).  A present
    key with value ``None`` counts as missing.
    """
    current: Any = metadata
    for part in path.split("."):
        if isinstance(current, Mapping):
            if part not in current:
                return MISSING
            current = current[part]
        elif isinstance(current, Sequence) and not isinstance(current, (str, bytes)):
            try:
                current = current[int(part)]
            except (ValueError, IndexError):
                return MISSING
        else:
            return MISSING
    if current is None:
        return MISSING
    return current


def to_decimal(value: Any) -> Decimal | None:
    """Coerce a metadata or condition value to Decimal, or None if not numeric."""
    if isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value
    if isinstance(value, (int, float, str)):
        try:
            result = Decimal(str(value).strip())
        except InvalidOperation:
            return None
        if not result.is_finite():
            return None
        return result
    return None


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float, Decimal)) and not isinstance(value, bool)


def _equals(actual: Any, expected: Any) -> bool:
    # Numeric equality when either side is a real number: 100 == "100.00"
    if _is_number(actual) or _is_number(expected):
        a, e = to_decimal(actual), to_decimal(expected)
        if a is not None and e is not None:
            return a == e
    return actual == expected


def _contains(actual: Any, expected: Any) -> bool:
    if isinstance(actual, str):
        return str(expected) in actual
    if isinstance(actual, Mapping):
        return isinstance(expected, Hashable) and expected in actual
    if isinstance(actual, (list, tuple, set, frozenset)):
        return any(_equals(item, expected) for item in actual)
    return False


def _compare(actual: Any, expected: Any, operator: ConditionOperator) -> bool:
    a, e = to_decimal(actual), to_decimal(expected)
    if a is None or e is None:
        return False
    if operator == ConditionOperator.GREATER_THAN:
        return a > e
    if operator == ConditionOperator.LESS_THAN:
        return a < e
    if operator == ConditionOperator.GREATER_OR_EQUAL:
        return a >= e
    return a <= e


def evaluate_condition(condition: Condition, metadata: Mapping[str, Any] | None) -> bool:
    """Evaluate one condition.  Missing non-optional fields fail."""
    actual = resolve_field(metadata, condition.field)
    if actual is MISSING:
        return condition.optional

    op = condition.operator
    if op == ConditionOperator.EQUALS:
        return _equals(actual, condition.value)
    if op == ConditionOperator.NOT_EQUALS:
        return not _equals(actual, condition.value)
    if op == ConditionOperator.CONTAINS:
        return _contains(actual, condition.value)
    return _compare(actual, condition.value, op)


@traced_engine("conditions", "1.0", fingerprint_fields=("conditions", "metadata"))
def evaluate_conditions(
    conditions: Sequence[Condition],
    metadata: Mapping[str, Any] | None,
) -> bool:
    """True iff every condition holds (AND).  Empty list is True."""
    return all(evaluate_condition(c, metadata) for c in conditions)


class ConditionEvaluator:
    """Object facade over ``evaluate_conditions`` for injection into services."""

    def evaluate(
        self,
        conditions: Sequence[Condition],
        metadata: Mapping[str, Any] | None,
    ) -> bool:
        return evaluate_conditions(conditions=conditions, metadata=metadata)
