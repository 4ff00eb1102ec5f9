"""
Module: approval_engines
Responsibility:
    Package entrypoint re-exporting the pure evaluation engines used by the
    approval orchestrator.

Architecture position:
    Engines -- pure evaluation layer, zero I/O.
    May only import approval_kernel/domain (and sibling engine modules).
    MUST NOT import approval_kernel services, models, or db.

Invariants enforced:
    - Purity: engines never call ``datetime.now()``.  Timestamps are passed
      in by services.
    - Decimal-only arithmetic for amounts and thresholds.
    - Determinism: identical inputs always produce identical outputs.

Usage:
    from approval_engines.conditions import ConditionEvaluator
    from approval_engines.routing import steps_to_activate, order_is_satisfied
"""

from approval_engines.conditions import (
    MISSING,
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
)
from approval_engines.routing import (
    auto_approval_applies,
    compute_due_at,
    first_order,
    group_steps_by_order,
    is_overdue,
    next_order,
    order_is_satisfied,
    request_amount,
    select_amount_bracket,
    steps_to_activate,
)

__all__ = [
    "MISSING",
    "ConditionEvaluator",
    "auto_approval_applies",
    "compute_due_at",
    "evaluate_condition",
    "evaluate_conditions",
    "first_order",
    "group_steps_by_order",
    "is_overdue",
    "next_order",
    "order_is_satisfied",
    "request_amount",
    "resolve_field",
    "select_amount_bracket",
    "steps_to_activate",
]
