"""
Tests for the condition evaluator.

Covers:
- Each operator against numeric, string, and collection values
- Dotted-path and list-index field resolution
- Missing fields: fail-closed unless the condition is optional
- AND semantics and the vacuous empty list
"""

from decimal import Decimal

import pytest

from approval_engines.conditions import (
    MISSING,
    ConditionEvaluator,
    evaluate_condition,
    evaluate_conditions,
    resolve_field,
    to_decimal,
)
from approval_kernel.domain.workflow import Condition, ConditionOperator

Op = ConditionOperator


class TestResolveField:

    def test_top_level_key(self):
        assert resolve_field({"amount": 5}, "amount") == 5

    def test_dotted_path(self):
        assert resolve_field({"vendor": {"country": "DE"}}, "vendor.country") == "DE"

    def test_list_index_segment(self):
        data = {"lines": [{"amount": 10}, {"amount": 20}]}
        assert resolve_field(data, "lines.1.amount") == 20

    def test_missing_key(self):
        assert resolve_field({"amount": 5}, "currency") is MISSING

    def test_missing_nested_key(self):
        assert resolve_field({"vendor": {}}, "vendor.country") is MISSING

    def test_index_out_of_range(self):
        assert resolve_field({"lines": []}, "lines.0") is MISSING

    def test_none_value_counts_as_missing(self):
        assert resolve_field({"amount": None}, "amount") is MISSING

    def test_none_metadata(self):
        assert resolve_field(None, "amount") is MISSING

    def test_path_through_scalar(self):
        assert resolve_field({"amount": 5}, "amount.currency") is MISSING


class TestToDecimal:

    @pytest.mark.parametrize("value,expected", [
        (5, Decimal("5")),
        ("10000.50", Decimal("10000.50")),
        (0.1, Decimal("0.1")),
        (Decimal("7"), Decimal("7")),
    ])
    def test_numeric_values(self, value, expected):
        assert to_decimal(value) == expected

    @pytest.mark.parametrize("value", [True, False, "abc", None, [], "NaN", "inf"])
    def test_non_numeric_values(self, value):
        assert to_decimal(value) is None


class TestOperators:

    def test_equals_string(self):
        assert evaluate_condition(Condition("currency", Op.EQUALS, "USD"), {"currency": "USD"})
        assert not evaluate_condition(Condition("currency", Op.EQUALS, "USD"), {"currency": "EUR"})

    def test_equals_numeric_across_types(self):
        assert evaluate_condition(Condition("amount", Op.EQUALS, 100), {"amount": "100.00"})

    def test_not_equals(self):
        cond = Condition("department", Op.NOT_EQUALS, "sales")
        assert evaluate_condition(cond, {"department": "finance"})
        assert not evaluate_condition(cond, {"department": "sales"})

    def test_greater_than(self):
        cond = Condition("amount", Op.GREATER_THAN, 10000)
        assert evaluate_condition(cond, {"amount": 10000.01})
        assert not evaluate_condition(cond, {"amount": 10000})

    def test_less_than(self):
        cond = Condition("amount", Op.LESS_THAN, 10000)
        assert evaluate_condition(cond, {"amount": 5000})
        assert not evaluate_condition(cond, {"amount": 10000})

    def test_greater_or_equal_boundary(self):
        cond = Condition("amount", Op.GREATER_OR_EQUAL, "10000")
        assert evaluate_condition(cond, {"amount": Decimal("10000")})
        assert not evaluate_condition(cond, {"amount": Decimal("9999.99")})

    def test_less_or_equal_boundary(self):
        cond = Condition("amount", Op.LESS_OR_EQUAL, 10000)
        assert evaluate_condition(cond, {"amount": 10000})
        assert not evaluate_condition(cond, {"amount": 10001})

    def test_ordering_on_non_numeric_is_false(self):
        cond = Condition("amount", Op.GREATER_THAN, 10)
        assert not evaluate_condition(cond, {"amount": "lots"})

    def test_ordering_on_bool_is_false(self):
        cond = Condition("flag", Op.GREATER_THAN, 0)
        assert not evaluate_condition(cond, {"flag": True})

    def test_contains_substring(self):
        cond = Condition("description", Op.CONTAINS, "urgent")
        assert evaluate_condition(cond, {"description": "urgent: server replacement"})
        assert not evaluate_condition(cond, {"description": "routine"})

    def test_contains_list_membership(self):
        cond = Condition("tags", Op.CONTAINS, "capex")
        assert evaluate_condition(cond, {"tags": ["opex", "capex"]})
        assert not evaluate_condition(cond, {"tags": ["opex"]})

    def test_contains_mapping_key(self):
        cond = Condition("dimensions", Op.CONTAINS, "project")
        assert evaluate_condition(cond, {"dimensions": {"project": "P-1"}})

    def test_contains_on_number_is_false(self):
        assert not evaluate_condition(Condition("amount", Op.CONTAINS, "1"), {"amount": 100})


class TestMissingFields:

    def test_missing_required_field_fails(self):
        assert not evaluate_condition(Condition("amount", Op.GREATER_THAN, 0), {})

    def test_missing_field_fails_even_for_not_equals(self):
        assert not evaluate_condition(Condition("currency", Op.NOT_EQUALS, "USD"), {})

    def test_missing_optional_field_is_skipped(self):
        cond = Condition("vendor.risk", Op.EQUALS, "high", optional=True)
        assert evaluate_condition(cond, {"amount": 5})

    def test_present_optional_field_is_evaluated(self):
        cond = Condition("vendor.risk", Op.EQUALS, "high", optional=True)
        assert not evaluate_condition(cond, {"vendor": {"risk": "low"}})


class TestEvaluateConditions:

    def test_empty_list_is_true(self):
        assert evaluate_conditions([], {}) is True

    def test_all_must_hold(self):
        conditions = [
            Condition("amount", Op.GREATER_THAN, 10000),
            Condition("currency", Op.EQUALS, "USD"),
        ]
        assert evaluate_conditions(conditions, {"amount": 20000, "currency": "USD"})
        assert not evaluate_conditions(conditions, {"amount": 20000, "currency": "EUR"})
        assert not evaluate_conditions(conditions, {"amount": 500, "currency": "USD"})

    def test_evaluator_facade(self):
        evaluator = ConditionEvaluator()
        assert evaluator.evaluate([Condition("amount", Op.LESS_THAN, 10)], {"amount": 1})

    def test_trace_record_emitted(self, captured_logs):
        evaluate_conditions([Condition("amount", Op.LESS_THAN, 10)], {"amount": 1})
        traces = [r for r in captured_logs() if r["message"] == "APPROVAL_ENGINE_TRACE"]
        assert traces
        assert traces[-1]["engine_name"] == "conditions"
