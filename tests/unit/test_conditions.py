"""Tests for level condition evaluation."""

from decimal import Decimal

import pytest

from expense_approval.services.approval.conditions import (
    PermissiveConditionEvaluator,
    ThresholdConditionEvaluator,
    get_condition_evaluator,
)
from expense_approval.services.approval.schemas import RequestSnapshot


@pytest.fixture
def snapshot():
    return RequestSnapshot(
        request_id="rep-1",
        company_id="co-acme",
        submitter_id="u-emp",
        total_amount=Decimal("1500.00"),
    )


class TestPermissiveConditionEvaluator:

    def test_every_level_applies(self, snapshot):
        evaluator = PermissiveConditionEvaluator()
        conditions = [{"type": "AMOUNT", "operator": ">", "value": 1_000_000}]

        assert evaluator.level_applies(conditions, snapshot) is True
        assert evaluator.level_applies([], snapshot) is True


class TestThresholdConditionEvaluator:

    @pytest.mark.parametrize(
        "operator,value,expected",
        [
            (">", 1000, True),
            (">", 1500, False),
            (">=", "1500", True),
            ("<", 2000, True),
            ("<=", 1000, False),
            ("==", "1500.00", True),
        ],
    )
    def test_activate_conditions(self, snapshot, operator, value, expected):
        conditions = [{"type": "AMOUNT", "operator": operator, "value": value}]

        assert ThresholdConditionEvaluator().level_applies(conditions, snapshot) is expected

    def test_skip_condition(self, snapshot):
        conditions = [
            {"type": "AMOUNT", "operator": "<", "value": 2000, "action": "SKIP"}
        ]

        assert ThresholdConditionEvaluator().level_applies(conditions, snapshot) is False

    def test_all_conditions_must_allow(self, snapshot):
        conditions = [
            {"type": "AMOUNT", "operator": ">", "value": 1000},
            {"type": "AMOUNT", "operator": "<", "value": 1200},
        ]

        assert ThresholdConditionEvaluator().level_applies(conditions, snapshot) is False

    def test_budget_and_policy_are_ignored(self, snapshot):
        conditions = [
            {"type": "BUDGET", "operator": ">", "value": 0},
            {"type": "POLICY", "operator": "==", "value": "strict", "action": "SKIP"},
        ]

        assert ThresholdConditionEvaluator().level_applies(conditions, snapshot) is True

    def test_non_numeric_value_does_not_hold(self, snapshot):
        conditions = [{"type": "AMOUNT", "operator": ">", "value": "lots"}]

        assert ThresholdConditionEvaluator().level_applies(conditions, snapshot) is False


def test_get_condition_evaluator():
    assert isinstance(get_condition_evaluator("threshold"), ThresholdConditionEvaluator)
    assert isinstance(get_condition_evaluator("permissive"), PermissiveConditionEvaluator)
    assert isinstance(get_condition_evaluator(), PermissiveConditionEvaluator)
