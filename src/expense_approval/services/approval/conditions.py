"""Level condition evaluation.

Conditions decide whether a matrix level applies to a given request. The
default evaluator is permissive: every level applies. The threshold
evaluator wires AMOUNT conditions to the report total.
"""

import logging
import operator
from abc import ABC, abstractmethod
from decimal import Decimal, InvalidOperation
from typing import Any, Callable

from expense_approval.services.approval.schemas import (
    ConditionAction,
    ConditionConfig,
    ConditionOperator,
    ConditionType,
    RequestSnapshot,
)

logger = logging.getLogger(__name__)

OPERATORS: dict[ConditionOperator, Callable[[Any, Any], bool]] = {
    ConditionOperator.GT: operator.gt,
    ConditionOperator.LT: operator.lt,
    ConditionOperator.GTE: operator.ge,
    ConditionOperator.LTE: operator.le,
    ConditionOperator.EQ: operator.eq,
}


class ConditionEvaluator(ABC):
    """Decides whether a level applies to a request."""

    @abstractmethod
    def level_applies(
        self, conditions: list[dict[str, Any]], snapshot: RequestSnapshot
    ) -> bool:
        """Evaluate a level's conditions.

        @param conditions - Raw condition dicts stored on the level
        @param snapshot - Request being routed
        @returns False if the level should be skipped
        """


class PermissiveConditionEvaluator(ConditionEvaluator):
    """Every level applies regardless of its conditions."""

    def level_applies(
        self, conditions: list[dict[str, Any]], snapshot: RequestSnapshot
    ) -> bool:
        return True


class ThresholdConditionEvaluator(ConditionEvaluator):
    """Compares AMOUNT conditions against the request total.

    An ACTIVATE condition that does not hold skips the level; a SKIP
    condition that holds skips it. BUDGET and POLICY conditions need data
    owned by other systems and never affect the outcome.
    """

    def level_applies(
        self, conditions: list[dict[str, Any]], snapshot: RequestSnapshot
    ) -> bool:
        for raw in conditions or []:
            condition = ConditionConfig.model_validate(raw)
            if condition.type != ConditionType.AMOUNT:
                logger.debug(
                    f"Ignoring {condition.type.value} condition for request "
                    f"{snapshot.request_id}"
                )
                continue

            holds = self._compare(snapshot.total_amount, condition)
            if condition.action == ConditionAction.ACTIVATE and not holds:
                return False
            if condition.action == ConditionAction.SKIP and holds:
                return False
        return True

    @staticmethod
    def _compare(amount: Decimal, condition: ConditionConfig) -> bool:
        try:
            threshold = Decimal(str(condition.value))
        except (InvalidOperation, ValueError):
            logger.warning(
                f"Non-numeric AMOUNT condition value {condition.value!r}; "
                "treating as not holding"
            )
            return False
        return OPERATORS[condition.operator](amount, threshold)


def get_condition_evaluator(mode: str = "permissive") -> ConditionEvaluator:
    """Build the evaluator for a configured mode.

    @param mode - "permissive" or "threshold"
    @returns ConditionEvaluator instance
    """
    if mode == "threshold":
        return ThresholdConditionEvaluator()
    return PermissiveConditionEvaluator()
