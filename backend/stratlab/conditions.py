"""
Condition Evaluation
Each evaluator takes (indicator_bank, node) and returns np.ndarray of bools, one per bar.
A bar where either side of a comparison is still in its warm-up window is False.
"""
from typing import Callable, Dict, List

import numpy as np

from stratlab.indicators import IndicatorBank
from stratlab.models import (
    ComparisonOperator, ComparisonTarget, Condition, ConditionGroup, IndicatorTarget,
    LogicalOperator, TradeRule,
)


# Exact float comparison; no epsilon for '=' / '!='
OPERATORS: Dict[ComparisonOperator, Callable[[np.ndarray, np.ndarray], np.ndarray]] = {
    ComparisonOperator.GT: np.greater,
    ComparisonOperator.GTE: np.greater_equal,
    ComparisonOperator.EQ: np.equal,
    ComparisonOperator.LTE: np.less_equal,
    ComparisonOperator.LT: np.less,
    ComparisonOperator.NE: np.not_equal,
}


def _target_values(indicator_bank: IndicatorBank, target: ComparisonTarget) -> np.ndarray:
    if isinstance(target, IndicatorTarget):
        return indicator_bank.get(target.indicator)
    return np.full(indicator_bank.length, target.value, dtype=np.float64)


def evaluate_condition(indicator_bank: IndicatorBank, condition: Condition) -> np.ndarray:
    left = indicator_bank.get(condition.indicator)
    right = _target_values(indicator_bank, condition.target)
    defined = ~np.isnan(left) & ~np.isnan(right)
    return OPERATORS[ComparisonOperator(condition.operator)](left, right) & defined


def _combine(results: List[np.ndarray], operator: LogicalOperator) -> np.ndarray:
    if LogicalOperator(operator) == LogicalOperator.AND:
        return np.logical_and.reduce(results)
    return np.logical_or.reduce(results)


def evaluate_group(indicator_bank: IndicatorBank, group: ConditionGroup) -> np.ndarray:
    """AND/OR across the group's conditions; an empty group never fires"""
    if not group.conditions:
        return np.zeros(indicator_bank.length, dtype=bool)
    return _combine([evaluate_condition(indicator_bank, c) for c in group.conditions], group.operator)


def evaluate_rule(indicator_bank: IndicatorBank, rule: TradeRule) -> np.ndarray:
    """AND/OR across the rule's groups; a rule without conditions never fires"""
    if not rule.conditionGroups:
        return np.zeros(indicator_bank.length, dtype=bool)
    return _combine([evaluate_group(indicator_bank, g) for g in rule.conditionGroups], rule.operator)


def rule_warmup(rule: TradeRule) -> int:
    """Leading bars before every indicator the rule references is defined"""
    return max((spec.warmup for spec in rule.indicator_specs()), default=0)
