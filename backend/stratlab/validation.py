"""
Save-time Strategy Validation
"""
from typing import List

from stratlab.errors import ConfigurationError
from stratlab.models import StrategyDraft, TradeRule


def _rule_problems(rule: TradeRule, label: str) -> List[str]:
    if not rule.conditionGroups:
        return [f"{label} rule needs at least one condition group"]
    problems = []
    for position, group in enumerate(rule.conditionGroups, start=1):
        if not group.conditions:
            problems.append(f"{label} rule group {position} has no conditions")
    return problems


def strategy_problems(draft: StrategyDraft) -> List[str]:
    problems = []
    if not draft.name.strip():
        problems.append("Strategy name is required")
    problems.extend(_rule_problems(draft.buyRule, "Buy"))
    problems.extend(_rule_problems(draft.sellRule, "Sell"))
    return problems


def validate_strategy(draft: StrategyDraft) -> StrategyDraft:
    """Reject a strategy that has no valid entry or exit condition"""
    problems = strategy_problems(draft)
    if problems:
        raise ConfigurationError("; ".join(problems), problems)
    return draft
