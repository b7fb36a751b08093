"""
Signal Assembly
Turns buy/sell rule truth series into discrete BUY/SELL events
"""
import logging
from typing import List, Optional, Sequence

import numpy as np

from stratlab.conditions import evaluate_rule, rule_warmup
from stratlab.indicators import BarSeries, IndicatorBank
from stratlab.models import SignalEvent, SignalKind, StrategyDraft, StrategySignals

logger = logging.getLogger(__name__)


def assemble_signals(buy: np.ndarray, sell: np.ndarray, dates: Sequence[str]) -> List[SignalEvent]:
    """Transition-based events: BUY while flat, SELL while in a position.

    At most one event per bar; a bar that opens a position cannot also close it.
    """
    events: List[SignalEvent] = []
    in_position = False

    for i in range(len(buy)):
        if not in_position and buy[i]:
            events.append(SignalEvent(index=i, date=str(dates[i]), type=SignalKind.BUY))
            in_position = True
        elif in_position and sell[i]:
            events.append(SignalEvent(index=i, date=str(dates[i]), type=SignalKind.SELL))
            in_position = False

    return events


class StrategyEvaluator:
    """Evaluates a strategy's buy and sell rules over one bar series"""

    def __init__(self, series: BarSeries, indicator_bank: Optional[IndicatorBank] = None):
        self.series = series
        self.indicator_bank = indicator_bank or IndicatorBank(series)
        self.length = series.length

    def run(self, strategy: StrategyDraft) -> StrategySignals:
        self.indicator_bank.build(strategy.indicator_specs())

        buy = evaluate_rule(self.indicator_bank, strategy.buyRule)
        sell = evaluate_rule(self.indicator_bank, strategy.sellRule)

        warmup = max(rule_warmup(strategy.buyRule), rule_warmup(strategy.sellRule))
        if warmup >= self.length:
            # Not an error: every bar is inside some indicator's warm-up window
            logger.warning(
                "Insufficient history for strategy %r: %d bars, %d needed before all indicators are defined",
                strategy.name, self.length, warmup + 1,
            )

        events = assemble_signals(buy, sell, self.series.date)
        logger.debug("Strategy %r produced %d signal events", strategy.name, len(events))

        return StrategySignals(
            bars=self.length,
            warmup=warmup,
            buy=buy.tolist(),
            sell=sell.tolist(),
            events=events,
        )
