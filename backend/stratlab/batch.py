"""
Batch Evaluation with Multi-Processing
Evaluates many strategies over one bar series; strategies share no state,
so each worker builds its own indicator bank.
"""
import logging
import time
from multiprocessing import Pool, cpu_count
from typing import Any, Callable, Dict, Iterable, List, Optional, Sequence, Tuple

from stratlab.indicators import BarSeries
from stratlab.models import StrategyDraft, StrategySignals
from stratlab.signals import StrategyEvaluator

logger = logging.getLogger(__name__)


def _evaluate_single(args: Tuple[BarSeries, Dict[str, Any]]) -> StrategySignals:
    """Evaluate one strategy (worker function)"""
    series, strategy_dict = args
    strategy = StrategyDraft.model_validate(strategy_dict)
    return StrategyEvaluator(series).run(strategy)


class BatchEvaluator:
    """Evaluates a universe of strategies across worker processes"""

    def __init__(self, series: BarSeries, processes: Optional[int] = None):
        self.series = series
        self.processes = processes if processes is not None else min(6, cpu_count())

    def evaluate(self, strategies: Sequence[StrategyDraft],
                 progress_callback: Optional[Callable[[int, int], None]] = None) -> List[StrategySignals]:
        """Results come back in the order of `strategies`"""
        total = len(strategies)
        workers = max(1, min(self.processes, total))
        args_list = [(self.series, s.model_dump()) for s in strategies]
        start_time = time.time()

        logger.info("Evaluating %d strategies over %d bars using %d processes",
                    total, self.series.length, workers)

        if workers == 1:
            results = self._collect(map(_evaluate_single, args_list), total, progress_callback)
        else:
            with Pool(processes=workers) as pool:
                results = self._collect(pool.imap(_evaluate_single, args_list), total, progress_callback)

        logger.info("Batch evaluation finished in %.2fs", time.time() - start_time)
        return results

    def _collect(self, iterator: Iterable[StrategySignals], total: int,
                 progress_callback: Optional[Callable[[int, int], None]]) -> List[StrategySignals]:
        results = []
        for i, result in enumerate(iterator):
            results.append(result)
            if (i + 1) % max(1, total // 10) == 0:
                logger.debug("Progress: %d/%d", i + 1, total)
            if progress_callback:
                progress_callback(i + 1, total)
        return results
