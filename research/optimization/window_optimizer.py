"""
Window optimizer.

Grid search over one in-sample window. Candidates are evaluated in
batches; between batches control goes back to the event loop so a large
search never monopolizes a single-threaded host, and the cancellation
token is checked. The running result list is pruned after every batch to
bound memory.
"""

from dataclasses import dataclass, field
from typing import Optional
import asyncio
import math
import structlog

import pandas as pd

from research.backtesting.engine import BacktestResult, BacktestSettings
from research.backtesting.errors import WindowIndexError
from research.backtesting.progress import (
    CancellationToken,
    ProgressCallback,
    WalkForwardProgress,
    report,
)
from research.backtesting.window_runner import (
    DEFAULT_LOOKBACK,
    buffered_start_index,
    run_window_backtest,
)
from research.optimization.scoring import calculate_optimization_score
from src.strategy.base import ParameterSet, Strategy
from src.strategy.indicators import IndicatorCache

logger = structlog.get_logger(__name__)

BATCH_SIZE = 50


@dataclass
class OptimizationResult:
    """One admissible grid candidate."""
    params: ParameterSet
    result: BacktestResult
    score: float


@dataclass
class CandidateEvaluation:
    """Outcome of evaluating one candidate: a scored result or the error it raised."""
    params: ParameterSet
    result: Optional[BacktestResult] = None
    score: float = float("-inf")
    error: Optional[Exception] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass(frozen=True)
class CandidateFailure:
    """A candidate whose backtest raised."""
    params: ParameterSet
    error: str


@dataclass
class WindowOptimization:
    """Optimizer output for one window."""
    top_results: list[OptimizationResult]
    evaluated: int = 0
    rejected: int = 0  # ran fine but scored -inf (too few trades)
    failures: list[CandidateFailure] = field(default_factory=list)


@dataclass
class BacktestContext:
    """Capital and execution settings shared by every backtest of a run."""
    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.1
    settings: Optional[BacktestSettings] = None
    lookback: int = DEFAULT_LOOKBACK


def evaluate_candidate(
    bars: pd.DataFrame,
    start_index: int,
    end_index: int,
    strategy: Strategy,
    params: ParameterSet,
    context: BacktestContext,
    min_trades: int,
    indicators: Optional[IndicatorCache] = None,
) -> CandidateEvaluation:
    """Backtest and score one candidate without raising."""
    try:
        result = run_window_backtest(
            bars,
            start_index,
            end_index,
            strategy,
            params,
            context.initial_capital,
            context.position_size_percent,
            context.commission_percent,
            context.settings,
            context.lookback,
            indicators,
        )
    except Exception as e:
        return CandidateEvaluation(params=params, error=e)

    return CandidateEvaluation(
        params=params,
        result=result,
        score=calculate_optimization_score(result, min_trades),
    )


def _prune(results: list[OptimizationResult], keep: int) -> None:
    results.sort(key=lambda r: r.score, reverse=True)
    del results[keep:]


async def optimize_window(
    bars: pd.DataFrame,
    start_index: int,
    end_index: int,
    strategy: Strategy,
    param_grid: list[ParameterSet],
    context: BacktestContext,
    min_trades: int = 5,
    top_n: int = 3,
    cancel_token: Optional[CancellationToken] = None,
    on_progress: Optional[ProgressCallback] = None,
    window_index: int = 0,
    total_windows: int = 0,
) -> WindowOptimization:
    """
    Find the top_n parameter sets for bars[start_index:end_index].

    Each grid point is merged onto the strategy defaults before it is
    evaluated. Candidates that raise are skipped and recorded in
    ``failures``; they never abort the search.

    Raises:
        WindowIndexError: If the window indices are invalid
        WalkForwardCancelledError: If cancel_token fires at a yield point
    """
    if start_index < 0 or end_index > len(bars) or start_index >= end_index:
        raise WindowIndexError(
            f"Invalid optimization window [{start_index}, {end_index}) for series of {len(bars)} bars"
        )

    buffered = bars.iloc[buffered_start_index(start_index, context.lookback):end_index]
    indicators = IndicatorCache.for_bars(buffered.reset_index(drop=True))

    top_results: list[OptimizationResult] = []
    failures: list[CandidateFailure] = []
    rejected = 0

    for batch_number, batch_start in enumerate(range(0, len(param_grid), BATCH_SIZE)):
        if batch_number > 0:
            await asyncio.sleep(0)
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()
            report(
                on_progress,
                WalkForwardProgress(
                    phase="optimize",
                    window_index=window_index,
                    total_windows=total_windows,
                    combo_index=batch_start,
                    combo_total=len(param_grid),
                ),
            )

        for overrides in param_grid[batch_start:batch_start + BATCH_SIZE]:
            params = strategy.resolve_params(overrides)
            evaluation = evaluate_candidate(
                bars, start_index, end_index, strategy, params, context, min_trades, indicators
            )

            if not evaluation.ok:
                failures.append(CandidateFailure(params=params, error=repr(evaluation.error)))
                continue

            if math.isfinite(evaluation.score):
                top_results.append(
                    OptimizationResult(params=params, result=evaluation.result, score=evaluation.score)
                )
            else:
                rejected += 1

        _prune(top_results, top_n * 2)

    _prune(top_results, top_n)

    if failures:
        logger.debug(
            "window_candidates_failed",
            window_index=window_index,
            failed=len(failures),
            first_error=failures[0].error,
        )

    logger.debug(
        "window_optimized",
        window_index=window_index,
        evaluated=len(param_grid),
        kept=len(top_results),
        rejected=rejected,
        best_score=top_results[0].score if top_results else None,
    )

    return WindowOptimization(
        top_results=top_results,
        evaluated=len(param_grid),
        rejected=rejected,
        failures=failures,
    )
