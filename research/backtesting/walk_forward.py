"""
Walk-forward analysis.

Re-optimizes a strategy on a sliding in-sample window and validates the
chosen parameters on the unseen bars that follow. Only the out-of-sample
windows, stitched together, count as the strategy's performance.

Walk-forward protocol:
- Optimize on bars [s, s + opt), test on [s + opt, s + opt + test)
- Advance s by step_size while a full window still fits
- In-sample runs always start from the original capital
- Out-of-sample capital is chained window to window
"""

from typing import Optional
import asyncio
import time
import structlog

import pandas as pd

from research.backtesting.auto_range import derive_quick_config, estimate_window_count
from research.backtesting.config import WalkForwardConfig
from research.backtesting.engine import BacktestResult, BacktestSettings, ensure_clean_bars
from research.backtesting.errors import InsufficientDataError, WalkForwardConfigError
from research.backtesting.progress import (
    CancellationToken,
    ProgressCallback,
    WalkForwardProgress,
    report,
)
from research.backtesting.results import (
    WalkForwardResult,
    WalkForwardWindow,
    degradation_metrics,
)
from research.backtesting.robustness import (
    average_sharpes,
    calculate_parameter_stability,
    calculate_robustness_score,
    calculate_walk_forward_efficiency,
    combine_oos_results,
)
from research.backtesting.window_runner import DEFAULT_LOOKBACK, run_window_backtest
from research.optimization.averaging import average_parameters
from research.optimization.grid import active_ranges, build_checked_grid
from research.optimization.window_optimizer import BacktestContext, optimize_window
from src.strategy.base import ParameterSet, Strategy

logger = structlog.get_logger(__name__)

FIXED_MODE_YIELD_EVERY = 10


class WalkForwardAnalyzer:
    """
    Walk-forward analysis engine.

    One analyzer holds the capital and execution settings; each run()
    takes the bars, the strategy and the window configuration.
    """

    def __init__(
        self,
        initial_capital: float = 10_000.0,
        position_size_percent: float = 100.0,
        commission_percent: float = 0.1,
        settings: Optional[BacktestSettings] = None,
        lookback: int = DEFAULT_LOOKBACK,
    ):
        """
        Initialize walk-forward analyzer.

        Args:
            initial_capital: Starting capital for every in-sample run and the first OOS run
            position_size_percent: Percent of capital committed per entry
            commission_percent: Commission per side
            settings: Engine settings (direction, stops)
            lookback: Warm-up bars prepended to every window
        """
        self.context = BacktestContext(
            initial_capital=initial_capital,
            position_size_percent=position_size_percent,
            commission_percent=commission_percent,
            settings=settings,
            lookback=lookback,
        )

        logger.info(
            "walk_forward_analyzer_initialized",
            initial_capital=initial_capital,
            position_size_percent=position_size_percent,
            commission_percent=commission_percent,
            lookback=lookback,
        )

    @classmethod
    def from_context(cls, context: BacktestContext) -> "WalkForwardAnalyzer":
        return cls(
            initial_capital=context.initial_capital,
            position_size_percent=context.position_size_percent,
            commission_percent=context.commission_percent,
            settings=context.settings,
            lookback=context.lookback,
        )

    @property
    def initial_capital(self) -> float:
        return self.context.initial_capital

    def _run_window(
        self,
        bars: pd.DataFrame,
        start: int,
        end: int,
        strategy: Strategy,
        params: ParameterSet,
        capital: float,
    ) -> BacktestResult:
        return run_window_backtest(
            bars,
            start,
            end,
            strategy,
            params,
            capital,
            self.context.position_size_percent,
            self.context.commission_percent,
            self.context.settings,
            self.context.lookback,
        )

    async def run(
        self,
        bars: pd.DataFrame,
        strategy: Strategy,
        config: WalkForwardConfig,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> WalkForwardResult:
        """
        Run a full walk-forward analysis.

        Args:
            bars: OHLCV bars with a timestamp column, in time order
            strategy: Strategy to optimize
            config: Window sizes, parameter ranges and selection settings
            cancel_token: Checked between optimizer batches and windows
            on_progress: Receives WalkForwardProgress updates

        Returns:
            WalkForwardResult with at least one window

        Raises:
            ParameterGridError: If the grid is empty or too large
            WalkForwardConfigError: If a window size, the step or top_n is out of range
            InsufficientDataError: If the bars cannot hold one full window
            WalkForwardCancelledError: If cancel_token fires
        """
        started = time.perf_counter()

        bars = ensure_clean_bars(bars)
        config.validate()
        total_bars = len(bars)

        ranges = active_ranges(config.parameter_ranges)
        grid = build_checked_grid(ranges)

        if total_bars < config.window_length:
            raise InsufficientDataError(
                f"Insufficient data: need at least {config.window_length} bars "
                f"(optimization {config.optimization_window} + test {config.test_window}), "
                f"have {total_bars}"
            )

        total_windows = estimate_window_count(
            total_bars, config.optimization_window, config.test_window, config.step_size
        )

        logger.info(
            "walk_forward_starting",
            strategy=strategy.name,
            total_bars=total_bars,
            total_windows=total_windows,
            grid_size=len(grid),
            optimization_window=config.optimization_window,
            test_window=config.test_window,
            step_size=config.step_size,
        )

        windows: list[WalkForwardWindow] = []
        running_capital = self.initial_capital
        current_start = 0
        window_index = 0

        while current_start + config.window_length <= total_bars:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            optimization_start = current_start
            optimization_end = current_start + config.optimization_window
            test_start = optimization_end
            test_end = min(test_start + config.test_window, total_bars)

            optimization = await optimize_window(
                bars,
                optimization_start,
                optimization_end,
                strategy,
                grid,
                self.context,
                min_trades=config.min_trades,
                top_n=config.top_n,
                cancel_token=cancel_token,
                on_progress=on_progress,
                window_index=window_index,
                total_windows=total_windows,
            )

            averaged = average_parameters(optimization.top_results, ranges)
            params = strategy.resolve_params(averaged)

            in_sample = self._run_window(
                bars, optimization_start, optimization_end, strategy, params, self.initial_capital
            )

            report(on_progress, WalkForwardProgress("test", window_index, total_windows))

            out_of_sample = self._run_window(
                bars, test_start, test_end, strategy, params, running_capital
            )

            window = self._build_window(
                window_index,
                optimization_start,
                optimization_end,
                test_start,
                test_end,
                params,
                in_sample,
                out_of_sample,
                oos_capital=running_capital,
                candidates_evaluated=optimization.evaluated,
                candidate_failures=len(optimization.failures),
            )
            windows.append(window)

            if out_of_sample.final_equity is not None:
                running_capital = out_of_sample.final_equity

            report(on_progress, WalkForwardProgress("window", window_index, total_windows))

            logger.info(
                "walk_forward_window_complete",
                window_index=window_index,
                params=params,
                is_sharpe=round(in_sample.sharpe_ratio, 3),
                oos_sharpe=round(out_of_sample.sharpe_ratio, 3),
                oos_net_profit=round(out_of_sample.net_profit, 2),
                running_capital=round(running_capital, 2),
                candidate_failures=window.candidate_failures,
            )

            current_start += config.step_size
            window_index += 1

        if not windows:
            raise InsufficientDataError(
                f"No walk-forward windows could be created. Data length: {total_bars}, "
                f"window size: {config.window_length}. Try reducing window sizes."
            )

        parameter_stability = calculate_parameter_stability(windows, ranges)
        result = self._aggregate(windows, parameter_stability, started, mode="optimized")
        report(on_progress, WalkForwardProgress("complete", len(windows), len(windows)))
        return result

    async def run_fixed_params(
        self,
        bars: pd.DataFrame,
        strategy: Strategy,
        test_window: int,
        step_size: Optional[int] = None,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> WalkForwardResult:
        """
        Walk-forward for a strategy with nothing to optimize.

        Each window [s, s + test_window) is split at its midpoint: the first
        half is the in-sample run (original capital) and the second half the
        out-of-sample run (chained capital). The strategy defaults are used
        throughout, so parameter stability is 100.

        Raises:
            WalkForwardConfigError: If test_window is below 2 or the step is not positive
            InsufficientDataError: If there are fewer than 2 * test_window bars
            WalkForwardCancelledError: If cancel_token fires
        """
        started = time.perf_counter()
        step_size = step_size or test_window

        bars = ensure_clean_bars(bars)
        total_bars = len(bars)

        if test_window < 2 or step_size <= 0:
            raise WalkForwardConfigError(
                f"Fixed-parameter walk-forward needs test_window >= 2 and a positive step, "
                f"got test_window={test_window}, step_size={step_size}"
            )
        if total_bars < test_window * 2:
            raise InsufficientDataError(
                f"Insufficient data: need at least {test_window * 2} bars for walk-forward, "
                f"have {total_bars}"
            )

        total_windows = (total_bars - test_window) // step_size + 1
        params = strategy.resolve_params()

        logger.info(
            "fixed_walk_forward_starting",
            strategy=strategy.name,
            total_bars=total_bars,
            total_windows=total_windows,
            test_window=test_window,
            step_size=step_size,
        )

        windows: list[WalkForwardWindow] = []
        running_capital = self.initial_capital
        current_start = 0
        window_index = 0

        while current_start + test_window <= total_bars:
            if cancel_token is not None:
                cancel_token.raise_if_cancelled()

            window_start = current_start
            window_end = current_start + test_window
            midpoint = window_start + (window_end - window_start) // 2

            in_sample = self._run_window(
                bars, window_start, midpoint, strategy, params, self.initial_capital
            )
            out_of_sample = self._run_window(
                bars, midpoint, window_end, strategy, params, running_capital
            )

            windows.append(
                self._build_window(
                    window_index,
                    window_start,
                    midpoint,
                    midpoint,
                    window_end,
                    params,
                    in_sample,
                    out_of_sample,
                    oos_capital=running_capital,
                )
            )

            if out_of_sample.final_equity is not None:
                running_capital = out_of_sample.final_equity

            report(on_progress, WalkForwardProgress("window", window_index, total_windows))

            current_start += step_size
            window_index += 1

            if window_index % FIXED_MODE_YIELD_EVERY == 0:
                await asyncio.sleep(0)

        result = self._aggregate(windows, 100.0, started, mode="fixed")
        report(on_progress, WalkForwardProgress("complete", len(windows), len(windows)))
        return result

    async def run_quick(
        self,
        bars: pd.DataFrame,
        strategy: Strategy,
        cancel_token: Optional[CancellationToken] = None,
        on_progress: Optional[ProgressCallback] = None,
    ) -> WalkForwardResult:
        """
        Walk-forward with automatically derived windows and ranges.

        Falls back to fixed-parameter mode when none of the strategy's
        defaults yields a usable range.
        """
        bars = ensure_clean_bars(bars)
        config = derive_quick_config(len(bars), strategy.resolve_params())

        if not config.parameter_ranges:
            test_window = max(20, len(bars) // 5)
            logger.info(
                "quick_walk_forward_fixed_fallback",
                strategy=strategy.name,
                test_window=test_window,
            )
            return await self.run_fixed_params(
                bars, strategy, test_window, test_window, cancel_token, on_progress
            )

        logger.info(
            "quick_walk_forward_config",
            strategy=strategy.name,
            optimization_window=config.optimization_window,
            test_window=config.test_window,
            ranges=[r.name for r in config.parameter_ranges],
        )
        return await self.run(bars, strategy, config, cancel_token, on_progress)

    def _build_window(
        self,
        window_index: int,
        optimization_start: int,
        optimization_end: int,
        test_start: int,
        test_end: int,
        params: ParameterSet,
        in_sample: BacktestResult,
        out_of_sample: BacktestResult,
        oos_capital: float,
        candidates_evaluated: int = 0,
        candidate_failures: int = 0,
    ) -> WalkForwardWindow:
        sharpe_degradation, performance_degradation_percent = degradation_metrics(
            in_sample, out_of_sample
        )
        return WalkForwardWindow(
            window_index=window_index,
            optimization_start=optimization_start,
            optimization_end=optimization_end,
            test_start=test_start,
            test_end=test_end,
            optimized_params=dict(params),
            in_sample_result=in_sample,
            out_of_sample_result=out_of_sample,
            sharpe_degradation=sharpe_degradation,
            performance_degradation_percent=performance_degradation_percent,
            in_sample_capital=self.initial_capital,
            out_of_sample_capital=oos_capital,
            candidates_evaluated=candidates_evaluated,
            candidate_failures=candidate_failures,
        )

    def _aggregate(
        self,
        windows: list[WalkForwardWindow],
        parameter_stability: float,
        started: float,
        mode: str,
    ) -> WalkForwardResult:
        combined = combine_oos_results(windows, self.initial_capital)
        avg_is_sharpe, avg_oos_sharpe = average_sharpes(windows)
        efficiency = calculate_walk_forward_efficiency(avg_is_sharpe, avg_oos_sharpe)
        robustness = calculate_robustness_score(efficiency, parameter_stability, windows)
        elapsed_ms = (time.perf_counter() - started) * 1000

        logger.info(
            "walk_forward_complete",
            mode=mode,
            total_windows=len(windows),
            avg_is_sharpe=round(avg_is_sharpe, 3),
            avg_oos_sharpe=round(avg_oos_sharpe, 3),
            walk_forward_efficiency=round(efficiency, 3),
            parameter_stability=round(parameter_stability, 1),
            robustness_score=robustness,
            oos_total_trades=combined.total_trades,
            elapsed_ms=round(elapsed_ms, 1),
        )

        return WalkForwardResult(
            windows=windows,
            combined_oos_result=combined,
            avg_in_sample_sharpe=avg_is_sharpe,
            avg_out_of_sample_sharpe=avg_oos_sharpe,
            walk_forward_efficiency=efficiency,
            parameter_stability=parameter_stability,
            robustness_score=robustness,
            total_windows=len(windows),
            optimization_time_ms=elapsed_ms,
            mode=mode,
        )
