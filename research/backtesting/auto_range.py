"""
Automatic window sizing and parameter ranges.

Two helpers for running a walk-forward without hand-tuned settings:
- derive_quick_config: ~5 windows and a grid of roughly 200 candidates
  built around the strategy defaults
- suggest_windows_from_trade_frequency: window sizes that give each test
  window enough trades to be meaningful
"""

from dataclasses import dataclass
from typing import Optional
import math
import structlog

import pandas as pd

from research.backtesting.config import WalkForwardConfig
from research.backtesting.engine import run_backtest
from research.optimization.grid import ParameterRange
from research.optimization.window_optimizer import BacktestContext
from src.strategy.base import ParameterSet, Strategy

logger = structlog.get_logger(__name__)

QUICK_TARGET_WINDOWS = 5
QUICK_TEST_RATIO = 0.30
QUICK_TARGET_ITERATIONS = 200
QUICK_TOP_N = 3
QUICK_MIN_TRADES = 3

MIN_SUGGESTED_WINDOWS = 8
MAX_SUGGESTED_WINDOWS = 60
DESIRED_OOS_TRADES_PER_WINDOW = 8


def estimate_window_count(
    total_bars: int,
    optimization_window: int,
    test_window: int,
    step_size: int,
) -> int:
    """Number of windows a run will produce; 0 for invalid sizing."""
    if total_bars <= 0 or optimization_window <= 0 or test_window <= 0 or step_size <= 0:
        return 0
    window_size = optimization_window + test_window
    if window_size > total_bars:
        return 0
    return (total_bars - window_size) // step_size + 1


def _is_decimal(value: float) -> bool:
    return not float(value).is_integer() and value < 1


def derive_parameter_ranges(default_params: ParameterSet) -> list[ParameterRange]:
    """
    Build ranges around each default value.

    Decimal parameters (non-integer and below 1, e.g. Fibonacci ratios)
    span [max(0.1, 0.5d), min(1.0, 1.5d)] with a step of at least 0.05.
    Everything else spans [max(1, floor(0.5d)), ceil(2d)] with a step of
    at least 1. Ranges that collapse (min >= max) are dropped.
    """
    numeric = {
        name: float(value) for name, value in default_params.items()
        if isinstance(value, (int, float)) and not isinstance(value, bool)
    }
    steps_per_param = max(2, math.floor(QUICK_TARGET_ITERATIONS ** (1 / max(1, len(numeric)))))

    ranges = []
    for name, default in numeric.items():
        if _is_decimal(default):
            lo = max(0.1, default * 0.5)
            hi = min(1.0, default * 1.5)
            step = max(0.05, (hi - lo) / steps_per_param)
        else:
            lo = max(1.0, float(math.floor(default * 0.5)))
            hi = float(math.ceil(default * 2))
            step = max(1.0, (hi - lo) / steps_per_param)

        if lo >= hi:
            logger.debug("quick_range_dropped", parameter=name, default=default)
            continue

        ranges.append(ParameterRange(name=name, min=lo, max=hi, step=step))

    return ranges


def derive_quick_config(total_bars: int, default_params: ParameterSet) -> WalkForwardConfig:
    """Window sizing and ranges for quick mode."""
    window_size = total_bars // QUICK_TARGET_WINDOWS
    test_window = max(20, math.floor(window_size * QUICK_TEST_RATIO))
    optimization_window = max(50, window_size - test_window)

    return WalkForwardConfig(
        optimization_window=optimization_window,
        test_window=test_window,
        step_size=test_window,
        parameter_ranges=derive_parameter_ranges(default_params),
        top_n=QUICK_TOP_N,
        min_trades=QUICK_MIN_TRADES,
    )


@dataclass(frozen=True)
class WindowSuggestion:
    optimization_window: int
    test_window: int
    step_size: int
    estimated_windows: int
    expected_oos_trades_per_window: float
    min_trades: int
    min_oos_trades_per_window: int
    min_total_oos_trades: int


def suggest_windows_from_trade_frequency(
    total_bars: int,
    total_trades: int,
    trades_per_bar: float,
) -> WindowSuggestion:
    """
    Size windows so each test window expects about 8 trades.

    The test window is kept between total_bars / 60 and total_bars / 8
    (at least 20 bars), the optimization window is three test windows, and
    the step equals the test window. Sizing is rescaled when it would
    produce more than 60 windows or fewer than 3.

    Args:
        total_bars: Length of the series
        total_trades: Trades from one full-series backtest at default params
        trades_per_bar: total_trades / total_bars

    Returns:
        WindowSuggestion
    """
    min_test = max(20, total_bars // MAX_SUGGESTED_WINDOWS)
    max_test = max(min_test, total_bars // MIN_SUGGESTED_WINDOWS)

    if trades_per_bar > 0:
        test_window = math.ceil(DESIRED_OOS_TRADES_PER_WINDOW / trades_per_bar)
    else:
        test_window = max_test
    test_window = max(min_test, min(max_test, test_window))

    optimization_window = max(test_window * 2, math.floor(test_window * 3))
    optimization_window = min(total_bars - test_window, optimization_window)
    if optimization_window < test_window:
        optimization_window = test_window

    step_size = test_window
    estimated = estimate_window_count(total_bars, optimization_window, test_window, step_size)

    if estimated > MAX_SUGGESTED_WINDOWS:
        scale = math.ceil(estimated / MAX_SUGGESTED_WINDOWS)
        test_window = min(max_test, test_window * scale)
        step_size = test_window
        optimization_window = min(
            total_bars - test_window,
            max(test_window * 2, optimization_window * scale),
        )
        estimated = estimate_window_count(total_bars, optimization_window, test_window, step_size)

    if estimated < 3 and total_bars >= 3:
        test_window = max(min_test, total_bars // 5)
        step_size = test_window
        optimization_window = min(
            total_bars - test_window,
            max(test_window * 2, total_bars // 2),
        )
        estimated = estimate_window_count(total_bars, optimization_window, test_window, step_size)

    expected_oos = trades_per_bar * test_window
    min_oos = max(1, math.floor(expected_oos * 0.5))
    min_total_oos = max(20, min(total_trades, math.floor(min_oos * max(5, estimated * 0.5))))

    suggestion = WindowSuggestion(
        optimization_window=optimization_window,
        test_window=test_window,
        step_size=step_size,
        estimated_windows=estimated,
        expected_oos_trades_per_window=expected_oos,
        min_trades=max(1, min_oos),
        min_oos_trades_per_window=min_oos,
        min_total_oos_trades=min_total_oos,
    )

    logger.info(
        "window_suggestion",
        total_bars=total_bars,
        trades_per_bar=round(trades_per_bar, 5),
        optimization_window=optimization_window,
        test_window=test_window,
        estimated_windows=estimated,
    )
    return suggestion


def estimate_trade_frequency(
    bars: pd.DataFrame,
    strategy: Strategy,
    params: Optional[ParameterSet] = None,
    context: Optional[BacktestContext] = None,
) -> Optional[tuple[int, float]]:
    """
    (total_trades, trades_per_bar) from one full-series backtest.

    Returns None if the strategy or the backtest fails.
    """
    context = context or BacktestContext()
    try:
        signals = strategy.execute(bars, strategy.resolve_params(params))
        result = run_backtest(
            bars,
            signals,
            context.initial_capital,
            context.position_size_percent,
            context.commission_percent,
            context.settings,
        )
    except Exception as e:
        logger.warning("trade_frequency_estimation_failed", strategy=strategy.name, error=str(e))
        return None

    total_trades = max(0, result.total_trades)
    return total_trades, total_trades / max(1, len(bars))
