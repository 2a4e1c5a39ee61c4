"""
Windowed backtest runner.

Runs the backtest engine over a sub-range [start_index, end_index) of a
bar series. Indicators warm up on a lookback buffer of earlier bars, but
only signals timed inside the window are traded, so nothing leaks across
window boundaries.
"""

from typing import Optional

import pandas as pd

from research.backtesting.engine import (
    BacktestResult,
    BacktestSettings,
    calculate_backtest_stats,
    calculate_max_drawdown,
    compare_time,
    run_backtest,
)
from research.backtesting.errors import WindowIndexError
from src.strategy.base import ParameterSet, Strategy
from src.strategy.indicators import IndicatorCache

DEFAULT_LOOKBACK = 250


def buffered_start_index(start_index: int, lookback: int = DEFAULT_LOOKBACK) -> int:
    """First bar of the warm-up buffer for a window starting at start_index."""
    return max(0, start_index - lookback)


def run_window_backtest(
    bars: pd.DataFrame,
    start_index: int,
    end_index: int,
    strategy: Strategy,
    params: ParameterSet,
    initial_capital: float,
    position_size_percent: float,
    commission_percent: float,
    settings: Optional[BacktestSettings] = None,
    lookback: int = DEFAULT_LOOKBACK,
    indicators: Optional[IndicatorCache] = None,
) -> BacktestResult:
    """
    Backtest one window of the series.

    Args:
        bars: Full, cleaned bar series
        start_index: First bar of the window (inclusive)
        end_index: End of the window (exclusive)
        strategy: Signal generator
        params: Full parameter set
        initial_capital: Capital at the start of the window
        position_size_percent: Percent of capital per entry
        commission_percent: Commission per side
        settings: Engine settings
        lookback: Warm-up bars prepended to the window
        indicators: Optional cache built for bars[buffered_start:end_index]

    Returns:
        Stats over the window only: trades entering at or after the window
        start and the equity curve from the window start onwards

    Raises:
        WindowIndexError: If the indices are out of range or select no bars
    """
    total = len(bars)
    if start_index < 0 or end_index > total or start_index >= end_index:
        raise WindowIndexError(
            f"Invalid window indices [{start_index}, {end_index}) for series of {total} bars"
        )

    buffered_start = buffered_start_index(start_index, lookback)
    buffered = bars.iloc[buffered_start:end_index].reset_index(drop=True)
    if len(buffered) == 0:
        raise WindowIndexError(
            f"Buffered slice [{buffered_start}, {end_index}) contains no bars"
        )

    all_signals = strategy.execute(buffered, params, indicators)

    window_start_time = bars["timestamp"].iloc[start_index]
    window_end_time = bars["timestamp"].iloc[end_index - 1]

    window_signals = [
        s for s in all_signals
        if compare_time(s.time, window_start_time) >= 0
        and compare_time(s.time, window_end_time) <= 0
    ]

    full_result = run_backtest(
        buffered,
        window_signals,
        initial_capital,
        position_size_percent,
        commission_percent,
        settings,
    )

    window_trades = [
        t for t in full_result.trades
        if compare_time(t.entry_time, window_start_time) >= 0
    ]
    window_equity = full_result.equity_curve[start_index - buffered_start:]

    final_capital = window_equity[-1].value if window_equity else initial_capital
    max_drawdown, max_drawdown_percent = calculate_max_drawdown(window_equity, initial_capital)

    return calculate_backtest_stats(
        window_trades,
        window_equity,
        initial_capital,
        final_capital,
        max_drawdown,
        max_drawdown_percent,
    )
