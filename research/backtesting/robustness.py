"""
Aggregation and robustness scoring.

Stitches the out-of-sample windows into one continuous result and
condenses the run into walk-forward efficiency, parameter stability and a
0-100 robustness score.
"""

import math

import numpy as np

from research.backtesting.engine import (
    BacktestResult,
    calculate_backtest_stats,
    calculate_max_drawdown,
)
from research.backtesting.results import WalkForwardWindow
from research.optimization.grid import ParameterRange

EFFICIENCY_WEIGHT = 40.0
STABILITY_WEIGHT = 25.0
OOS_WIN_WEIGHT = 20.0
CONSISTENCY_WEIGHT = 15.0


def combine_oos_results(windows: list[WalkForwardWindow], initial_capital: float) -> BacktestResult:
    """
    Concatenate every window's OOS trades and equity curve, in window order.

    OOS capital is already chained from window to window, so the
    concatenated curve is continuous.
    """
    trades = [t for w in windows for t in w.out_of_sample_result.trades]
    equity_curve = [p for w in windows for p in w.out_of_sample_result.equity_curve]

    final_capital = equity_curve[-1].value if equity_curve else initial_capital
    max_drawdown, max_drawdown_percent = calculate_max_drawdown(equity_curve, initial_capital)

    return calculate_backtest_stats(
        trades,
        equity_curve,
        initial_capital,
        final_capital,
        max_drawdown,
        max_drawdown_percent,
    )


def average_sharpes(windows: list[WalkForwardWindow]) -> tuple[float, float]:
    """(avg in-sample Sharpe, avg out-of-sample Sharpe)."""
    if not windows:
        return 0.0, 0.0
    avg_is = sum(w.in_sample_result.sharpe_ratio for w in windows) / len(windows)
    avg_oos = sum(w.out_of_sample_result.sharpe_ratio for w in windows) / len(windows)
    return avg_is, avg_oos


def calculate_walk_forward_efficiency(avg_in_sample_sharpe: float, avg_out_of_sample_sharpe: float) -> float:
    """OOS / IS Sharpe; 0 when the in-sample Sharpe is not positive."""
    if avg_in_sample_sharpe > 0:
        return avg_out_of_sample_sharpe / avg_in_sample_sharpe
    return 0.0


def calculate_parameter_stability(
    windows: list[WalkForwardWindow],
    ranges: list[ParameterRange],
) -> float:
    """
    How consistent the optimized parameters are across windows (0-100).

    For each range: population stdev of the optimized value across
    windows divided by the range span. The mean over ranges maps to
    (1 - 2 * mean) * 100, clamped to [0, 100].
    """
    if len(windows) < 2 or not ranges:
        return 100.0

    total_normalized_std = 0.0
    for param_range in ranges:
        values = np.array([w.optimized_params.get(param_range.name, 0.0) for w in windows], dtype=float)
        span = param_range.span
        total_normalized_std += float(values.std()) / span if span > 0 else 0.0

    avg_normalized_std = total_normalized_std / len(ranges)
    return max(0.0, min(100.0, (1 - avg_normalized_std * 2) * 100))


def calculate_robustness_score(
    walk_forward_efficiency: float,
    parameter_stability: float,
    windows: list[WalkForwardWindow],
) -> int:
    """
    Composite robustness verdict, an int in [0, 100].

    40 * clamp(WFE, 0, 1)
    + 25 * stability / 100
    + 20 * fraction of windows with positive OOS net profit
    + max(0, 15 - stdev(performance degradation %) / 10)
    """
    wfe = walk_forward_efficiency if math.isfinite(walk_forward_efficiency) else 0.0
    efficiency_score = max(0.0, min(1.0, wfe)) * EFFICIENCY_WEIGHT

    stability_score = (parameter_stability / 100) * STABILITY_WEIGHT

    positive = sum(1 for w in windows if w.out_of_sample_result.net_profit > 0)
    oos_win_score = (positive / len(windows) if windows else 0.0) * OOS_WIN_WEIGHT

    degradations = np.array(
        [w.performance_degradation_percent for w in windows
         if math.isfinite(w.performance_degradation_percent)],
        dtype=float,
    )
    consistency_score = 0.0
    if len(degradations) > 0:
        consistency_score = max(0.0, CONSISTENCY_WEIGHT - float(degradations.std()) / 10)

    total = efficiency_score + stability_score + oos_win_score + consistency_score
    return int(round(max(0.0, min(100.0, total))))
