"""
Optimization scoring.

Maps one backtest result to a single comparable fitness score.
"""

import math

from research.backtesting.engine import BacktestResult

SHARPE_WEIGHT = 0.40
PROFIT_FACTOR_WEIGHT = 0.25
WIN_RATE_WEIGHT = 0.20
DRAWDOWN_WEIGHT = 0.15

PROFIT_FACTOR_CAP = 5.0
DRAWDOWN_NORMALIZATION_PCT = 50.0


def calculate_optimization_score(result: BacktestResult, min_trades: int) -> float:
    """
    Weighted multi-criterion score.

    score = 0.40*sharpe + 0.25*min(profit_factor, 5)
            + 0.20*(win_rate/100) + 0.15*max(0, 1 - max_dd%/50)

    Returns:
        -inf if the result has fewer than min_trades trades, so it can never
        outrank an admissible parameter set.
    """
    if result.total_trades < min_trades:
        return float("-inf")

    sharpe = result.sharpe_ratio if math.isfinite(result.sharpe_ratio) else 0.0
    profit_factor = (
        min(result.profit_factor, PROFIT_FACTOR_CAP)
        if math.isfinite(result.profit_factor)
        else 0.0
    )
    win_rate = result.win_rate / 100
    drawdown_score = max(0.0, 1 - result.max_drawdown_percent / DRAWDOWN_NORMALIZATION_PCT)

    return (
        sharpe * SHARPE_WEIGHT
        + profit_factor * PROFIT_FACTOR_WEIGHT
        + win_rate * WIN_RATE_WEIGHT
        + drawdown_score * DRAWDOWN_WEIGHT
    )
