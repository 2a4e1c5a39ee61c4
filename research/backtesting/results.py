"""Walk-forward result records."""

from dataclasses import dataclass

from research.backtesting.engine import BacktestResult
from src.strategy.base import ParameterSet


@dataclass(frozen=True)
class WalkForwardWindow:
    """One optimization + test window."""
    window_index: int
    optimization_start: int
    optimization_end: int  # exclusive
    test_start: int
    test_end: int  # exclusive

    optimized_params: ParameterSet
    in_sample_result: BacktestResult
    out_of_sample_result: BacktestResult

    # IS Sharpe - OOS Sharpe
    sharpe_degradation: float
    # Relative drop in net profit %, 0 when in-sample net profit % is exactly 0
    performance_degradation_percent: float

    # Diagnostics
    in_sample_capital: float = 0.0
    out_of_sample_capital: float = 0.0
    candidates_evaluated: int = 0
    candidate_failures: int = 0


@dataclass
class WalkForwardResult:
    """Full walk-forward report."""
    windows: list[WalkForwardWindow]

    # Out-of-sample windows stitched together (the true performance)
    combined_oos_result: BacktestResult

    avg_in_sample_sharpe: float
    avg_out_of_sample_sharpe: float
    walk_forward_efficiency: float
    parameter_stability: float  # 0-100
    robustness_score: int  # 0-100
    total_windows: int
    optimization_time_ms: float
    mode: str = "optimized"  # optimized | fixed


def degradation_metrics(
    in_sample: BacktestResult,
    out_of_sample: BacktestResult,
) -> tuple[float, float]:
    """(sharpe_degradation, performance_degradation_percent) for one window."""
    sharpe_degradation = in_sample.sharpe_ratio - out_of_sample.sharpe_ratio

    if in_sample.net_profit_percent != 0:
        performance_degradation_percent = (
            (in_sample.net_profit_percent - out_of_sample.net_profit_percent)
            / abs(in_sample.net_profit_percent)
        ) * 100
    else:
        performance_degradation_percent = 0.0

    return sharpe_degradation, performance_degradation_percent
