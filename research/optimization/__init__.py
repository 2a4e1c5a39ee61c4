"""
Parameter optimization for walk-forward analysis.

- Grid generation over (name, min, max, step) ranges
- Weighted multi-criterion scoring
- Cooperative, cancellable per-window grid search
- Anchored (score-weighted) parameter averaging
"""

from research.optimization.grid import (
    MAX_GRID_SIZE,
    ParameterRange,
    build_checked_grid,
    count_grid_size,
    generate_parameter_grid,
)
from research.optimization.scoring import calculate_optimization_score
from research.optimization.window_optimizer import (
    BacktestContext,
    CandidateEvaluation,
    OptimizationResult,
    WindowOptimization,
    evaluate_candidate,
    optimize_window,
)
from research.optimization.averaging import average_parameters

__all__ = [
    "MAX_GRID_SIZE",
    "BacktestContext",
    "CandidateEvaluation",
    "OptimizationResult",
    "ParameterRange",
    "WindowOptimization",
    "average_parameters",
    "build_checked_grid",
    "calculate_optimization_score",
    "count_grid_size",
    "evaluate_candidate",
    "generate_parameter_grid",
    "optimize_window",
]
