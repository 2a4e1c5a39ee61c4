"""
Anchored parameter selection.

Collapses the optimizer's top-N candidates into one parameter set.
Averaging several near-optimal neighborhoods is more robust to a single
lucky grid point than taking the single best.
"""

import structlog

from research.optimization.grid import VALUE_DECIMALS, ParameterRange
from research.optimization.window_optimizer import OptimizationResult

logger = structlog.get_logger(__name__)


def midpoint_parameters(ranges: list[ParameterRange]) -> dict[str, float]:
    """Midpoint of every range."""
    return {r.name: r.midpoint for r in ranges}


def snap_to_step(value: float, step: float) -> float:
    """Round to the nearest multiple of step."""
    return round(round(value / step) * step, VALUE_DECIMALS)


def average_parameters(
    top_results: list[OptimizationResult],
    ranges: list[ParameterRange],
) -> dict[str, float]:
    """
    Score-weighted average of the top candidates.

    Args:
        top_results: Optimizer output, best first
        ranges: Parameter ranges being optimized

    Returns:
        - midpoints of all ranges if there are no candidates
        - the single candidate's params if there is exactly one
        - the best candidate's params if no candidate has a positive score
        - otherwise, per parameter, sum(w_i * value_i) with
          w_i = max(0, score_i) / sum(max(0, score_j)), snapped to the step
    """
    if not top_results:
        logger.info("no_admissible_candidates_using_midpoints", parameters=[r.name for r in ranges])
        return midpoint_parameters(ranges)

    if len(top_results) == 1:
        return dict(top_results[0].params)

    total_score = sum(max(0.0, r.score) for r in top_results)
    if total_score <= 0:
        return dict(top_results[0].params)

    averaged: dict[str, float] = {}
    for param_range in ranges:
        weighted_sum = 0.0
        for r in top_results:
            weight = max(0.0, r.score) / total_score
            weighted_sum += r.params.get(param_range.name, 0.0) * weight
        averaged[param_range.name] = snap_to_step(weighted_sum, param_range.step)

    return averaged
