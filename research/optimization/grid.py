"""
Parameter grid generation.

Expands (name, min, max, step) ranges into the full Cartesian product of
candidate parameter sets by recursive backtracking.
"""

from dataclasses import dataclass
import math
import structlog

from research.backtesting.errors import ParameterGridError

logger = structlog.get_logger(__name__)

MAX_GRID_SIZE = 200_000
VALUE_DECIMALS = 3

# Tolerance for (max - min) / step landing a hair below an integer
_STEP_EPSILON = 1e-9


@dataclass(frozen=True)
class ParameterRange:
    """One tunable numeric dimension."""
    name: str
    min: float
    max: float
    step: float

    def __post_init__(self):
        if not (self.step > 0 and math.isfinite(self.step)):
            raise ParameterGridError(
                f"Parameter '{self.name}' has invalid step {self.step}; step must be > 0"
            )

    @property
    def span(self) -> float:
        return self.max - self.min

    @property
    def midpoint(self) -> float:
        return (self.min + self.max) / 2

    @property
    def num_values(self) -> int:
        """Branch factor: floor((max - min) / step) + 1, or 0 if min > max."""
        if self.min > self.max:
            return 0
        return int(math.floor(self.span / self.step + _STEP_EPSILON)) + 1

    def values(self) -> list[float]:
        """Grid values, rounded to avoid floating point drift."""
        return [round(self.min + i * self.step, VALUE_DECIMALS) for i in range(self.num_values)]


def active_ranges(ranges: list[ParameterRange]) -> list[ParameterRange]:
    """Drop inverted ranges (min > max); those parameters stay at their defaults."""
    kept = [r for r in ranges if r.min <= r.max]
    if len(kept) != len(ranges):
        logger.warning(
            "parameter_ranges_dropped",
            dropped=[r.name for r in ranges if r.min > r.max],
        )
    return kept


def count_grid_size(ranges: list[ParameterRange]) -> int:
    """Number of combinations generate_parameter_grid would produce."""
    size = 1
    for r in active_ranges(ranges):
        size *= r.num_values
    return size


def generate_parameter_grid(ranges: list[ParameterRange]) -> list[dict[str, float]]:
    """
    Generate every parameter combination.

    Args:
        ranges: Ordered parameter ranges

    Returns:
        One dict per grid point. With no ranges, a single empty dict
        (meaning: use the strategy defaults unmodified).
    """
    dims = [(r.name, r.values()) for r in active_ranges(ranges)]
    grid: list[dict[str, float]] = []

    def generate(index: int, current: dict[str, float]) -> None:
        if index >= len(dims):
            grid.append(dict(current))
            return

        name, values = dims[index]
        for value in values:
            current[name] = value
            generate(index + 1, current)
        current.pop(name, None)

    generate(0, {})
    return grid


def build_checked_grid(
    ranges: list[ParameterRange],
    max_size: int = MAX_GRID_SIZE,
) -> list[dict[str, float]]:
    """
    Generate the grid after checking it is non-empty and within the safety cap.

    Raises:
        ParameterGridError: If the grid is empty or larger than max_size
    """
    size = count_grid_size(ranges)

    if size > max_size:
        raise ParameterGridError(
            f"Optimization grid too large: {size} combinations (limit {max_size}). "
            f"Reduce parameter ranges or increase step sizes."
        )

    grid = generate_parameter_grid(ranges)

    if not grid:
        raise ParameterGridError("No parameter combinations generated. Check parameter ranges.")

    logger.info("parameter_grid_generated", combinations=len(grid), dimensions=len(ranges))
    return grid
