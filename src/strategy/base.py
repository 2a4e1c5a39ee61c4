"""
Strategy contract.

A strategy is a deterministic, side-effect free mapping from a bar
series plus a parameter set to a list of buy/sell signals. The
walk-forward engine only ever talks to strategies through this contract.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from enum import Enum
from typing import Any, Callable, Optional

import pandas as pd

from src.strategy.indicators import IndicatorCache

ParameterSet = dict[str, float]


class SignalType(Enum):
    """Signal direction."""
    BUY = "buy"
    SELL = "sell"


@dataclass(frozen=True)
class Signal:
    """A trading signal emitted at a specific bar time."""
    time: Any
    type: SignalType
    price: float
    reason: str = ""


class Strategy(ABC):
    """
    Base class for signal-generating strategies.

    Subclasses declare their tunable numeric parameters in
    ``default_params`` and implement ``execute``. Repeated calls with the
    same bars and params must return the same signals.
    """

    name: str = "strategy"
    description: str = ""

    def __init__(self, default_params: Optional[ParameterSet] = None):
        self.default_params: ParameterSet = dict(default_params or {})

    @abstractmethod
    def execute(
        self,
        bars: pd.DataFrame,
        params: ParameterSet,
        indicators: Optional[IndicatorCache] = None,
    ) -> list[Signal]:
        """
        Generate signals for the whole series.

        Args:
            bars: OHLCV bars (timestamp, open, high, low, close, volume)
            params: Full parameter set (defaults merged with overrides)
            indicators: Optional derived-data cache built for exactly these bars

        Returns:
            Signals in chronological order
        """

    def resolve_params(self, overrides: Optional[ParameterSet] = None) -> ParameterSet:
        """Merge overrides onto the default parameters."""
        merged = dict(self.default_params)
        if overrides:
            merged.update(overrides)
        return merged

    def __repr__(self) -> str:
        return f"{type(self).__name__}(name={self.name!r}, default_params={self.default_params!r})"


class FunctionStrategy(Strategy):
    """Adapts a plain ``fn(bars, params) -> list[Signal]`` to the contract."""

    def __init__(
        self,
        fn: Callable[[pd.DataFrame, ParameterSet], list[Signal]],
        default_params: Optional[ParameterSet] = None,
        name: str = "function_strategy",
    ):
        super().__init__(default_params)
        self.fn = fn
        self.name = name

    def execute(
        self,
        bars: pd.DataFrame,
        params: ParameterSet,
        indicators: Optional[IndicatorCache] = None,
    ) -> list[Signal]:
        return self.fn(bars, params)
