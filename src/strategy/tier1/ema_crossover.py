"""
EMA Crossover Strategy (Tier 1 - Deterministic).

This is a classic momentum strategy:
- Buy when fast EMA crosses above slow EMA (golden cross)
- Sell when fast EMA crosses below slow EMA (death cross)
"""

from typing import Optional
import structlog

import numpy as np
import pandas as pd

from src.strategy.base import ParameterSet, Signal, SignalType, Strategy
from src.strategy.indicators import IndicatorCache, resolve_cache

logger = structlog.get_logger(__name__)


class EMACrossoverStrategy(Strategy):
    """
    EMA Crossover momentum strategy.

    This is a baseline strategy that should work in trending markets
    and fail in choppy markets.
    """

    name = "ema_crossover"
    description = "Golden/death cross of a fast and a slow EMA"

    def __init__(self, fast_period: int = 12, slow_period: int = 26):
        """
        Initialize EMA crossover strategy.

        Args:
            fast_period: Fast EMA period (default 12 bars)
            slow_period: Slow EMA period (default 26 bars)
        """
        super().__init__({"fast_period": fast_period, "slow_period": slow_period})

    def execute(
        self,
        bars: pd.DataFrame,
        params: ParameterSet,
        indicators: Optional[IndicatorCache] = None,
    ) -> list[Signal]:
        """
        Generate a signal at every crossover in the series.

        A fast period that is not shorter than the slow one (possible after
        averaging and rounding) gives no signals.

        Raises:
            ValueError: If a period is below 1
        """
        fast_period = int(round(params.get("fast_period", self.default_params["fast_period"])))
        slow_period = int(round(params.get("slow_period", self.default_params["slow_period"])))

        if fast_period < 1 or slow_period < 1:
            raise ValueError(
                f"EMA periods must be >= 1, got fast_period={fast_period}, slow_period={slow_period}"
            )
        if fast_period >= slow_period:
            logger.debug("ema_periods_inverted", fast_period=fast_period, slow_period=slow_period)
            return []

        if len(bars) < slow_period + 1:
            return []

        cache = resolve_cache(bars, indicators)
        diff = cache.ema(fast_period) - cache.ema(slow_period)

        golden_cross = (diff[1:] > 0) & (diff[:-1] <= 0)
        death_cross = (diff[1:] < 0) & (diff[:-1] >= 0)

        # Skip crossovers while the slow EMA is still warming up
        warmup = np.arange(1, len(diff)) < slow_period

        timestamps = bars["timestamp"].tolist()
        closes = bars["close"].to_numpy(dtype=float)
        signals = []

        for i in np.flatnonzero((golden_cross | death_cross) & ~warmup) + 1:
            is_buy = bool(golden_cross[i - 1])
            signals.append(
                Signal(
                    time=timestamps[i],
                    type=SignalType.BUY if is_buy else SignalType.SELL,
                    price=float(closes[i]),
                    reason="golden_cross" if is_buy else "death_cross",
                )
            )

        return signals
