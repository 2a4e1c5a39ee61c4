"""
RSI Mean Reversion Strategy (Tier 1 - Deterministic).

This strategy trades mean reversion:
- Buy when RSI drops below the oversold threshold (e.g., 30)
- Sell when RSI rises above the overbought threshold (e.g., 70)
"""

from typing import Optional
import structlog

import numpy as np
import pandas as pd

from src.strategy.base import ParameterSet, Signal, SignalType, Strategy
from src.strategy.indicators import IndicatorCache, resolve_cache

logger = structlog.get_logger(__name__)


class RSIMeanReversionStrategy(Strategy):
    """
    RSI Mean Reversion strategy.

    This strategy works in choppy markets where momentum fails.
    It's the complement to EMA crossover (which works in trending markets).
    """

    name = "rsi_mean_reversion"
    description = "Buy oversold, sell overbought RSI crossings"

    def __init__(
        self,
        period: int = 14,
        oversold_threshold: float = 30.0,
        overbought_threshold: float = 70.0,
    ):
        """
        Initialize RSI mean reversion strategy.

        Args:
            period: RSI calculation period (default 14)
            oversold_threshold: RSI < this = oversold (buy signal)
            overbought_threshold: RSI > this = overbought (sell signal)
        """
        super().__init__({
            "period": period,
            "oversold_threshold": oversold_threshold,
            "overbought_threshold": overbought_threshold,
        })

    def execute(
        self,
        bars: pd.DataFrame,
        params: ParameterSet,
        indicators: Optional[IndicatorCache] = None,
    ) -> list[Signal]:
        period = int(round(params.get("period", self.default_params["period"])))
        oversold = float(params.get("oversold_threshold", self.default_params["oversold_threshold"]))
        overbought = float(params.get("overbought_threshold", self.default_params["overbought_threshold"]))

        if period < 2:
            raise ValueError(f"RSI period must be >= 2, got {period}")
        # Averaged thresholds can cross over; nothing to trade then
        if oversold >= overbought:
            logger.debug("rsi_thresholds_inverted", oversold=oversold, overbought=overbought)
            return []

        if len(bars) < period + 2:
            return []

        cache = resolve_cache(bars, indicators)
        rsi = cache.rsi(period)

        prev, curr = rsi[:-1], rsi[1:]
        with np.errstate(invalid="ignore"):
            enter_oversold = (curr < oversold) & (prev >= oversold)
            enter_overbought = (curr > overbought) & (prev <= overbought)

        timestamps = bars["timestamp"].tolist()
        closes = bars["close"].to_numpy(dtype=float)
        signals = []

        for i in np.flatnonzero(enter_oversold | enter_overbought) + 1:
            if i < period:
                continue
            is_buy = bool(enter_oversold[i - 1])
            signals.append(
                Signal(
                    time=timestamps[i],
                    type=SignalType.BUY if is_buy else SignalType.SELL,
                    price=float(closes[i]),
                    reason=f"rsi_{'oversold' if is_buy else 'overbought'}_{rsi[i]:.1f}",
                )
            )

        return signals
