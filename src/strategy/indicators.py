"""
Per-call indicator cache.

Indicator series (EMA, RSI, ...) are expensive to recompute for every
candidate of a grid search, but caching them globally hides state across
calls. An ``IndicatorCache`` is instead built explicitly for one bar
series, carries that series' identity, and is handed to strategies next to
the bars. Strategies refuse a cache that was built for different bars.
"""

from typing import Optional

import numpy as np
import pandas as pd


def series_key(bars: pd.DataFrame) -> tuple:
    """Identity of a bar series: length, first/last timestamp and close checksum."""
    if len(bars) == 0:
        return (0, None, None, 0.0)
    close = bars["close"].to_numpy(dtype=float)
    return (
        len(bars),
        str(bars["timestamp"].iloc[0]),
        str(bars["timestamp"].iloc[-1]),
        round(float(np.nansum(close)), 8),
    )


class IndicatorCache:
    """Memoized derived arrays for a single bar series."""

    def __init__(self, bars: pd.DataFrame):
        self.key = series_key(bars)
        self._close = bars["close"].astype(float).reset_index(drop=True)
        self._store: dict[tuple, np.ndarray] = {}

    @classmethod
    def for_bars(cls, bars: pd.DataFrame) -> "IndicatorCache":
        return cls(bars)

    def matches(self, bars: pd.DataFrame) -> bool:
        return self.key == series_key(bars)

    def ensure_matches(self, bars: pd.DataFrame) -> None:
        if not self.matches(bars):
            raise ValueError(
                f"Indicator cache was built for series {self.key}, not {series_key(bars)}"
            )

    def __len__(self) -> int:
        return len(self._store)

    def ema(self, period: int) -> np.ndarray:
        """Exponential moving average of close (span=period, no adjustment)."""
        key = ("ema", int(period))
        if key not in self._store:
            self._store[key] = (
                self._close.ewm(span=int(period), adjust=False).mean().to_numpy()
            )
        return self._store[key]

    def rsi(self, period: int) -> np.ndarray:
        """
        Relative Strength Index.

        RSI = 100 - (100 / (1 + RS)), RS = average gain / average loss,
        averaged with alpha = 1/period.
        """
        key = ("rsi", int(period))
        if key not in self._store:
            delta = self._close.diff()
            gain = delta.where(delta > 0, 0.0)
            loss = -delta.where(delta < 0, 0.0)
            avg_gain = gain.ewm(alpha=1 / int(period), adjust=False).mean()
            avg_loss = loss.ewm(alpha=1 / int(period), adjust=False).mean()
            rs = avg_gain / avg_loss.replace(0.0, np.nan)
            rsi = 100 - (100 / (1 + rs))
            # No losses in the lookback means RSI is pinned at 100
            rsi = rsi.where(avg_loss != 0, 100.0)
            self._store[key] = rsi.to_numpy()
        return self._store[key]


def resolve_cache(
    bars: pd.DataFrame,
    indicators: Optional[IndicatorCache],
) -> IndicatorCache:
    """Return the caller's cache after checking it, or a fresh one for these bars."""
    if indicators is None:
        return IndicatorCache(bars)
    indicators.ensure_matches(bars)
    return indicators
