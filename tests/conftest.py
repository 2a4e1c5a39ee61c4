"""
Pytest configuration and fixtures.

Shared fixtures for all tests.
"""

import pytest
import os
from pathlib import Path
from datetime import datetime
import tempfile
import shutil

import numpy as np
import pandas as pd

from src.strategy.base import FunctionStrategy, Signal, SignalType

# Keep the environment free of local overrides
for _var in list(os.environ):
    if _var.startswith("WFA_"):
        del os.environ[_var]


def make_bars(prices, start=datetime(2020, 1, 1), freq="D") -> pd.DataFrame:
    """Bars whose open/high/low/close all sit at the given prices."""
    prices = np.asarray(prices, dtype=float)
    dates = pd.date_range(start=start, periods=len(prices), freq=freq)
    return pd.DataFrame({
        "timestamp": dates,
        "open": prices,
        "high": prices * 1.01,
        "low": prices * 0.99,
        "close": prices,
        "volume": [1_000_000] * len(prices),
    })


def sma_cross_signals(bars: pd.DataFrame, params: dict) -> list[Signal]:
    """Buy when close crosses above its SMA(period), sell when it crosses below."""
    period = int(params["period"])
    if period < 1:
        raise ValueError(f"period must be positive, got {period}")

    closes = bars["close"].to_numpy(dtype=float)
    sma = pd.Series(closes).rolling(period).mean().to_numpy()
    above = closes > sma
    timestamps = bars["timestamp"].tolist()

    signals = []
    for i in range(period, len(closes)):
        if above[i] and not above[i - 1]:
            signals.append(Signal(timestamps[i], SignalType.BUY, float(closes[i]), "cross_up"))
        elif not above[i] and above[i - 1]:
            signals.append(Signal(timestamps[i], SignalType.SELL, float(closes[i]), "cross_down"))
    return signals


@pytest.fixture
def temp_dir():
    """Create temporary directory for tests."""
    temp_path = Path(tempfile.mkdtemp())
    yield temp_path
    shutil.rmtree(temp_path)


@pytest.fixture
def synthetic_bars():
    """1000 daily bars: a noisy sine wave so crossover strategies trade regularly."""
    n = 1000
    rng = np.random.default_rng(7)
    t = np.arange(n)
    prices = 100 + 10 * np.sin(t / 15) + np.cumsum(rng.normal(0, 0.5, n)) * 0.3
    return make_bars(prices)


@pytest.fixture
def period_strategy():
    """Deterministic strategy with a single tunable 'period' parameter."""
    return FunctionStrategy(sma_cross_signals, {"period": 10}, name="sma_cross")


@pytest.fixture
def bars_factory():
    """Build bars from a price list."""
    return make_bars
