"""
Comprehensive strategy tests.

Tests the reference strategies under various market conditions, edge
cases and error scenarios, plus the strategy contract the walk-forward
engine relies on.
"""

import pytest
import pandas as pd
import numpy as np
from datetime import datetime

from src.strategy import AVAILABLE_STRATEGIES, get_strategy
from src.strategy.base import FunctionStrategy, SignalType
from src.strategy.indicators import IndicatorCache
from src.strategy.tier1.ema_crossover import EMACrossoverStrategy
from src.strategy.tier1.rsi_mean_reversion import RSIMeanReversionStrategy


def make_bars(prices):
    prices = np.asarray(prices, dtype=float)
    dates = pd.date_range(start=datetime(2020, 1, 1), periods=len(prices), freq='D')
    return pd.DataFrame({
        'timestamp': dates,
        'close': prices,
        'high': prices * 1.01,
        'low': prices * 0.99,
        'open': prices,
        'volume': [1000000] * len(prices),
    })


class TestEMACrossoverComprehensive:
    """Comprehensive tests for EMA crossover strategy."""

    def test_bullish_crossover(self):
        """Test bullish EMA crossover generates buy signal."""
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)

        # Create downtrend then uptrend (crossover)
        downtrend = np.linspace(100, 90, 25)
        uptrend = np.linspace(90, 110, 25)
        bars = make_bars(np.concatenate([downtrend, uptrend]))

        signals = strategy.execute(bars, strategy.default_params)

        assert len(signals) > 0
        assert signals[-1].type == SignalType.BUY
        assert signals[-1].reason == "golden_cross"

    def test_bearish_crossover(self):
        """Test bearish crossover generates sell signal."""
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)

        uptrend = np.linspace(90, 110, 25)
        downtrend = np.linspace(110, 90, 25)
        bars = make_bars(np.concatenate([uptrend, downtrend]))

        signals = strategy.execute(bars, strategy.default_params)

        assert len(signals) > 0
        assert signals[-1].type == SignalType.SELL

    def test_signal_at_bar_time_and_close(self):
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)
        bars = make_bars(np.concatenate([np.linspace(100, 90, 25), np.linspace(90, 110, 25)]))

        for signal in strategy.execute(bars, strategy.default_params):
            row = bars[bars['timestamp'] == signal.time]
            assert len(row) == 1
            assert signal.price == pytest.approx(row['close'].iloc[0])

    def test_no_signals_during_warmup(self):
        """The initial EMA divergence is not treated as a crossover."""
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)
        bars = make_bars(np.linspace(100, 80, 40))

        assert strategy.execute(bars, strategy.default_params) == []

    def test_insufficient_data(self):
        """Test handling of insufficient data."""
        strategy = EMACrossoverStrategy(fast_period=12, slow_period=26)
        bars = make_bars([100 + i for i in range(10)])

        signals = strategy.execute(bars, strategy.default_params)

        # Should return empty list, not crash
        assert signals == []

    def test_flat_market(self):
        """Test strategy with perfectly flat market."""
        strategy = EMACrossoverStrategy()
        bars = make_bars([100.0] * 100)

        assert strategy.execute(bars, strategy.default_params) == []

    def test_whipsaw_signals_alternate(self):
        """Crossovers in a whipsaw market alternate buy/sell."""
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)
        bars = make_bars(100 + np.sin(np.linspace(0, 20, 100)) * 10)

        signals = strategy.execute(bars, strategy.default_params)

        assert len(signals) >= 2
        for prev, curr in zip(signals, signals[1:]):
            assert prev.type != curr.type

    def test_params_override_defaults(self):
        strategy = EMACrossoverStrategy(fast_period=5, slow_period=10)
        bars = make_bars(100 + np.sin(np.linspace(0, 20, 100)) * 10)

        default_signals = strategy.execute(bars, strategy.default_params)
        slow_signals = strategy.execute(bars, {"fast_period": 10, "slow_period": 30})

        assert default_signals != slow_signals

    @pytest.mark.parametrize("fast,slow", [(0, 10), (5, 0)])
    def test_non_positive_periods_rejected(self, fast, slow):
        strategy = EMACrossoverStrategy()
        bars = make_bars(np.linspace(90, 110, 50))

        with pytest.raises(ValueError, match="EMA periods"):
            strategy.execute(bars, {"fast_period": fast, "slow_period": slow})

    @pytest.mark.parametrize("fast,slow", [(10, 10), (20, 10), (10.4, 9.6)])
    def test_inverted_periods_give_no_signals(self, fast, slow):
        """Averaged periods may meet or cross after rounding."""
        strategy = EMACrossoverStrategy()
        bars = make_bars(100 + np.sin(np.linspace(0, 20, 100)) * 10)

        assert strategy.execute(bars, {"fast_period": fast, "slow_period": slow}) == []

    def test_float_params_rounded(self):
        """Grid values arrive as floats."""
        strategy = EMACrossoverStrategy()
        bars = make_bars(100 + np.sin(np.linspace(0, 20, 100)) * 10)

        as_float = strategy.execute(bars, {"fast_period": 5.0, "slow_period": 10.0})
        as_int = strategy.execute(bars, {"fast_period": 5, "slow_period": 10})
        assert as_float == as_int


class TestRSIMeanReversionComprehensive:
    """Comprehensive tests for RSI mean reversion strategy."""

    def test_oversold_generates_buy(self):
        """Test that oversold RSI generates buy signal."""
        strategy = RSIMeanReversionStrategy(period=14, oversold_threshold=30.0)

        # Rally then sustained selloff
        prices = np.concatenate([np.linspace(70, 100, 20), np.linspace(99, 60, 30)])
        bars = make_bars(prices)

        signals = strategy.execute(bars, strategy.default_params)

        assert any(s.type == SignalType.BUY for s in signals)

    def test_overbought_generates_sell(self):
        """Test that overbought RSI generates sell."""
        strategy = RSIMeanReversionStrategy(period=14, overbought_threshold=70.0)

        prices = np.concatenate([np.linspace(100, 70, 20), np.linspace(71, 110, 30)])
        bars = make_bars(prices)

        signals = strategy.execute(bars, strategy.default_params)

        assert any(s.type == SignalType.SELL for s in signals)

    def test_rsi_extreme_values(self):
        """Test RSI with extreme price movements."""
        strategy = RSIMeanReversionStrategy()

        # Extreme crash then recovery
        crash = np.linspace(100, 10, 10)  # 90% crash
        recovery = np.linspace(10, 100, 40)
        bars = make_bars(np.concatenate([crash, recovery]))

        # Should handle extreme values gracefully
        signals = strategy.execute(bars, strategy.default_params)
        assert isinstance(signals, list)

    def test_rsi_bounded(self):
        bars = make_bars(100 + np.cumsum(np.random.default_rng(1).normal(0, 2, 200)))
        rsi = IndicatorCache(bars).rsi(14)
        finite = rsi[np.isfinite(rsi)]
        assert ((finite >= 0) & (finite <= 100)).all()

    def test_rsi_with_gaps(self):
        """Test RSI calculation with price gaps."""
        strategy = RSIMeanReversionStrategy()

        prices = [100] * 50
        prices[10] = 120  # +20% gap up
        prices[20] = 80   # -33% gap down
        prices[30] = 110  # +37.5% gap up
        bars = make_bars(prices)

        # Should handle gaps without crashing
        signals = strategy.execute(bars, strategy.default_params)
        assert isinstance(signals, list)

    @pytest.mark.parametrize("oversold,overbought", [(45.0, 42.0), (50.0, 50.0)])
    def test_inverted_thresholds_give_no_signals(self, oversold, overbought):
        """Thresholds averaged on different steps can cross."""
        strategy = RSIMeanReversionStrategy()
        bars = make_bars(100 + np.sin(np.linspace(0, 20, 100)) * 10)

        params = {"period": 14, "oversold_threshold": oversold, "overbought_threshold": overbought}
        assert strategy.execute(bars, params) == []

    def test_invalid_period_rejected(self):
        strategy = RSIMeanReversionStrategy()
        with pytest.raises(ValueError, match="period"):
            strategy.execute(make_bars(np.linspace(90, 110, 50)), {"period": 1})


class TestStrategyContract:
    """Determinism, parameter merging and the indicator cache."""

    @pytest.mark.parametrize("key", AVAILABLE_STRATEGIES)
    def test_deterministic(self, key, synthetic_bars):
        strategy = get_strategy(key)
        first = strategy.execute(synthetic_bars, strategy.default_params)
        second = strategy.execute(synthetic_bars, strategy.default_params)
        assert first == second

    @pytest.mark.parametrize("key", AVAILABLE_STRATEGIES)
    def test_cache_gives_same_signals(self, key, synthetic_bars):
        strategy = get_strategy(key)
        cache = IndicatorCache(synthetic_bars)

        cached = strategy.execute(synthetic_bars, strategy.default_params, cache)
        plain = strategy.execute(synthetic_bars, strategy.default_params)

        assert cached == plain
        assert len(cache) > 0

    def test_cache_for_other_bars_rejected(self, synthetic_bars):
        strategy = EMACrossoverStrategy()
        cache = IndicatorCache(synthetic_bars.iloc[:500].reset_index(drop=True))

        with pytest.raises(ValueError, match="Indicator cache"):
            strategy.execute(synthetic_bars, strategy.default_params, cache)

    def test_cache_memoizes(self, synthetic_bars):
        cache = IndicatorCache(synthetic_bars)
        assert cache.ema(10) is cache.ema(10)
        assert len(cache) == 1

    def test_resolve_params_merges_overrides(self):
        strategy = EMACrossoverStrategy(fast_period=12, slow_period=26)
        assert strategy.resolve_params({"fast_period": 5}) == {"fast_period": 5, "slow_period": 26}
        assert strategy.default_params == {"fast_period": 12, "slow_period": 26}

    def test_function_strategy(self):
        strategy = FunctionStrategy(lambda bars, params: [], {"period": 3}, name="noop")
        assert strategy.name == "noop"
        assert strategy.execute(make_bars([1, 2, 3]), {"period": 3}) == []

    def test_unknown_strategy(self):
        with pytest.raises(KeyError, match="Unknown strategy"):
            get_strategy("martingale")
