"""
End-to-end walk-forward tests.

Runs the full analyzer over synthetic bars with real strategies and
checks the window layout, capital chaining, aggregation, cancellation
and the alternative run modes.
"""

from pathlib import Path

import numpy as np
import pytest

from research.backtesting.auto_range import estimate_window_count
from research.backtesting.config import WalkForwardConfig, load_settings
from research.backtesting.errors import (
    InsufficientDataError,
    ParameterGridError,
    WalkForwardCancelledError,
    WalkForwardConfigError,
)
from research.backtesting.progress import CancellationToken
from research.backtesting.report import format_walk_forward_summary
from research.backtesting.walk_forward import WalkForwardAnalyzer
from research.optimization.grid import ParameterRange
from src.strategy import get_strategy
from src.strategy.base import FunctionStrategy

SHIPPED_CONFIG = Path(__file__).resolve().parents[2] / "config" / "walk_forward.yaml"


@pytest.fixture
def analyzer():
    return WalkForwardAnalyzer(initial_capital=10_000, commission_percent=0.1)


@pytest.fixture
def period_config():
    return WalkForwardConfig(
        optimization_window=400,
        test_window=100,
        step_size=100,
        parameter_ranges=[ParameterRange("period", 5, 20, 5)],
        top_n=3,
        min_trades=1,
    )


class TestOptimizedWalkForward:
    """Full optimize -> test -> chain flow."""

    @pytest.mark.asyncio
    async def test_window_layout(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)

        assert result.total_windows == 6
        assert result.total_windows == estimate_window_count(len(synthetic_bars), 400, 100, 100)
        assert len(result.windows) == result.total_windows
        assert result.mode == "optimized"

        for i, window in enumerate(result.windows):
            assert window.window_index == i
            assert window.optimization_start == i * 100
            assert window.optimization_end - window.optimization_start == 400
            assert window.test_start == window.optimization_end
            assert window.test_end - window.test_start == 100
            assert window.test_end <= len(synthetic_bars)
            assert window.candidates_evaluated == 4

    @pytest.mark.asyncio
    async def test_optimized_params_stay_in_range(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)

        for window in result.windows:
            assert window.optimized_params["period"] in {5, 10, 15, 20}

    @pytest.mark.asyncio
    async def test_oos_capital_is_chained(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)
        windows = result.windows

        assert windows[0].out_of_sample_capital == 10_000
        for prev, curr in zip(windows, windows[1:]):
            assert curr.out_of_sample_capital == pytest.approx(prev.out_of_sample_result.final_equity)
        for window in windows:
            assert window.in_sample_capital == 10_000
            assert window.in_sample_result.equity_curve[0].time >= synthetic_bars["timestamp"].iloc[window.optimization_start]

    @pytest.mark.asyncio
    async def test_combined_oos_result(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)
        combined = result.combined_oos_result

        expected_trades = [t for w in result.windows for t in w.out_of_sample_result.trades]
        assert combined.trades == expected_trades
        assert combined.total_trades == len(expected_trades)
        assert len(combined.equity_curve) == 6 * 100
        assert combined.equity_curve[-1].value == pytest.approx(result.windows[-1].out_of_sample_result.final_equity)

    @pytest.mark.asyncio
    async def test_aggregate_metrics_bounded(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)

        assert 0 <= result.parameter_stability <= 100
        assert isinstance(result.robustness_score, int)
        assert 0 <= result.robustness_score <= 100
        assert result.optimization_time_ms >= 0
        assert result.avg_in_sample_sharpe == pytest.approx(
            sum(w.in_sample_result.sharpe_ratio for w in result.windows) / 6
        )

    @pytest.mark.asyncio
    async def test_deterministic(self, synthetic_bars, period_strategy, period_config):
        first = await WalkForwardAnalyzer().run(synthetic_bars, period_strategy, period_config)
        second = await WalkForwardAnalyzer().run(synthetic_bars, period_strategy, period_config)

        assert [w.optimized_params for w in first.windows] == [w.optimized_params for w in second.windows]
        assert first.combined_oos_result.net_profit == second.combined_oos_result.net_profit
        assert first.robustness_score == second.robustness_score

    @pytest.mark.asyncio
    async def test_summary_renders(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars, period_strategy, period_config)
        text = format_walk_forward_summary(result)

        assert "Total Windows:             6" in text
        assert "Window 6:" in text

    @pytest.mark.asyncio
    async def test_ema_strategy_with_configured_ranges(self, analyzer, synthetic_bars):
        settings = load_settings(str(SHIPPED_CONFIG), environ={})
        config = settings.to_config(
            settings.ranges_for("ema_crossover"),
            optimization_window=400,
            test_window=100,
            step_size=200,
        )

        result = await analyzer.run(synthetic_bars, get_strategy("ema_crossover"), config)

        assert result.total_windows == 3
        for window in result.windows:
            assert window.optimized_params["fast_period"] < window.optimized_params["slow_period"]
            assert window.candidate_failures == 0

    @pytest.mark.asyncio
    async def test_failing_candidates_do_not_abort(self, analyzer, synthetic_bars, period_strategy):
        config = WalkForwardConfig(
            optimization_window=400,
            test_window=100,
            step_size=250,
            parameter_ranges=[ParameterRange("period", 0, 10, 5)],
            min_trades=1,
        )

        result = await analyzer.run(synthetic_bars, period_strategy, config)

        assert result.total_windows == 3
        assert all(w.candidate_failures == 1 for w in result.windows)


class TestRunPreconditions:
    """Fatal errors raised before any window runs."""

    @pytest.mark.asyncio
    async def test_insufficient_data(self, analyzer, synthetic_bars, period_strategy, period_config):
        with pytest.raises(InsufficientDataError, match="Insufficient data"):
            await analyzer.run(synthetic_bars.iloc[:499], period_strategy, period_config)

    @pytest.mark.asyncio
    async def test_exact_fit_gives_one_window(self, analyzer, synthetic_bars, period_strategy, period_config):
        result = await analyzer.run(synthetic_bars.iloc[:500], period_strategy, period_config)
        assert result.total_windows == 1

    @pytest.mark.asyncio
    async def test_oversized_grid(self, analyzer, synthetic_bars, period_strategy):
        config = WalkForwardConfig(
            optimization_window=400,
            test_window=100,
            step_size=100,
            parameter_ranges=[ParameterRange("a", 1, 1000, 1), ParameterRange("b", 1, 1000, 1)],
        )
        with pytest.raises(ParameterGridError):
            await analyzer.run(synthetic_bars, period_strategy, config)

    @pytest.mark.asyncio
    async def test_non_positive_step(self, analyzer, synthetic_bars, period_strategy):
        with pytest.raises(WalkForwardConfigError, match="step_size"):
            await analyzer.run(synthetic_bars, period_strategy, WalkForwardConfig(400, 100, 0))


class TestCancellationAndProgress:
    """Cooperative cancellation and progress phases."""

    @pytest.mark.asyncio
    async def test_progress_phases(self, analyzer, synthetic_bars, period_strategy, period_config):
        updates = []
        await analyzer.run(synthetic_bars, period_strategy, period_config, on_progress=updates.append)

        phases = [u.phase for u in updates]
        assert phases.count("test") == 6
        assert phases.count("window") == 6
        assert phases[-1] == "complete"
        assert updates[-1].window_index == updates[-1].total_windows == 6

    @pytest.mark.asyncio
    async def test_cancel_after_first_window(self, analyzer, synthetic_bars, period_strategy, period_config):
        token = CancellationToken()
        windows_done = []

        def on_progress(update):
            if update.phase == "window":
                windows_done.append(update.window_index)
                token.cancel("test stop")

        with pytest.raises(WalkForwardCancelledError, match="test stop"):
            await analyzer.run(
                synthetic_bars, period_strategy, period_config,
                cancel_token=token, on_progress=on_progress,
            )

        assert windows_done == [0]

    @pytest.mark.asyncio
    async def test_cancelled_before_start(self, analyzer, synthetic_bars, period_strategy, period_config):
        token = CancellationToken()
        token.cancel()

        with pytest.raises(WalkForwardCancelledError):
            await analyzer.run(synthetic_bars, period_strategy, period_config, cancel_token=token)


class TestFixedAndQuickModes:
    """Fixed-parameter and auto-configured runs."""

    @pytest.mark.asyncio
    async def test_fixed_params(self, analyzer, synthetic_bars, period_strategy):
        result = await analyzer.run_fixed_params(synthetic_bars, period_strategy, test_window=200)

        assert result.mode == "fixed"
        assert result.total_windows == 5
        assert result.parameter_stability == 100.0
        for window in result.windows:
            assert window.optimized_params == {"period": 10}
            assert window.test_start == window.optimization_end
            assert window.optimization_end - window.optimization_start == 100
            assert window.test_end - window.test_start == 100

    @pytest.mark.asyncio
    async def test_fixed_params_chains_capital(self, analyzer, synthetic_bars, period_strategy):
        result = await analyzer.run_fixed_params(synthetic_bars, period_strategy, test_window=200, step_size=100)

        assert result.total_windows == 9
        for prev, curr in zip(result.windows, result.windows[1:]):
            assert curr.out_of_sample_capital == pytest.approx(prev.out_of_sample_result.final_equity)

    @pytest.mark.asyncio
    async def test_fixed_params_window_too_small(self, analyzer, synthetic_bars, period_strategy):
        with pytest.raises(WalkForwardConfigError, match="test_window >= 2"):
            await analyzer.run_fixed_params(synthetic_bars, period_strategy, test_window=1)

    @pytest.mark.asyncio
    async def test_fixed_params_insufficient_data(self, analyzer, synthetic_bars, period_strategy):
        with pytest.raises(InsufficientDataError, match="need at least 400 bars"):
            await analyzer.run_fixed_params(synthetic_bars.iloc[:399], period_strategy, test_window=200)

    @pytest.mark.asyncio
    async def test_quick_mode_optimizes(self, analyzer, synthetic_bars, period_strategy):
        result = await analyzer.run_quick(synthetic_bars, period_strategy)

        assert result.mode == "optimized"
        # window 200 -> test 60, optimization 140, step 60
        assert result.total_windows == estimate_window_count(1000, 140, 60, 60)
        assert result.windows[0].test_end - result.windows[0].test_start == 60

    @pytest.mark.asyncio
    async def test_quick_mode_rsi_on_random_walk(self, analyzer, bars_factory):
        """Averaged thresholds may cross; the run still completes."""
        rng = np.random.default_rng(3)
        bars = bars_factory(100 * np.exp(np.cumsum(rng.normal(0, 0.01, 1500))))

        result = await analyzer.run_quick(bars, get_strategy("rsi_mean_reversion"))

        assert result.mode == "optimized"
        # window 300 -> test 90, optimization 210, step 90
        assert result.total_windows == estimate_window_count(1500, 210, 90, 90)
        for window in result.windows:
            assert set(window.optimized_params) == {"period", "oversold_threshold", "overbought_threshold"}

    @pytest.mark.asyncio
    async def test_quick_mode_without_parameters_falls_back_to_fixed(self, analyzer, synthetic_bars):
        strategy = FunctionStrategy(lambda bars, params: [], {}, name="idle")

        result = await analyzer.run_quick(synthetic_bars, strategy)

        assert result.mode == "fixed"
        assert result.total_windows == 5
        assert result.combined_oos_result.total_trades == 0
