#!/usr/bin/env python3
"""
Run walk-forward analysis.

Usage:
    python scripts/run_walk_forward.py --strategy ema_crossover --data bars.csv

    # Synthetic data, automatically derived windows and ranges
    python scripts/run_walk_forward.py --strategy rsi_mean_reversion --mode quick --bars 2000

    # Same strategy configuration across all windows
    python scripts/run_walk_forward.py --strategy ema_crossover --mode fixed --test-window 200

    # Size windows from the strategy's trade frequency, export OOS equity
    python scripts/run_walk_forward.py --strategy ema_crossover --suggest-windows --export oos.csv
"""

import argparse
import asyncio
import sys
from datetime import datetime
from pathlib import Path

# Add project root to path
project_root = Path(__file__).parent.parent
sys.path.insert(0, str(project_root))

import numpy as np
import pandas as pd
import structlog
from dotenv import load_dotenv

from research.backtesting.auto_range import (
    estimate_trade_frequency,
    suggest_windows_from_trade_frequency,
)
from research.backtesting.config import DEFAULT_CONFIG_PATH, load_settings
from research.backtesting.errors import WalkForwardError
from research.backtesting.report import format_walk_forward_summary
from research.backtesting.walk_forward import WalkForwardAnalyzer
from src.strategy import AVAILABLE_STRATEGIES, get_strategy
from src.utils.logging_config import setup_logging

logger = structlog.get_logger(__name__)


def generate_sample_data(num_bars: int = 2000, seed: int = 42) -> pd.DataFrame:
    """Generate a daily random-walk series with a slight uptrend."""
    dates = pd.date_range(start=datetime(2015, 1, 1), periods=num_bars, freq="D")

    rng = np.random.default_rng(seed)
    returns = rng.normal(0, 0.02, num_bars)  # 2% daily volatility
    trend = np.linspace(0, 0.1, num_bars)
    prices = 100 * np.exp(np.cumsum(returns + trend / num_bars))

    return pd.DataFrame({
        "timestamp": dates,
        "open": prices,
        "high": prices * (1 + np.abs(rng.normal(0, 0.01, num_bars))),
        "low": prices * (1 - np.abs(rng.normal(0, 0.01, num_bars))),
        "close": prices,
        "volume": rng.integers(1_000_000, 5_000_000, num_bars),
    })


def load_bars(path: str) -> pd.DataFrame:
    """Load OHLCV bars from CSV; column names are matched case-insensitively."""
    bars = pd.read_csv(path)
    bars.columns = [c.strip().lower() for c in bars.columns]
    if "timestamp" not in bars.columns:
        for alias in ("date", "time", "datetime"):
            if alias in bars.columns:
                bars = bars.rename(columns={alias: "timestamp"})
                break
    bars["timestamp"] = pd.to_datetime(bars["timestamp"])
    return bars.sort_values("timestamp").reset_index(drop=True)


async def run(args: argparse.Namespace) -> int:
    settings = load_settings(args.config)
    strategy = get_strategy(args.strategy)

    if args.data:
        logger.info("loading_bars", path=args.data)
        bars = load_bars(args.data)
    else:
        logger.info("generating_synthetic_bars", bars=args.bars, seed=args.seed)
        bars = generate_sample_data(args.bars, args.seed)

    logger.info("bars_loaded", bars_count=len(bars), strategy=strategy.name, mode=args.mode)

    analyzer = WalkForwardAnalyzer.from_context(settings.backtest_context())

    if args.mode == "quick":
        result = await analyzer.run_quick(bars, strategy)

    elif args.mode == "fixed":
        test_window = args.test_window or settings.test_window
        result = await analyzer.run_fixed_params(bars, strategy, test_window, args.step_size)

    else:
        config = settings.to_config(
            settings.ranges_for(args.strategy),
            optimization_window=args.optimization_window,
            test_window=args.test_window,
            step_size=args.step_size,
        )

        if args.suggest_windows:
            frequency = estimate_trade_frequency(bars, strategy, context=settings.backtest_context())
            if frequency is not None:
                total_trades, trades_per_bar = frequency
                suggestion = suggest_windows_from_trade_frequency(len(bars), total_trades, trades_per_bar)
                config.optimization_window = suggestion.optimization_window
                config.test_window = suggestion.test_window
                config.step_size = suggestion.step_size
                config.min_trades = suggestion.min_trades

        result = await analyzer.run(bars, strategy, config)

    print(format_walk_forward_summary(result))

    if args.export:
        equity = result.combined_oos_result.equity_frame()
        equity.to_csv(args.export, index=False)
        logger.info("oos_equity_exported", path=args.export, points=len(equity))

    return 0


def main():
    parser = argparse.ArgumentParser(description="Run walk-forward analysis")
    parser.add_argument("--strategy", required=True, choices=list(AVAILABLE_STRATEGIES))
    parser.add_argument("--mode", default="full", choices=["full", "quick", "fixed"])
    parser.add_argument("--data", type=str, help="CSV with timestamp/open/high/low/close/volume")
    parser.add_argument("--bars", type=int, default=2000, help="Synthetic bars when --data is not given")
    parser.add_argument("--seed", type=int, default=42)
    parser.add_argument("--config", default=DEFAULT_CONFIG_PATH)
    parser.add_argument("--optimization-window", type=int)
    parser.add_argument("--test-window", type=int)
    parser.add_argument("--step-size", type=int)
    parser.add_argument("--suggest-windows", action="store_true", help="Size windows from trade frequency")
    parser.add_argument("--export", type=str, help="Write the combined OOS equity curve to CSV")
    parser.add_argument("--log-level", default="INFO")
    parser.add_argument("--console-logs", action="store_true", help="Human-readable logs instead of JSON")

    args = parser.parse_args()

    setup_logging(args.log_level, json_logs=not args.console_logs)
    load_dotenv()

    logger.info("walk_forward_cli_starting", strategy=args.strategy, mode=args.mode)

    try:
        exit_code = asyncio.run(run(args))
    except WalkForwardError as e:
        logger.error("walk_forward_failed", error=str(e), error_type=type(e).__name__)
        sys.exit(1)

    sys.exit(exit_code)


if __name__ == "__main__":
    main()
