"""
Strategy module for trading strategies.

Strategies are pure signal generators: bars + params -> signals.
Tier 1: Deterministic (EMA, RSI)
"""

from src.strategy.base import FunctionStrategy, ParameterSet, Signal, SignalType, Strategy
from src.strategy.indicators import IndicatorCache

AVAILABLE_STRATEGIES = ("ema_crossover", "rsi_mean_reversion")


def get_strategy(key: str) -> Strategy:
    """Instantiate a built-in strategy with its default parameters."""
    from src.strategy.tier1 import EMACrossoverStrategy, RSIMeanReversionStrategy

    strategies = {
        "ema_crossover": EMACrossoverStrategy,
        "rsi_mean_reversion": RSIMeanReversionStrategy,
    }
    if key not in strategies:
        raise KeyError(f"Unknown strategy '{key}'. Available: {sorted(strategies)}")
    return strategies[key]()


__all__ = [
    "AVAILABLE_STRATEGIES",
    "FunctionStrategy",
    "IndicatorCache",
    "ParameterSet",
    "Signal",
    "SignalType",
    "Strategy",
    "get_strategy",
]
