"""Tier 1: Deterministic strategies (EMA, RSI)."""

from src.strategy.tier1.ema_crossover import EMACrossoverStrategy
from src.strategy.tier1.rsi_mean_reversion import RSIMeanReversionStrategy

__all__ = ["EMACrossoverStrategy", "RSIMeanReversionStrategy"]
