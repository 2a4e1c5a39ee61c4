"""
Backtesting engine.

Turns a bar series plus a list of buy/sell signals into trades, an equity
curve and summary statistics. The walk-forward engine treats this module
as a black box through four calls:

- run_backtest(bars, signals, initial_capital, position_size_percent,
  commission_percent, settings)
- calculate_backtest_stats(trades, equity_curve, initial_capital,
  final_capital, max_drawdown, max_drawdown_percent)
- calculate_max_drawdown(equity_curve, initial_capital)
- compare_time(a, b)
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import date, datetime, timezone
from functools import cmp_to_key
from typing import Any, Optional
import math
import numbers
import structlog

import numpy as np
import pandas as pd

from src.strategy.base import Signal, SignalType

logger = structlog.get_logger(__name__)

REQUIRED_COLUMNS = ("timestamp", "open", "high", "low", "close", "volume")

# Sharpe normalization: too few trades or near-zero variance give unstable values
SHARPE_MIN_TRADES = 5
SHARPE_MIN_STD_DEV = 1e-4
SHARPE_MAX_ABS = 8.0


@dataclass
class BacktestSettings:
    """Execution settings for a backtest run."""
    trade_direction: str = "long"  # long | short | both
    stop_loss_percent: float = 0.0  # 0 disables
    take_profit_percent: float = 0.0  # 0 disables
    allow_same_bar_exit: bool = False

    def __post_init__(self):
        if self.trade_direction not in ("long", "short", "both"):
            raise ValueError(f"trade_direction must be long, short or both, got {self.trade_direction!r}")


@dataclass(frozen=True)
class EquityPoint:
    """Equity value at a bar."""
    time: Any
    value: float


@dataclass(frozen=True)
class Trade:
    """A completed round-trip trade."""
    id: int
    direction: str  # long | short
    entry_time: Any
    entry_price: float
    exit_time: Any
    exit_price: float
    pnl: float
    pnl_percent: float
    size: float
    fees: float = 0.0
    exit_reason: str = "signal"


@dataclass
class BacktestResult:
    """Results from a backtest run."""
    trades: list[Trade] = field(default_factory=list)

    # Returns
    net_profit: float = 0.0
    net_profit_percent: float = 0.0

    # Trading metrics
    win_rate: float = 0.0  # percent, 0-100
    expectancy: float = 0.0
    avg_trade: float = 0.0
    profit_factor: float = 0.0
    total_trades: int = 0
    winning_trades: int = 0
    losing_trades: int = 0
    avg_win: float = 0.0
    avg_loss: float = 0.0

    # Risk metrics
    max_drawdown: float = 0.0
    max_drawdown_percent: float = 0.0
    sharpe_ratio: float = 0.0

    # Equity curve
    equity_curve: list[EquityPoint] = field(default_factory=list)

    @property
    def final_equity(self) -> Optional[float]:
        """Get final equity from equity curve (None if the curve is empty)."""
        if self.equity_curve:
            return self.equity_curve[-1].value
        return None

    def equity_frame(self) -> pd.DataFrame:
        """Equity curve as a DataFrame with timestamp and equity columns."""
        return pd.DataFrame(
            {
                "timestamp": [p.time for p in self.equity_curve],
                "equity": [p.value for p in self.equity_curve],
            }
        )


# ---------------------------------------------------------------------------
# Time handling
# ---------------------------------------------------------------------------

def time_to_number(value: Any) -> Optional[float]:
    """Convert a bar timestamp to a comparable number (epoch seconds for dates)."""
    if isinstance(value, bool):
        return None
    if isinstance(value, numbers.Real):
        return float(value)
    if isinstance(value, np.datetime64):
        value = pd.Timestamp(value)
    if isinstance(value, datetime):
        if value.tzinfo is None:
            value = value.replace(tzinfo=timezone.utc)
        return value.timestamp()
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc).timestamp()
    if isinstance(value, Mapping) and "year" in value:
        return datetime(
            int(value["year"]), int(value.get("month", 1)), int(value.get("day", 1)),
            tzinfo=timezone.utc,
        ).timestamp()
    if isinstance(value, str):
        try:
            return time_to_number(pd.Timestamp(value))
        except ValueError:
            return None
    return None


def time_key(value: Any) -> str:
    """String key for timestamps that cannot be converted to numbers."""
    if isinstance(value, Mapping) and "year" in value:
        return f"{int(value['year']):04d}-{int(value.get('month', 1)):02d}-{int(value.get('day', 1)):02d}"
    return str(value)


def compare_time(a: Any, b: Any) -> int:
    """Total ordering over bar timestamps. Returns -1, 0 or 1."""
    a_num = time_to_number(a)
    b_num = time_to_number(b)
    if a_num is not None and b_num is not None:
        return (a_num > b_num) - (a_num < b_num)

    a_key = time_key(a)
    b_key = time_key(b)
    return (a_key > b_key) - (a_key < b_key)


# ---------------------------------------------------------------------------
# Data validation
# ---------------------------------------------------------------------------

def ensure_clean_bars(bars: pd.DataFrame) -> pd.DataFrame:
    """
    Drop unusable rows and reset the positional index.

    Raises:
        ValueError: If required OHLCV columns are missing
    """
    missing = [c for c in REQUIRED_COLUMNS if c not in bars.columns]
    if missing:
        raise ValueError(f"Bars are missing required columns: {missing}")

    clean = bars.dropna(subset=["timestamp", "close"]).reset_index(drop=True)

    dropped = len(bars) - len(clean)
    if dropped:
        logger.warning("bars_dropped_during_cleaning", dropped=dropped, remaining=len(clean))

    return clean


# ---------------------------------------------------------------------------
# Statistics
# ---------------------------------------------------------------------------

def calculate_sharpe_ratio(returns: list[float]) -> float:
    """Per-trade Sharpe ratio, normalized against unstable small samples."""
    finite = np.array([r for r in returns if math.isfinite(r)], dtype=float)
    if len(finite) < SHARPE_MIN_TRADES:
        return 0.0

    std = float(finite.std(ddof=1)) if len(finite) > 1 else 0.0
    if std < SHARPE_MIN_STD_DEV:
        return 0.0

    raw = float(finite.mean()) / std
    if not math.isfinite(raw):
        return 0.0
    return max(-SHARPE_MAX_ABS, min(SHARPE_MAX_ABS, raw))


def calculate_max_drawdown(
    equity_curve: list[EquityPoint],
    initial_capital: float,
) -> tuple[float, float]:
    """
    Calculate maximum drawdown.

    Returns:
        (max_drawdown, max_drawdown_percent), the peak starting at initial_capital
    """
    peak = initial_capital
    max_drawdown = 0.0
    max_drawdown_percent = 0.0

    for point in equity_curve:
        if point.value > peak:
            peak = point.value
        drawdown = peak - point.value
        if drawdown > max_drawdown:
            max_drawdown = drawdown
            max_drawdown_percent = (drawdown / peak) * 100 if peak > 0 else 0.0

    return max_drawdown, max_drawdown_percent


def calculate_backtest_stats(
    trades: list[Trade],
    equity_curve: list[EquityPoint],
    initial_capital: float,
    final_capital: float,
    max_drawdown: float,
    max_drawdown_percent: float,
) -> BacktestResult:
    """Aggregate trades and an equity curve into a BacktestResult."""
    winning = [t for t in trades if t.pnl > 0]
    total_profit = sum(t.pnl for t in winning)
    total_loss = abs(sum(t.pnl for t in trades if t.pnl <= 0))

    losing_count = len(trades) - len(winning)
    avg_win = total_profit / len(winning) if winning else 0.0
    avg_loss = total_loss / losing_count if losing_count > 0 else 0.0

    net_profit = final_capital - initial_capital
    net_profit_percent = (net_profit / initial_capital) * 100 if initial_capital > 0 else 0.0
    win_rate = len(winning) / len(trades) if trades else 0.0
    expectancy = win_rate * avg_win - (1 - win_rate) * avg_loss
    avg_trade = net_profit / len(trades) if trades else 0.0

    if total_loss > 0:
        profit_factor = total_profit / total_loss
    else:
        profit_factor = float("inf") if total_profit > 0 else 0.0

    return BacktestResult(
        trades=list(trades),
        net_profit=net_profit,
        net_profit_percent=net_profit_percent,
        win_rate=win_rate * 100,
        expectancy=expectancy,
        avg_trade=avg_trade,
        profit_factor=profit_factor,
        total_trades=len(trades),
        winning_trades=len(winning),
        losing_trades=losing_count,
        avg_win=avg_win,
        avg_loss=avg_loss,
        max_drawdown=max_drawdown,
        max_drawdown_percent=max_drawdown_percent,
        sharpe_ratio=calculate_sharpe_ratio([t.pnl_percent for t in trades]),
        equity_curve=list(equity_curve),
    )


# ---------------------------------------------------------------------------
# Simulation
# ---------------------------------------------------------------------------

def _opens(signal_type: SignalType, trade_direction: str) -> Optional[str]:
    """Position direction opened by a signal, or None if not allowed."""
    if signal_type == SignalType.BUY and trade_direction in ("long", "both"):
        return "long"
    if signal_type == SignalType.SELL and trade_direction in ("short", "both"):
        return "short"
    return None


def _closes(signal_type: SignalType, direction: str) -> bool:
    if direction == "long":
        return signal_type == SignalType.SELL
    return signal_type == SignalType.BUY


def run_backtest(
    bars: pd.DataFrame,
    signals: list[Signal],
    initial_capital: float,
    position_size_percent: float,
    commission_percent: float,
    settings: Optional[BacktestSettings] = None,
) -> BacktestResult:
    """
    Run a signal-driven backtest.

    A signal fills at its own price on the bar whose timestamp equals the
    signal time. Signals with no matching bar are skipped. Any position
    still open at the last bar is closed at that bar's close.

    Args:
        bars: Historical bars (timestamp, open, high, low, close, volume)
        signals: Buy/sell signals, any order
        initial_capital: Starting capital
        position_size_percent: Percent of current capital committed per entry
        commission_percent: Commission charged on entry and exit notional
        settings: Direction and stop-loss / take-profit settings

    Returns:
        BacktestResult with trades, equity curve and statistics
    """
    settings = settings or BacktestSettings()

    if len(bars) == 0:
        return BacktestResult()

    commission_rate = commission_percent / 100
    ordered = sorted(signals, key=cmp_to_key(lambda a, b: compare_time(a.time, b.time)))

    timestamps = bars["timestamp"].tolist()
    highs = bars["high"].to_numpy(dtype=float)
    lows = bars["low"].to_numpy(dtype=float)
    closes = bars["close"].to_numpy(dtype=float)

    capital = initial_capital
    position: Optional[dict] = None
    trades: list[Trade] = []
    equity_curve: list[EquityPoint] = []
    signal_idx = 0

    def open_position(direction: str, price: float, when: Any) -> Optional[dict]:
        nonlocal capital
        notional = capital * (position_size_percent / 100)
        if price <= 0 or notional <= 0:
            return None
        entry_commission = notional * commission_rate
        capital -= entry_commission
        return {
            "direction": direction,
            "entry_time": when,
            "entry_price": price,
            "size": notional / price,
            "entry_commission": entry_commission,
        }

    def close_position(pos: dict, price: float, when: Any, reason: str) -> None:
        nonlocal capital
        factor = 1.0 if pos["direction"] == "long" else -1.0
        entry_value = pos["size"] * pos["entry_price"]
        exit_value = pos["size"] * price
        exit_commission = exit_value * commission_rate
        raw_pnl = (exit_value - entry_value) * factor
        capital += raw_pnl - exit_commission
        trades.append(
            Trade(
                id=len(trades) + 1,
                direction=pos["direction"],
                entry_time=pos["entry_time"],
                entry_price=pos["entry_price"],
                exit_time=when,
                exit_price=price,
                pnl=raw_pnl - pos["entry_commission"] - exit_commission,
                pnl_percent=(raw_pnl / entry_value) * 100 if entry_value > 0 else 0.0,
                size=pos["size"],
                fees=pos["entry_commission"] + exit_commission,
                exit_reason=reason,
            )
        )

    for i, bar_time in enumerate(timestamps):
        # Protective exits are evaluated against the bar's range first
        if position is not None:
            exit_price, reason = _protective_exit(position, highs[i], lows[i], settings)
            if exit_price is not None:
                close_position(position, exit_price, bar_time, reason)
                position = None

        while signal_idx < len(ordered) and compare_time(ordered[signal_idx].time, bar_time) <= 0:
            signal = ordered[signal_idx]
            signal_idx += 1
            if compare_time(signal.time, bar_time) != 0:
                continue

            if position is None:
                direction = _opens(signal.type, settings.trade_direction)
                if direction:
                    position = open_position(direction, signal.price, bar_time)
            elif _closes(signal.type, position["direction"]) and (
                settings.allow_same_bar_exit or compare_time(position["entry_time"], bar_time) != 0
            ):
                close_position(position, signal.price, bar_time, "signal")
                position = None
                if settings.trade_direction == "both":
                    direction = _opens(signal.type, settings.trade_direction)
                    position = open_position(direction, signal.price, bar_time)

        unrealized = 0.0
        if position is not None:
            factor = 1.0 if position["direction"] == "long" else -1.0
            unrealized = (closes[i] - position["entry_price"]) * position["size"] * factor
        equity_curve.append(EquityPoint(time=bar_time, value=capital + unrealized))

    if position is not None:
        close_position(position, float(closes[-1]), timestamps[-1], "end_of_data")
        equity_curve[-1] = EquityPoint(time=timestamps[-1], value=capital)

    max_drawdown, max_drawdown_percent = calculate_max_drawdown(equity_curve, initial_capital)

    return calculate_backtest_stats(
        trades,
        equity_curve,
        initial_capital,
        capital,
        max_drawdown,
        max_drawdown_percent,
    )


def _protective_exit(
    position: dict,
    high: float,
    low: float,
    settings: BacktestSettings,
) -> tuple[Optional[float], str]:
    """Stop-loss / take-profit fill for the current bar, stop checked first."""
    entry = position["entry_price"]
    is_long = position["direction"] == "long"

    if settings.stop_loss_percent > 0:
        offset = entry * settings.stop_loss_percent / 100
        stop = entry - offset if is_long else entry + offset
        if (is_long and low <= stop) or (not is_long and high >= stop):
            return stop, "stop_loss"

    if settings.take_profit_percent > 0:
        offset = entry * settings.take_profit_percent / 100
        target = entry + offset if is_long else entry - offset
        if (is_long and high >= target) or (not is_long and low <= target):
            return target, "take_profit"

    return None, ""
