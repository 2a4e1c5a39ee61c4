"""
Walk-forward configuration.

Settings come from three layers, later ones winning:
1. Dataclass defaults
2. YAML file (config/walk_forward.yaml)
3. WFA_* environment variables (a .env file is loaded by the CLI)
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Optional
import os
import re
import structlog
import yaml

from research.backtesting.engine import BacktestSettings
from research.backtesting.errors import WalkForwardConfigError
from research.backtesting.window_runner import DEFAULT_LOOKBACK
from research.optimization.grid import ParameterRange
from research.optimization.window_optimizer import BacktestContext

logger = structlog.get_logger(__name__)

DEFAULT_CONFIG_PATH = "config/walk_forward.yaml"

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass
class WalkForwardConfig:
    """Window sizing and selection settings for one run."""
    optimization_window: int
    test_window: int
    step_size: int
    parameter_ranges: list[ParameterRange] = field(default_factory=list)
    top_n: int = 3
    min_trades: int = 5

    def validate(self) -> None:
        """
        Raises:
            WalkForwardConfigError: If a window size or the step is not positive,
                or top_n or min_trades is out of range
        """
        for name in ("optimization_window", "test_window", "step_size"):
            value = getattr(self, name)
            if value <= 0:
                raise WalkForwardConfigError(f"{name} must be positive, got {value}")
        if self.top_n < 1:
            raise WalkForwardConfigError(f"top_n must be at least 1, got {self.top_n}")
        if self.min_trades < 0:
            raise WalkForwardConfigError(f"min_trades must be non-negative, got {self.min_trades}")

    @property
    def window_length(self) -> int:
        return self.optimization_window + self.test_window


@dataclass
class CapitalSettings:
    initial_capital: float = 10_000.0
    position_size_percent: float = 100.0
    commission_percent: float = 0.1


@dataclass
class WalkForwardSettings:
    """Everything a run needs besides the bars and the strategy."""
    optimization_window: int = 500
    test_window: int = 100
    step_size: int = 100
    top_n: int = 3
    min_trades: int = 5
    lookback: int = DEFAULT_LOOKBACK
    capital: CapitalSettings = field(default_factory=CapitalSettings)
    backtest: BacktestSettings = field(default_factory=BacktestSettings)
    parameter_ranges: dict[str, list[ParameterRange]] = field(default_factory=dict)

    def ranges_for(self, strategy_key: str) -> list[ParameterRange]:
        return list(self.parameter_ranges.get(strategy_key, []))

    def to_config(
        self,
        parameter_ranges: list[ParameterRange],
        optimization_window: Optional[int] = None,
        test_window: Optional[int] = None,
        step_size: Optional[int] = None,
    ) -> WalkForwardConfig:
        return WalkForwardConfig(
            optimization_window=optimization_window or self.optimization_window,
            test_window=test_window or self.test_window,
            step_size=step_size or self.step_size,
            parameter_ranges=parameter_ranges,
            top_n=self.top_n,
            min_trades=self.min_trades,
        )

    def backtest_context(self) -> BacktestContext:
        return BacktestContext(
            initial_capital=self.capital.initial_capital,
            position_size_percent=self.capital.position_size_percent,
            commission_percent=self.capital.commission_percent,
            settings=self.backtest,
            lookback=self.lookback,
        )


# WFA_* variable -> (section, key, type)
ENV_OVERRIDES = {
    "WFA_OPTIMIZATION_WINDOW": ("walk_forward", "optimization_window", int),
    "WFA_TEST_WINDOW": ("walk_forward", "test_window", int),
    "WFA_STEP_SIZE": ("walk_forward", "step_size", int),
    "WFA_TOP_N": ("walk_forward", "top_n", int),
    "WFA_MIN_TRADES": ("walk_forward", "min_trades", int),
    "WFA_LOOKBACK": ("walk_forward", "lookback", int),
    "WFA_INITIAL_CAPITAL": ("capital", "initial_capital", float),
    "WFA_POSITION_SIZE_PERCENT": ("capital", "position_size_percent", float),
    "WFA_COMMISSION_PERCENT": ("capital", "commission_percent", float),
    "WFA_TRADE_DIRECTION": ("backtest", "trade_direction", str),
}


def _expand_env_vars(value: Any, environ: Optional[dict] = None) -> Any:
    """Expand ${VAR} references in string config values."""
    environ = os.environ if environ is None else environ
    if isinstance(value, str) and "${" in value:
        return _ENV_PATTERN.sub(lambda m: environ.get(m.group(1), m.group(0)), value)
    return value


def _read_yaml(path: str) -> dict:
    config_path = Path(path)

    if not config_path.exists():
        logger.warning("config_not_found_using_defaults", path=path)
        return {}

    with open(config_path) as f:
        raw = yaml.safe_load(f) or {}

    logger.info("config_loaded", path=path)
    return raw


def _apply_env_overrides(raw: dict, environ: Optional[dict] = None) -> dict:
    environ = os.environ if environ is None else environ

    for env_var, (section, key, cast) in ENV_OVERRIDES.items():
        value = environ.get(env_var)
        if value is None or value == "":
            continue
        try:
            raw.setdefault(section, {})[key] = cast(value)
        except ValueError as e:
            raise ValueError(f"Invalid value for {env_var}: {value!r}") from e
        logger.debug("config_env_override", variable=env_var, section=section, key=key)

    return raw


def _parse_ranges(raw: dict) -> dict[str, list[ParameterRange]]:
    ranges: dict[str, list[ParameterRange]] = {}
    for strategy_key, entries in (raw or {}).items():
        ranges[strategy_key] = [
            ParameterRange(
                name=entry["name"],
                min=float(entry["min"]),
                max=float(entry["max"]),
                step=float(entry["step"]),
            )
            for entry in entries or []
        ]
    return ranges


def settings_from_dict(raw: dict, environ: Optional[dict] = None) -> WalkForwardSettings:
    """Build settings from a parsed config mapping; unknown keys are ignored."""
    wf = {k: _expand_env_vars(v, environ) for k, v in (raw.get("walk_forward") or {}).items()}
    capital = {k: _expand_env_vars(v, environ) for k, v in (raw.get("capital") or {}).items()}
    backtest = {k: _expand_env_vars(v, environ) for k, v in (raw.get("backtest") or {}).items()}

    defaults = WalkForwardSettings()

    return WalkForwardSettings(
        optimization_window=int(wf.get("optimization_window", defaults.optimization_window)),
        test_window=int(wf.get("test_window", defaults.test_window)),
        step_size=int(wf.get("step_size", defaults.step_size)),
        top_n=int(wf.get("top_n", defaults.top_n)),
        min_trades=int(wf.get("min_trades", defaults.min_trades)),
        lookback=int(wf.get("lookback", defaults.lookback)),
        capital=CapitalSettings(
            initial_capital=float(capital.get("initial_capital", defaults.capital.initial_capital)),
            position_size_percent=float(
                capital.get("position_size_percent", defaults.capital.position_size_percent)
            ),
            commission_percent=float(capital.get("commission_percent", defaults.capital.commission_percent)),
        ),
        backtest=BacktestSettings(
            trade_direction=str(backtest.get("trade_direction", "long")),
            stop_loss_percent=float(backtest.get("stop_loss_percent", 0.0)),
            take_profit_percent=float(backtest.get("take_profit_percent", 0.0)),
            allow_same_bar_exit=bool(backtest.get("allow_same_bar_exit", False)),
        ),
        parameter_ranges=_parse_ranges(raw.get("parameter_ranges")),
    )


def load_settings(
    path: str = DEFAULT_CONFIG_PATH,
    environ: Optional[dict] = None,
) -> WalkForwardSettings:
    """
    Load walk-forward settings.

    Args:
        path: YAML config file; missing files fall back to defaults
        environ: Environment mapping for WFA_* overrides (defaults to os.environ)

    Returns:
        WalkForwardSettings
    """
    raw = _apply_env_overrides(_read_yaml(path), environ)
    return settings_from_dict(raw, environ)
