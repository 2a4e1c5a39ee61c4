"""Plain-text walk-forward report."""

from research.backtesting.results import WalkForwardResult

WIDTH = 63
HEAVY_RULE = "=" * WIDTH
LIGHT_RULE = "-" * WIDTH

ROBUSTNESS_BANDS = (
    (80, "EXCELLENT", "Strategy shows strong robustness. Low overfitting risk."),
    (60, "GOOD", "Strategy is reasonably robust. Monitor for degradation."),
    (40, "MODERATE", "Some overfitting detected. Consider parameter constraints."),
    (20, "POOR", "Significant overfitting. Strategy may not perform forward."),
)
CRITICAL = ("CRITICAL", "Severe overfitting. Strategy is curve-fitted and unreliable.")


def robustness_band(score: float) -> str:
    """EXCELLENT, GOOD, MODERATE, POOR or CRITICAL."""
    for threshold, label, _ in ROBUSTNESS_BANDS:
        if score >= threshold:
            return label
    return CRITICAL[0]


def interpret_robustness_score(score: float) -> str:
    for threshold, label, text in ROBUSTNESS_BANDS:
        if score >= threshold:
            return f"{label}: {text}"
    return f"{CRITICAL[0]}: {CRITICAL[1]}"


def _section(title: str) -> list[str]:
    return [LIGHT_RULE, title.center(WIDTH).rstrip(), LIGHT_RULE, ""]


def format_walk_forward_summary(result: WalkForwardResult) -> str:
    """Render totals, combined OOS metrics, robustness and a per-window breakdown."""
    combined = result.combined_oos_result

    lines = [
        HEAVY_RULE,
        "WALK-FORWARD ANALYSIS RESULTS".center(WIDTH).rstrip(),
        HEAVY_RULE,
        "",
        f"Mode:                      {result.mode}",
        f"Total Windows:             {result.total_windows}",
        f"Optimization Time:         {result.optimization_time_ms / 1000:.2f}s",
        "",
    ]

    lines += _section("PERFORMANCE METRICS")
    lines += [
        f"Avg In-Sample Sharpe:      {result.avg_in_sample_sharpe:.3f}",
        f"Avg Out-of-Sample Sharpe:  {result.avg_out_of_sample_sharpe:.3f}",
        f"Walk-Forward Efficiency:   {result.walk_forward_efficiency * 100:.1f}%",
        "",
        f"Combined OOS Net Profit:   ${combined.net_profit:.2f} ({combined.net_profit_percent:.1f}%)",
        f"Combined OOS Win Rate:     {combined.win_rate:.1f}%",
        f"Combined OOS Profit Factor: {combined.profit_factor:.2f}",
        f"Combined OOS Max Drawdown: {combined.max_drawdown_percent:.1f}%",
        f"Combined OOS Total Trades: {combined.total_trades}",
        "",
    ]

    lines += _section("ROBUSTNESS ANALYSIS")
    lines += [
        f"Robustness Score:          {result.robustness_score}/100",
        f"Parameter Stability:       {result.parameter_stability:.1f}%",
        "",
        interpret_robustness_score(result.robustness_score),
        "",
    ]

    lines += _section("WINDOW BREAKDOWN")
    for window in result.windows:
        oos = window.out_of_sample_result
        mark = "+" if oos.net_profit >= 0 else "x"
        lines.append(
            f"Window {window.window_index + 1}: "
            f"IS: {window.in_sample_result.net_profit_percent:.1f}% -> "
            f"OOS: {oos.net_profit_percent:.1f}% {mark}  "
            f"(Degradation: {window.performance_degradation_percent:.0f}%)"
        )

    lines += ["", HEAVY_RULE]
    return "\n".join(lines)
