"""
Research and backtesting modules.

This layer is for:
- Walk-forward analysis (grid search per window, OOS validation)
- Parameter optimization and robustness scoring

CRITICAL: Only the stitched out-of-sample result says anything about
how a strategy will behave forward. In-sample numbers are optimistic.
"""
