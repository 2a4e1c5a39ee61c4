"""
Backtesting framework with walk-forward analysis.

Key principles:
- Parameters are chosen on in-sample bars only
- Signals never leak across window boundaries
- Out-of-sample capital is chained across windows
- Commission always applied
"""
