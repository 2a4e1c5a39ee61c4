"""
Strategy toolkit for the walk-forward analysis engine.

Strategies here are pure signal generators. They make no assumptions
about how they are backtested; the research layer owns that.
"""

__version__ = "0.1.0"
__author__ = "Market Maker Team"
