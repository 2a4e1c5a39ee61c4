"""
Walk-forward error types.

Every fatal precondition raises a subclass of WalkForwardError whose
message names the failed check, so callers can adjust ranges or window
sizing without inspecting internals.
"""


class WalkForwardError(Exception):
    """Base class for all walk-forward analysis failures."""


class ParameterGridError(WalkForwardError, ValueError):
    """Parameter ranges produce an empty, invalid, or oversized grid."""


class WalkForwardConfigError(WalkForwardError, ValueError):
    """Window sizes, step or selection settings are out of range."""


class InsufficientDataError(WalkForwardError, ValueError):
    """The bar series cannot hold a single optimization + test window."""


class WindowIndexError(WalkForwardError, IndexError):
    """Window indices are out of range or select no bars."""


class WalkForwardCancelledError(WalkForwardError):
    """The run was cancelled through its cancellation token."""
