"""
Progress reporting and cancellation for long walk-forward runs.

Both are checked at the cooperative yield points of the window
optimizer and at every window boundary.
"""

from dataclasses import dataclass
from typing import Callable, Optional
import structlog

from research.backtesting.errors import WalkForwardCancelledError

logger = structlog.get_logger(__name__)


@dataclass(frozen=True)
class WalkForwardProgress:
    """Snapshot of where a run currently is."""
    phase: str  # optimize | test | window | complete
    window_index: int
    total_windows: int
    combo_index: int = 0
    combo_total: int = 0


ProgressCallback = Callable[[WalkForwardProgress], None]


class CancellationToken:
    """
    Cooperative cancellation flag.

    The caller keeps a reference and calls cancel(); the engine raises
    WalkForwardCancelledError the next time it reaches a check point.
    """

    def __init__(self):
        self._cancelled = False
        self._reason: Optional[str] = None

    def cancel(self, reason: str = "cancelled by caller") -> None:
        self._cancelled = True
        self._reason = reason
        logger.info("walk_forward_cancel_requested", reason=reason)

    def raise_if_cancelled(self) -> None:
        if self._cancelled:
            raise WalkForwardCancelledError(f"Walk-forward analysis cancelled: {self._reason}")


def report(callback: Optional[ProgressCallback], progress: WalkForwardProgress) -> None:
    """Deliver a progress update if a callback is registered."""
    if callback is not None:
        callback(progress)
