"""
Warm Run Tracking Module

Provides health monitoring for background cache-warming runs:
    - WarmRunTracker: Tracks metrics for a single warm run
    - track_warm_run(): Context manager for automatic tracking
    - get_current_tracker(): Access the active tracker from nested steps
"""

import time
from collections.abc import Generator
from contextlib import contextmanager
from datetime import UTC, datetime
from typing import Any

from eng_dashboard.core.logging_config import get_logger

logger = get_logger(__name__)

_current_tracker: "WarmRunTracker | None" = None


class WarmRunTracker:
    """
    Tracks execution time and step outcomes for a single warm run.

    Attributes:
        run_name: Name of the run (e.g., "cache-warm")
        start_time: Timestamp when tracker was started (None before start())
        execution_time_ms: Total execution time in milliseconds
        steps_succeeded: Names of steps that populated the cache
        steps_failed: Names of steps whose failure was logged and swallowed
        steps_skipped: Names of steps skipped because of rate limiting
        rate_limit_hits: Number of 429 responses observed
        error_message: First error text seen during the run (None if clean)

    Example:
        >>> tracker = WarmRunTracker("cache-warm")
        >>> tracker.start()
        >>> tracker.record_step("stats", success=True)
        >>> tracker.end()
        >>> tracker.steps_succeeded
        ['stats']
    """

    def __init__(self, run_name: str):
        self.run_name = run_name
        self.start_time: float | None = None
        self.execution_time_ms: float = 0
        self.steps_succeeded: list[str] = []
        self.steps_failed: list[str] = []
        self.steps_skipped: list[str] = []
        self.rate_limit_hits: int = 0
        self.error_message: str | None = None

    def start(self) -> None:
        """Start tracking execution time."""
        self.start_time = time.time()
        logger.debug(f"Started tracking: {self.run_name}")

    def end(self) -> None:
        """End tracking and calculate execution time."""
        if self.start_time is not None:
            self.execution_time_ms = (time.time() - self.start_time) * 1000

    def record_step(self, step: str, success: bool, error: Exception | None = None) -> None:
        """
        Record the outcome of one warm step.

        Args:
            step: Step label, usually the cache key it populates
            success: Whether the step populated the cache
            error: Exception if the step failed
        """
        if success:
            self.steps_succeeded.append(step)
            return

        self.steps_failed.append(step)
        if error is not None and self.error_message is None:
            self.error_message = f"{step}: {error}"

    def record_skip(self, step: str) -> None:
        """Record a step skipped because the run is rate limited."""
        self.steps_skipped.append(step)

    def record_rate_limit_hit(self) -> None:
        """Record a rate limit hit (429 response)."""
        self.rate_limit_hits += 1
        logger.warning(
            f"Rate limit hit during {self.run_name}",
            extra={"run": self.run_name, "total_rate_limit_hits": self.rate_limit_hits},
        )

    @property
    def success(self) -> bool:
        """True when no step failed."""
        return not self.steps_failed

    def to_dict(self) -> dict[str, Any]:
        """Convert metrics to a JSON-serializable dictionary."""
        return {
            "timestamp": datetime.now(UTC).isoformat(),
            "run_name": self.run_name,
            "execution_time_ms": round(self.execution_time_ms, 2),
            "success": self.success,
            "steps_succeeded": len(self.steps_succeeded),
            "steps_failed": list(self.steps_failed),
            "steps_skipped": list(self.steps_skipped),
            "rate_limit_hits": self.rate_limit_hits,
            "error_message": self.error_message,
        }


def get_current_tracker() -> "WarmRunTracker | None":
    """
    Get the currently active tracker.

    Returns:
        Active tracker or None if no warm run is being tracked
    """
    return _current_tracker


@contextmanager
def track_warm_run(run_name: str) -> Generator[WarmRunTracker, None, None]:
    """
    Context manager for automatic warm run tracking.

    Sets the tracker returned by get_current_tracker() for the duration of the
    block and logs a one-line summary on exit.

    Example:
        with track_warm_run("cache-warm") as tracker:
            await warm_everything()
        print(tracker.to_dict())
    """
    global _current_tracker

    tracker = WarmRunTracker(run_name)
    previous = _current_tracker
    _current_tracker = tracker
    tracker.start()
    try:
        yield tracker
    finally:
        tracker.end()
        _current_tracker = previous
        logger.info(
            f"{run_name} finished in {tracker.execution_time_ms / 1000:.1f}s "
            f"({len(tracker.steps_succeeded)} ok, {len(tracker.steps_failed)} failed, "
            f"{len(tracker.steps_skipped)} skipped, {tracker.rate_limit_hits} rate limit hits)"
        )
