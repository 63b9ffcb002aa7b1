"""
Concurrency Primitives

Small asyncio building blocks shared by the leaderboard fetcher and the cache warmer:

- gather_settled(): all-settled join that yields one Settled per awaitable, in input order
- with_deadline(): race an awaitable against a timeout, optionally leaving it running
- RateLimitSignal: RUNNING -> RATE_LIMITED -> DONE state passed by reference
- SingleFlight: de-duplicate concurrent loads of the same key
"""

import asyncio
import enum
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass
from typing import Any, Generic, TypeVar

from eng_dashboard.core.logging_config import get_logger
from eng_dashboard.utils.error_handling import is_rate_limit_error

logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class Settled(Generic[T]):
    """Outcome of one awaitable in an all-settled join."""

    value: T | None = None
    error: BaseException | None = None

    @property
    def ok(self) -> bool:
        return self.error is None


async def gather_settled(awaitables: Iterable[Awaitable[T]]) -> list[Settled[T]]:
    """
    Run awaitables concurrently and wait for all of them, failures included.

    Results are keyed by original position, so result ``i`` always belongs to
    awaitable ``i`` regardless of completion order. Cancellation of the caller
    is propagated, not captured.
    """
    results = await asyncio.gather(*awaitables, return_exceptions=True)

    settled: list[Settled[T]] = []
    for result in results:
        if isinstance(result, asyncio.CancelledError):
            raise result
        if isinstance(result, BaseException):
            settled.append(Settled(error=result))
        else:
            settled.append(Settled(value=result))
    return settled


async def gather_settled_map(awaitables: Mapping[str, Awaitable[Any]]) -> dict[str, Settled[Any]]:
    """Named variant of gather_settled()."""
    names = list(awaitables)
    outcomes = await gather_settled(awaitables[name] for name in names)
    return dict(zip(names, outcomes, strict=True))


def _consume_abandoned(task: asyncio.Task) -> None:
    if task.cancelled():
        return
    error = task.exception()
    if error is not None:
        logger.debug(f"Abandoned fetch finished with error: {error}")


async def with_deadline(awaitable: Awaitable[T], timeout: float, cancel: bool = False) -> T:
    """
    Wait for ``awaitable`` at most ``timeout`` seconds.

    On timeout raises asyncio.TimeoutError. With ``cancel=False`` the
    underlying task keeps running and its result is discarded; with
    ``cancel=True`` it is cancelled.
    """
    task = asyncio.ensure_future(awaitable)
    try:
        return await asyncio.wait_for(asyncio.shield(task), timeout)
    except asyncio.TimeoutError:
        if cancel:
            task.cancel()
        else:
            task.add_done_callback(_consume_abandoned)
        raise
    except asyncio.CancelledError:
        task.cancel()
        raise


class RunState(enum.Enum):
    RUNNING = "running"
    RATE_LIMITED = "rate_limited"
    DONE = "done"


class RateLimitSignal:
    """
    Shared backpressure flag for one fetch cycle or warm run.

    The first 429 moves the signal from RUNNING to RATE_LIMITED; it never moves
    back. Work already scheduled finishes, callers check ``rate_limited`` before
    starting anything new.
    """

    def __init__(self) -> None:
        self.state = RunState.RUNNING
        self.detected_by: str | None = None

    @property
    def rate_limited(self) -> bool:
        return self.state is RunState.RATE_LIMITED

    def trip(self, source: str) -> None:
        """Flip to RATE_LIMITED (first caller wins)."""
        if self.state is RunState.RATE_LIMITED:
            return
        self.state = RunState.RATE_LIMITED
        self.detected_by = source
        logger.warning(f"Rate limiting detected ({source}); no further batches will be scheduled")

    def observe(self, error: Any, source: str) -> bool:
        """
        Trip the signal if ``error`` is a 429.

        Returns:
            True if the error signalled rate limiting
        """
        if is_rate_limit_error(error):
            self.trip(source)
            return True
        return False

    def finish(self) -> None:
        """Mark a run that completed without rate limiting."""
        if self.state is RunState.RUNNING:
            self.state = RunState.DONE


class SingleFlight:
    """
    De-duplicate concurrent loads by key.

    While a load for a key is in flight, later callers await the same task
    instead of starting a second one. The entry is dropped as soon as the
    task completes, so the next caller after completion loads again.
    """

    def __init__(self) -> None:
        self._inflight: dict[str, asyncio.Task] = {}

    def __contains__(self, key: str) -> bool:
        return key in self._inflight

    async def run(self, key: str, factory: Callable[[], Awaitable[T]]) -> T:
        task = self._inflight.get(key)
        if task is None:
            task = asyncio.ensure_future(factory())
            self._inflight[key] = task
            task.add_done_callback(lambda done, key=key: self._release(key, done))
        else:
            logger.debug(f"Joining in-flight load for {key}")
        return await asyncio.shield(task)

    def _release(self, key: str, task: asyncio.Task) -> None:
        if self._inflight.get(key) is task:
            del self._inflight[key]
        if not task.cancelled() and task.exception() is not None:
            # retrieved here so an abandoned failing load does not warn on GC
            logger.debug(f"Load for {key} failed: {task.exception()}")
