import asyncio
import time
from typing import Awaitable, Callable, Optional


class Throttle:
    """Leading-edge rate limiter.

    The first call in a window is allowed; later calls are dropped until
    `interval_seconds` have elapsed since the last allowed call.
    """

    def __init__(self, interval_seconds: float, clock: Callable[[], float] = time.monotonic):
        self.interval = interval_seconds
        self._clock = clock
        self._last: Optional[float] = None

    def try_acquire(self) -> bool:
        now = self._clock()
        if self._last is not None and now - self._last < self.interval:
            return False
        self._last = now
        return True

    def reset(self) -> None:
        self._last = None


class Debouncer:
    """Trailing-edge debounce for an async callback.

    Each `trigger()` restarts the quiet-period timer; the callback runs once
    the timer expires without further activity.
    """

    def __init__(self, delay_seconds: float, callback: Callable[[], Awaitable[None]]):
        self.delay = delay_seconds
        self._callback = callback
        self._task: Optional[asyncio.Task] = None

    @property
    def pending(self) -> bool:
        return self._task is not None and not self._task.done()

    def trigger(self) -> None:
        self.cancel()
        self._task = asyncio.create_task(self._run())

    async def _run(self) -> None:
        await asyncio.sleep(self.delay)
        await self._callback()

    def cancel(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
        self._task = None

    async def flush(self) -> None:
        """Run a pending callback now instead of waiting out the quiet period."""
        if not self.pending:
            return
        self.cancel()
        await self._callback()


class CancellationToken:
    """Cooperative cancellation flag handed to one unit of work."""

    def __init__(self) -> None:
        self._cancelled = False
        self.reason: Optional[str] = None

    @property
    def cancelled(self) -> bool:
        return self._cancelled

    def cancel(self, reason: str = "cancelled") -> None:
        if not self._cancelled:
            self._cancelled = True
            self.reason = reason
