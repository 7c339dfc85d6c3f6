import asyncio
import time
from contextlib import asynccontextmanager
from dataclasses import dataclass
from typing import Callable

from utils.exceptions import RateRejectedError


@dataclass
class WindowEntry:
    started: float
    completed: float | None = None


class SlidingWindowRateLimiter:
    """
    Allows at most ``max_calls`` calls within any ``period`` seconds.

    A call occupies the window from its start until ``period`` seconds after it
    completes, so calls still in flight always count against the quota.
    """

    def __init__(
        self,
        max_calls: int,
        period: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_calls = max_calls
        self.period = period
        self._clock = clock
        self._calls: list[WindowEntry] = []
        self._released = asyncio.Condition()

    def _purge(self, now: float):
        self._calls = [
            entry
            for entry in self._calls
            if entry.completed is None or now - entry.completed < self.period
        ]

    def try_acquire(self) -> WindowEntry | None:
        now = self._clock()
        self._purge(now)
        if len(self._calls) < self.max_calls:
            entry = WindowEntry(started=now)
            self._calls.append(entry)
            return entry
        return None

    def release(self, entry: WindowEntry):
        entry.completed = self._clock()

    def time_until_available(self) -> float:
        """
        Seconds until a new call may start.

        While only in-flight calls fill the window the wait is at least one
        ``period``; ``acquire`` is woken earlier when one of them completes.
        """
        now = self._clock()
        self._purge(now)
        if len(self._calls) < self.max_calls:
            return 0.0
        completed = [entry.completed for entry in self._calls if entry.completed is not None]
        if not completed:
            return self.period
        return max(min(completed) + self.period - now, 0.0)

    async def acquire(self) -> WindowEntry:
        async with self._released:
            while True:
                entry = self.try_acquire()
                if entry is not None:
                    return entry
                try:
                    await asyncio.wait_for(self._released.wait(), self.time_until_available())
                except asyncio.TimeoutError:
                    pass

    async def complete(self, entry: WindowEntry):
        self.release(entry)
        async with self._released:
            self._released.notify_all()

    @property
    def in_window(self) -> int:
        self._purge(self._clock())
        return len(self._calls)

    @property
    def in_flight(self) -> int:
        return sum(1 for entry in self._calls if entry.completed is None)


class ProviderRateLimiter:
    """
    Per-provider quota: a semaphore bounding in-flight requests plus a sliding
    window bounding the requests started or completed per ``duration_seconds``.
    """

    def __init__(
        self,
        concurrent: int,
        duration_seconds: float,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.concurrent = concurrent
        self.duration_seconds = duration_seconds
        self.semaphore = asyncio.Semaphore(concurrent)
        self.window = SlidingWindowRateLimiter(concurrent, duration_seconds, clock)

    @asynccontextmanager
    async def slot(self, provider_id: str, wait: bool = True):
        if not wait and (self.semaphore.locked() or self.window.time_until_available() > 0):
            raise RateRejectedError(
                f"Rate limit reached for provider {provider_id}", provider_id=provider_id
            )
        async with self.semaphore:
            if wait:
                entry = await self.window.acquire()
            else:
                entry = self.window.try_acquire()
                if entry is None:
                    raise RateRejectedError(
                        f"Rate limit reached for provider {provider_id}",
                        provider_id=provider_id,
                    )
            try:
                yield
            finally:
                await self.window.complete(entry)
