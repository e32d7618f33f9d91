"""Bounded-concurrency async pool."""
from __future__ import annotations

import asyncio
from typing import Any, Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


class BoundedPool:
    """Run coroutines with at most ``limit`` of them in flight.

    Each call acquires one permit before starting and releases it on
    completion, so a finished slot immediately admits the next queued item.
    """

    def __init__(self, limit: int = 6) -> None:
        self.limit = max(1, int(limit))
        self._semaphore = asyncio.Semaphore(self.limit)
        self.in_flight = 0
        self.peak_in_flight = 0

    async def run(self, func: Callable[..., Awaitable[R]], *args: Any, **kwargs: Any) -> R:
        async with self._semaphore:
            self.in_flight += 1
            self.peak_in_flight = max(self.peak_in_flight, self.in_flight)
            try:
                return await func(*args, **kwargs)
            finally:
                self.in_flight -= 1

    async def map(
        self,
        func: Callable[[T], Awaitable[R]],
        items: Iterable[T],
        *,
        return_exceptions: bool = True,
    ) -> List[Any]:
        """Apply ``func`` to every item; results keep input order."""
        tasks = [asyncio.ensure_future(self.run(func, item)) for item in items]
        if not tasks:
            return []
        return await asyncio.gather(*tasks, return_exceptions=return_exceptions)
