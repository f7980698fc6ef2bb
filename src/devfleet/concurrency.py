"""
Concurrency primitives for the refresh loops.

Everything runs on one event loop, so neither helper needs a lock:
map_limit caps how many coroutines are in flight at once, and InFlightToken
is a single-slot guard whose acquire is a plain check-and-set (no await
between the check and the set).
"""

import asyncio
from typing import Awaitable, Callable, Iterable, List, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def map_limit(items: Iterable[T], limit: int, func: Callable[[T], Awaitable[R]]) -> List[R]:
    """Apply an async function to every item with at most `limit` running at once.

    Results come back in input order. Exceptions propagate; callers that
    need isolation should catch inside func.
    """
    if limit < 1:
        raise ValueError("limit must be at least 1")
    semaphore = asyncio.Semaphore(limit)

    async def _bounded(item: T) -> R:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(_bounded(item) for item in items)))


class InFlightToken:
    """Single-slot guard for a refresh loop.

    A trigger that finds the slot taken is dropped, not queued.

    Usage:
        if not token.acquire():
            return None
        try:
            ...
        finally:
            token.release()
    """

    def __init__(self, name: str = ""):
        self.name = name
        self._held = False
        self.dropped = 0

    @property
    def held(self) -> bool:
        return self._held

    def acquire(self) -> bool:
        if self._held:
            self.dropped += 1
            return False
        self._held = True
        return True

    def release(self) -> None:
        self._held = False
