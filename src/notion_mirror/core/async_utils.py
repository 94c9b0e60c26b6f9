"""Async utilities for bridging blocking HTTP/store calls to the event loop."""

import asyncio
from typing import Any, Awaitable, Callable, Iterable, TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a blocking function in a worker thread.

    HTTP calls made inside *func* still count against the client's
    request ceiling.

    Example:
        task = await run_sync(controller.get, task_id)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def map_limited(
    func: Callable[[T], Awaitable[R]],
    items: Iterable[T],
    limit: int,
) -> list[R]:
    """Apply async *func* to every item with at most *limit* in flight.

    Results keep the order of *items*; a slow item never delays the
    start of later items beyond the concurrency ceiling.  Exceptions
    propagate, so *func* should return error values for per-item
    failures that must not cancel the others.
    """
    if limit < 1:
        raise ValueError("limit must be >= 1")
    semaphore = asyncio.Semaphore(limit)

    async def _bounded(item: T) -> R:
        async with semaphore:
            return await func(item)

    return list(await asyncio.gather(*(_bounded(i) for i in items)))
