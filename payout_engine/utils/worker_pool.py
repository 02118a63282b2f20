"""
Bounded worker pool.

Runs one coroutine per item with at most N in flight.
"""

import asyncio
from collections.abc import Awaitable, Callable, Iterable
from typing import TypeVar

T = TypeVar("T")
R = TypeVar("R")


async def run_bounded(
    items: Iterable[T],
    worker: Callable[[T], Awaitable[R]],
    max_concurrent: int,
) -> list[R]:
    """
    Apply an async worker to every item with a concurrency limit.

    Results keep the order of items. The worker is expected to fold its
    own failures into its result; an exception escaping a worker is
    re-raised after every other worker has finished.

    Args:
        items: Work items
        worker: Coroutine function run once per item
        max_concurrent: Maximum workers in flight (at least 1)

    Returns:
        Worker results in item order
    """
    semaphore = asyncio.Semaphore(max(1, max_concurrent))

    async def _run(item: T) -> R:
        async with semaphore:
            return await worker(item)

    results = await asyncio.gather(
        *(_run(item) for item in items), return_exceptions=True
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results  # type: ignore[return-value]
