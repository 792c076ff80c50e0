"""Async utilities for running blocking store I/O and bounded batches."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Sequence, TypeVar

T = TypeVar("T")
R = TypeVar("R")
logger = logging.getLogger(__name__)


async def run_sync(
    func: Callable[..., T], *args: Any, **kwargs: Any
) -> T:
    """Run a synchronous function in a thread pool without blocking the event loop.

    Used by the filesystem store to wrap blocking reads and writes.

    Args:
        func: Synchronous function to call
        *args: Positional arguments for func
        **kwargs: Keyword arguments for func

    Returns:
        Result of func(*args, **kwargs)

    Example:
        content, encoding = await run_sync(read_file_with_encoding, path)
    """
    return await asyncio.to_thread(func, *args, **kwargs)


async def gather_in_batches(
    items: Sequence[T],
    func: Callable[[T], Awaitable[R]],
    batch_size: int,
    should_continue: Callable[[], bool] | None = None,
) -> list[R]:
    """Apply *func* to *items* in fixed-size concurrent batches.

    All calls of one batch run concurrently and are awaited together
    before the next batch starts, so at most ``batch_size`` calls are in
    flight at any time. Exceptions propagate from the first failure; the
    caller is expected to pass a *func* that isolates its own errors.

    Args:
        items: Inputs, processed in order.
        func: Coroutine function applied to each item.
        batch_size: Maximum concurrent calls (>= 1).
        should_continue: Checked before each batch; returning ``False``
            stops scheduling further batches.

    Returns:
        Results for the items that were processed, in input order.
    """
    if batch_size < 1:
        raise ValueError(f"batch_size must be >= 1, got {batch_size}")

    results: list[R] = []
    for start in range(0, len(items), batch_size):
        if should_continue is not None and not should_continue():
            logger.info(
                "Batch processing halted after %d of %d items",
                start,
                len(items),
            )
            break
        batch = items[start : start + batch_size]
        results.extend(await asyncio.gather(*(func(item) for item in batch)))
    return results
