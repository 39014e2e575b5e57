# batching.py
"""Rate-limited batch execution for calls to the vision service."""

import asyncio
import logging
from typing import Awaitable, Callable, List, Sequence, Tuple, TypeVar, Union

logger = logging.getLogger(__name__)

T = TypeVar("T")
R = TypeVar("R")


async def run_in_batches(
    items: Sequence[T],
    worker: Callable[[T], Awaitable[R]],
    batch_size: int,
    delay_seconds: float,
) -> List[Tuple[T, Union[R, BaseException]]]:
    """Run ``worker`` over ``items`` a few at a time.

    Calls inside a batch run concurrently; batches run one after another with
    a pause between them. A failed item yields its exception in place of a
    result and never stops the remaining items.
    """
    batch_size = max(1, batch_size)
    outcomes: List[Tuple[T, Union[R, BaseException]]] = []
    total_batches = (len(items) + batch_size - 1) // batch_size

    for index in range(0, len(items), batch_size):
        batch = list(items[index:index + batch_size])
        batch_number = index // batch_size + 1
        logger.info(f"Processing batch {batch_number}/{total_batches} ({len(batch)} items)")

        results = await asyncio.gather(*(worker(item) for item in batch), return_exceptions=True)
        for item, result in zip(batch, results):
            if isinstance(result, asyncio.CancelledError):
                raise result
            if isinstance(result, BaseException):
                logger.error(f"Batch item {item!r} failed: {result}")
            outcomes.append((item, result))

        if index + batch_size < len(items) and delay_seconds > 0:
            await asyncio.sleep(delay_seconds)

    return outcomes
