# app/services/scheduler.py
"""
Bounded concurrency for bulk jobs.

Both strategies guarantee that no more than ``max_concurrent`` thunks are in
flight at once and that they return only after every thunk has settled.
A thunk that raises is logged and swallowed; it never aborts its siblings.
"""

import asyncio
from typing import Awaitable, Callable, List, Literal, Optional, Sequence

from app.core.logging import get_logger

logger = get_logger(__name__)

Thunk = Callable[[], Awaitable[None]]
SchedulerMode = Literal["chunked", "sliding"]
ChunkCallback = Callable[[int, int], None]


def _check_limit(max_concurrent: int) -> None:
    if isinstance(max_concurrent, bool) or not isinstance(max_concurrent, int):
        raise TypeError("max_concurrent must be an integer")
    if max_concurrent <= 0:
        raise ValueError(f"max_concurrent must be positive, got {max_concurrent}")


def partition(queue: Sequence[Thunk], size: int) -> List[Sequence[Thunk]]:
    _check_limit(size)
    return [queue[i : i + size] for i in range(0, len(queue), size)]


async def _settle(thunk: Thunk) -> None:
    try:
        await thunk()
    except Exception as e:
        # executor is supposed to catch everything; this is the last line
        logger.error("Work thunk raised", error=str(e), exc_info=True)


async def run_chunked(
    queue: Sequence[Thunk],
    max_concurrent: int,
    on_chunk_done: Optional[ChunkCallback] = None,
) -> int:
    """
    Run thunks in consecutive chunks of ``max_concurrent``.

    Chunk K+1 starts only after every thunk of chunk K settled.
    Returns the number of chunks executed.
    """
    chunks = partition(queue, max_concurrent)

    for i, chunk in enumerate(chunks):
        await asyncio.gather(*(_settle(t) for t in chunk))
        logger.debug("Completed chunk", chunk=i + 1, chunks=len(chunks), size=len(chunk))
        if on_chunk_done:
            on_chunk_done(i + 1, len(chunk))

    return len(chunks)


async def run_sliding_window(queue: Sequence[Thunk], max_concurrent: int) -> None:
    """Start the next thunk as soon as a slot frees up."""
    _check_limit(max_concurrent)
    if not queue:
        return

    slots = asyncio.Semaphore(max_concurrent)

    async def gated(thunk: Thunk) -> None:
        async with slots:
            await _settle(thunk)

    await asyncio.gather(*(gated(t) for t in queue))


async def run_bounded(
    queue: Sequence[Thunk],
    max_concurrent: int,
    mode: SchedulerMode = "chunked",
) -> None:
    if mode == "chunked":
        await run_chunked(queue, max_concurrent)
    elif mode == "sliding":
        await run_sliding_window(queue, max_concurrent)
    else:
        raise ValueError(f"Unknown scheduler mode: {mode}")
