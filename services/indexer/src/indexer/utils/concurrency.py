import asyncio
from typing import Any, Awaitable, Iterable, TypeVar

T = TypeVar("T")

DEFAULT_CONCURRENCY = 20
CHAIN_STAGGER_SECONDS = 0.1


async def gather_with_concurrency(
    aws: Iterable[Awaitable[T]],
    limit: int = DEFAULT_CONCURRENCY,
    return_exceptions: bool = False,
) -> list[Any]:
    """asyncio.gather with at most ``limit`` awaitables in flight. Order is preserved."""
    semaphore = asyncio.Semaphore(limit)

    async def bounded(aw: Awaitable[T]) -> T:
        async with semaphore:
            return await aw

    return await asyncio.gather(*(bounded(aw) for aw in aws), return_exceptions=return_exceptions)


async def staggered(index: int, aw: Awaitable[T], step: float = CHAIN_STAGGER_SECONDS) -> T:
    """Delay the start of ``aw`` by ``index * step`` seconds."""
    if index and step:
        await asyncio.sleep(index * step)
    return await aw
