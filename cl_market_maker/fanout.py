"""
Two-way concurrent join used for the per-cycle queries.

Both awaitables run at the same time. Once both have finished, the first
failure (in argument order) is raised and the sibling's result is dropped,
even if it succeeded.
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Optional, Tuple, TypeVar

from cl_market_maker.errors import QueryError

A = TypeVar("A")
B = TypeVar("B")


async def _bounded(aw: Awaitable[A], timeout: Optional[float], name: str) -> A:
    if timeout is None:
        return await aw
    try:
        return await asyncio.wait_for(aw, timeout=timeout)
    except asyncio.TimeoutError:
        raise QueryError(name, f"timed out after {timeout}s") from None


async def join2(
    first: Awaitable[A],
    second: Awaitable[B],
    *,
    timeout: Optional[float] = None,
    names: Tuple[str, str] = ("first", "second"),
) -> Tuple[A, B]:
    results = await asyncio.gather(
        _bounded(first, timeout, names[0]),
        _bounded(second, timeout, names[1]),
        return_exceptions=True,
    )
    for result in results:
        if isinstance(result, BaseException):
            raise result
    return results[0], results[1]
