from __future__ import annotations

import asyncio
from collections.abc import Awaitable
from typing import TypeVar

from rebalancer.domain.errors import LedgerTimeout

T = TypeVar("T")


async def with_timeout(awaitable: Awaitable[T], timeout_seconds: float, label: str = "call") -> T:
    """
    Await `awaitable` for at most timeout_seconds, else raise LedgerTimeout.

    The awaited task is cancelled on timeout.
    """
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError as exc:
        raise LedgerTimeout(f"{label} timed out after {timeout_seconds}s") from exc
