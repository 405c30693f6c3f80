from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

from rebalancer.domain.errors import RateLimited, TransientNetwork

logger = logging.getLogger(__name__)

T = TypeVar("T")


def check_response(resp: httpx.Response) -> httpx.Response:
    """
    Map HTTP failures onto the error taxonomy.

    429 is RateLimited, 5xx is TransientNetwork; any other 4xx propagates as
    httpx.HTTPStatusError because retrying will not fix it.
    """
    if resp.status_code == 429:
        raise RateLimited(f"{resp.request.method} {resp.request.url.path} rate limited")
    if resp.status_code >= 500:
        raise TransientNetwork(f"{resp.request.method} {resp.request.url.path} failed with {resp.status_code}")
    resp.raise_for_status()
    return resp


async def request_json(client: httpx.AsyncClient, method: str, url: str, **kwargs) -> dict:
    """One HTTP call; transport failures become TransientNetwork."""
    try:
        resp = await client.request(method, url, **kwargs)
    except httpx.TransportError as e:
        raise TransientNetwork(f"{method} {url} transport error: {type(e).__name__}: {e}") from e
    check_response(resp)
    return resp.json()


async def retry_async(
    func: Callable[[], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 1.0,
    label: str = "request",
) -> T:
    """
    Run `func` and retry TransientNetwork failures with exponential backoff.

    The last failure is re-raised once `attempts` is exhausted.
    """
    attempts = max(1, int(attempts))
    for attempt in range(1, attempts + 1):
        try:
            return await func()
        except TransientNetwork as e:
            if attempt >= attempts:
                logger.error(f"{label} failed after {attempts} attempts: {e}")
                raise
            delay = base_delay * (2 ** (attempt - 1))
            logger.warning(f"{label} attempt {attempt}/{attempts} failed ({e}); retrying in {delay:.1f}s")
            await asyncio.sleep(delay)
    raise AssertionError("unreachable")
