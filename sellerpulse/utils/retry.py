"""Retry and polling helpers."""

from __future__ import annotations

import asyncio
import functools
import logging
import random
from collections.abc import Awaitable, Callable
from typing import TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRY_EXCEPTIONS = (OSError, asyncio.TimeoutError, httpx.TransportError)

DEFAULT_RETRY_AFTER = 60


def parse_retry_after(value: str | None) -> int:
    """Seconds from a ``Retry-After`` header, falling back to a minute."""
    try:
        return max(1, int(float(value))) if value else DEFAULT_RETRY_AFTER
    except ValueError:
        return DEFAULT_RETRY_AFTER


def retry_async(func: Callable[..., Awaitable[T]], *, attempts: int = 3):
    """Retry transport-level failures with jittered exponential backoff."""

    @functools.wraps(func)
    async def wrapper(*args, **kwargs) -> T:
        delay = 1.0
        for attempt in range(attempts):
            try:
                return await func(*args, **kwargs)
            except RETRY_EXCEPTIONS as exc:
                if attempt == attempts - 1:
                    raise
                logger.warning("Transient error (%s), retrying in ~%.0fs", exc, delay)
                await asyncio.sleep(delay + random.random())
                delay *= 2
        raise RuntimeError("unreachable")  # pragma: no cover

    return wrapper


async def poll_until(
    probe: Callable[[], Awaitable[T | None]],
    *,
    max_attempts: int,
    initial_delay: float = 2.0,
    factor: float = 2.0,
    max_delay: float = 60.0,
    sleeper: Callable[[float], Awaitable[None]] = asyncio.sleep,
) -> T | None:
    """Call ``probe`` until it returns a value, sleeping with backoff between tries.

    Returns ``None`` when ``max_attempts`` probes came back empty.
    """
    delay = initial_delay
    for attempt in range(1, max_attempts + 1):
        await sleeper(delay)
        result = await probe()
        if result is not None:
            return result
        logger.debug("Poll attempt %s/%s not ready", attempt, max_attempts)
        delay = min(delay * factor, max_delay)
    return None
