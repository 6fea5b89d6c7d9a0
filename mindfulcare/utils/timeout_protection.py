# mindfulcare/utils/timeout_protection.py
"""
Timeout protection for calls to external providers (video meetings, email).
Keeps a slow provider from stalling a booking request indefinitely.
"""
import asyncio
import time
from typing import Awaitable, TypeVar

from mindfulcare.core.errors import ExternalServiceTimeout
from mindfulcare.core.logging import get_logger

logger = get_logger(__name__)

T = TypeVar("T")


async def with_timeout(coro: Awaitable[T], timeout_seconds: float, operation: str) -> T:
    """
    Await `coro`, raising ExternalServiceTimeout if it runs past `timeout_seconds`.

    Errors raised by the coroutine itself propagate unchanged.
    """
    start = time.perf_counter()
    try:
        return await asyncio.wait_for(coro, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning("external_call_timeout", operation=operation, timeout=timeout_seconds)
        raise ExternalServiceTimeout(operation, timeout_seconds) from None
    finally:
        elapsed = time.perf_counter() - start
        if elapsed > timeout_seconds / 2:
            logger.info("external_call_slow", operation=operation, duration=round(elapsed, 3))
