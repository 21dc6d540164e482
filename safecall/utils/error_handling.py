"""
Error Handling Utilities

Provides:
- Timeout wrapper for external calls
- Timeout decorator mapping expiry to a caller-chosen error
"""

import asyncio
import functools
import logging
from typing import Awaitable, Callable, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


async def call_with_timeout(
    awaitable: Awaitable[T],
    timeout_seconds: Optional[float],
    on_timeout: Callable[[], Exception],
    label: str = "call",
) -> T:
    """
    Await `awaitable` for at most `timeout_seconds`.

    Args:
        awaitable: The pending external call.
        timeout_seconds: Limit in seconds; None or <= 0 disables the limit.
        on_timeout: Factory for the exception raised on expiry.
        label: Name used in the log line.

    Returns:
        The awaited result.
    """
    if not timeout_seconds or timeout_seconds <= 0:
        return await awaitable
    try:
        return await asyncio.wait_for(awaitable, timeout=timeout_seconds)
    except asyncio.TimeoutError:
        logger.warning(f"[Timeout] {label} timed out after {timeout_seconds}s")
        raise on_timeout()


def with_timeout(
    timeout_seconds: float,
    on_timeout: Callable[[], Exception],
):
    """
    Decorator to add timeout to an async function.

    Args:
        timeout_seconds: Maximum execution time.
        on_timeout: Factory for the exception raised on expiry.

    Returns:
        Decorated function.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args, **kwargs) -> T:
            return await call_with_timeout(
                func(*args, **kwargs),
                timeout_seconds,
                on_timeout,
                label=func.__name__,
            )
        return wrapper
    return decorator
