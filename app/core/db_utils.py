"""
Retry utilities for calls to flaky collaborators (RPC nodes, remote services)
"""
import asyncio
import functools
import logging
from typing import Callable, Any, Tuple, Type, TypeVar, cast, Awaitable

logger = logging.getLogger(__name__)

# Define a type variable for the return type of the decorated function
T = TypeVar('T')


def with_retry(
    retry_on: Tuple[Type[BaseException], ...],
    max_retries: int = 3,
    retry_delay: float = 0.5,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """
    Decorator that retries an async call with exponential backoff.

    Args:
        retry_on: Exception types that trigger a retry
        max_retries: Maximum number of retries before giving up
        retry_delay: Base delay in seconds, doubled after every attempt

    Returns:
        Decorated function with retry logic. When retries are exhausted the
        last error is re-raised unchanged.
    """
    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            retries = 0

            while True:
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    retries += 1
                    if retries > max_retries:
                        logger.error(
                            f"{func.__name__} failed after {max_retries} retries: {e}"
                        )
                        raise
                    delay = retry_delay * (2 ** (retries - 1))  # Exponential backoff
                    logger.warning(
                        f"{func.__name__} failed: {str(e)}. "
                        f"Retrying in {delay:.2f}s... (Attempt {retries}/{max_retries})"
                    )
                    await asyncio.sleep(delay)

        return cast(Callable[..., Awaitable[T]], wrapper)

    return decorator
