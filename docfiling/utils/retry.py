"""Exponential backoff for persistent-store writes.

Classification chunks are never retried automatically: a failed chunk
becomes per-document error records and the caller re-submits those
indices. Store writes are idempotent patches and inserts keyed by item
id, so transient failures there are retried here.
"""

import asyncio
import functools
import logging
import random
from typing import Any, Awaitable, Callable, Optional, Set, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES: Set[int] = {408, 429, 500, 502, 503, 504}
NON_RETRYABLE_STATUS_CODES: Set[int] = {400, 401, 403, 404, 409, 422}

NETWORK_ERROR_MARKERS = ("timeout", "timed out", "connection", "network", "temporarily unavailable")

MAX_RETRIES = 3
BASE_DELAY = 0.5  # seconds
MAX_JITTER = 0.5  # seconds


def retry_with_backoff(
    max_retries: int = MAX_RETRIES,
    base_delay: float = BASE_DELAY,
    max_jitter: float = MAX_JITTER,
) -> Callable[[Callable[..., Awaitable[T]]], Callable[..., Awaitable[T]]]:
    """Retry an async callable on transient failures.

    Retries on 408/429/5xx status codes and network-looking errors.
    Client errors (4xx other than 408/429) are raised immediately.

    Args:
        max_retries: Retry attempts after the first call
        base_delay: Base delay in seconds, doubled per attempt
        max_jitter: Maximum random jitter added to each delay

    Returns:
        Decorator applying the retry policy
    """

    def decorator(func: Callable[..., Awaitable[T]]) -> Callable[..., Awaitable[T]]:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> T:
            attempt = 0
            while True:
                try:
                    return await func(*args, **kwargs)
                except Exception as e:
                    if attempt >= max_retries or not is_transient_error(e):
                        if attempt >= max_retries:
                            logger.error("%s failed after %d retries: %s", func.__name__, max_retries, e)
                        raise

                    delay = base_delay * (2 ** attempt) + random.random() * max_jitter
                    attempt += 1
                    logger.warning(
                        "%s attempt %d/%d failed: %s. Retrying in %.2fs...",
                        func.__name__, attempt, max_retries, e, delay,
                    )
                    await asyncio.sleep(delay)

        return wrapper

    return decorator


def is_transient_error(exception: Exception) -> bool:
    """Decide whether an exception looks transient."""
    status_code = extract_status_code(exception)
    if status_code is not None:
        if status_code in NON_RETRYABLE_STATUS_CODES:
            return False
        if status_code in RETRYABLE_STATUS_CODES:
            return True

    message = str(exception).lower()
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


def extract_status_code(exception: Exception) -> Optional[int]:
    """Pull an HTTP status code off common client exception shapes."""
    for attr in ("status_code", "code"):
        value = getattr(exception, attr, None)
        if isinstance(value, int):
            return value
        if isinstance(value, str) and value.isdigit():
            return int(value)

    response = getattr(exception, "response", None)
    status = getattr(response, "status_code", None)
    if isinstance(status, int):
        return status
    return None
