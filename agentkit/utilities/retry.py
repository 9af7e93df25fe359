import asyncio
import functools
import logging
import random
from typing import Any, Callable, Optional, Tuple, Type, Union

import httpx

logger = logging.getLogger(__name__)

# Transport failures and these status codes are worth a second attempt.
RETRYABLE_STATUS_CODES = frozenset({429, 500, 502, 503, 504})


def is_retryable_http_error(error: Exception) -> bool:
    """True for network errors and throttling / upstream 5xx responses."""
    if isinstance(error, httpx.TransportError):
        return True
    if isinstance(error, httpx.HTTPStatusError):
        return error.response.status_code in RETRYABLE_STATUS_CODES
    return False


def async_retry(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = (Exception,),
    jitter: bool = True,
    retry_on: Optional[Callable[[Exception], bool]] = None,
) -> Callable:
    """
    Retry an async function with capped exponential backoff.

    The wrapped call is attempted ``max_retries + 1`` times in total. Only
    ``exceptions`` are retried, and of those only the ones ``retry_on``
    accepts when a predicate is given; anything else propagates at once.
    With ``jitter`` each sleep is scaled by a random factor in [0.5, 1.5).
    """
    def backoff_delays():
        delay = initial_delay
        for _ in range(max_retries):
            yield delay * (0.5 + random.random()) if jitter else delay
            delay = min(delay * backoff_factor, max_delay)

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        async def wrapper(*args: Any, **kwargs: Any) -> Any:
            delays = backoff_delays()
            for attempt in range(1, max_retries + 2):
                try:
                    return await func(*args, **kwargs)
                except exceptions as e:
                    if retry_on is not None and not retry_on(e):
                        raise
                    delay = next(delays, None)
                    if delay is None:
                        logger.error(f"{func.__name__} gave up after {attempt} attempts: {e}")
                        raise
                    logger.warning(f"{func.__name__} attempt {attempt} raised {type(e).__name__}: {e}; "
                                   f"retrying in {delay:.2f}s")
                    await asyncio.sleep(delay)
        return wrapper
    return decorator


def http_retry(max_retries: int = 2, initial_delay: float = 0.5) -> Callable:
    """async_retry preset for outbound REST calls made with httpx."""
    return async_retry(
        max_retries=max_retries,
        initial_delay=initial_delay,
        max_delay=8.0,
        exceptions=(httpx.HTTPError,),
        retry_on=is_retryable_http_error,
    )
