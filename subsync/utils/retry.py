"""Retry utilities with exponential backoff."""

import time
from functools import wraps
from typing import Any, Callable, Tuple, Type, TypeVar

import structlog

log = structlog.stdlib.get_logger()

T = TypeVar("T")


def backoff_delay(attempt: int, base_delay: float, max_delay: float) -> float:
    """Delay before retry number ``attempt + 1`` (zero based attempt)."""
    return min(base_delay * (2**attempt), max_delay)


def retry_call(
    func: Callable[..., T],
    *args: Any,
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    sleep: Callable[[float], None] = time.sleep,
    **kwargs: Any,
) -> T:
    """
    Call ``func`` and retry it with exponential backoff.

    Unlike the decorator, the retry budget is chosen per call, which is what
    per-endpoint webhook settings need.

    Args:
        func: Callable to invoke
        max_retries: Maximum number of retries after the first attempt
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Exception types that trigger a retry
        sleep: Sleep function, replaceable in tests

    Returns:
        Whatever ``func`` returns

    Raises:
        The last exception once retries are exhausted
    """
    for attempt in range(max_retries + 1):
        try:
            return func(*args, **kwargs)
        except exceptions as e:
            if attempt == max_retries:
                log.error(
                    "max_retries_reached",
                    function=getattr(func, "__name__", repr(func)),
                    max_retries=max_retries,
                    error=str(e),
                )
                raise

            delay = backoff_delay(attempt, base_delay, max_delay)

            log.warning(
                "retrying_after_error",
                function=getattr(func, "__name__", repr(func)),
                attempt=attempt + 1,
                max_retries=max_retries,
                delay_seconds=delay,
                error=str(e),
            )

            sleep(delay)

    raise RuntimeError("retry_call exhausted without result")  # pragma: no cover


def exponential_backoff_retry(
    max_retries: int = 3,
    base_delay: float = 1.0,
    max_delay: float = 60.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
) -> Callable:
    """
    Decorator that retries a function with exponential backoff.

    Args:
        max_retries: Maximum number of retry attempts
        base_delay: Initial delay in seconds
        max_delay: Maximum delay in seconds
        exceptions: Tuple of exception types to catch and retry

    Returns:
        Decorated function with retry logic
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(
                func,
                *args,
                max_retries=max_retries,
                base_delay=base_delay,
                max_delay=max_delay,
                exceptions=exceptions,
                **kwargs,
            )

        return wrapper

    return decorator
