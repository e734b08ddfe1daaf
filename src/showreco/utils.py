"""Retry helper shared by the sqlite writes and the catalog transport."""

import time
import logging
from functools import wraps
from typing import TypeVar, Callable

logger = logging.getLogger(__name__)

T = TypeVar('T')


def retry_with_backoff(
    exceptions: tuple,
    attempts: int = 3,
    initial_delay: float = 0.1,
    backoff_factor: float = 2.0,
):
    """
    Retry the wrapped call on ``exceptions``, sleeping longer after each failure.

    The final failure is re-raised untouched so the caller decides how to
    report it (upsert_show lets a locked database propagate, the catalog
    client turns a timeout into an empty result).

    Example:
        @retry_with_backoff((httpx.TimeoutException,), attempts=3, initial_delay=1.0)
        def send(...):
            ...
    """
    def decorator(func: Callable[..., T]) -> Callable[..., T]:
        @wraps(func)
        def wrapper(*args, **kwargs) -> T:
            delay = initial_delay
            for attempt in range(1, attempts + 1):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == attempts:
                        raise
                    logger.warning(
                        f"{func.__qualname__} attempt {attempt}/{attempts} failed: {e}. "
                        f"Retrying in {delay:.1f}s"
                    )
                    time.sleep(delay)
                    delay *= backoff_factor

        return wrapper
    return decorator
