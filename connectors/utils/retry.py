"""
Retry helpers for source clients.
"""

import functools
import logging
import random
import time
from typing import Callable, Tuple, Type

logger = logging.getLogger(__name__)


def retry_with_backoff(
    max_retries: int = 3,
    initial_delay: float = 1.0,
    max_delay: float = 60.0,
    backoff_factor: float = 2.0,
    exceptions: Tuple[Type[BaseException], ...] = (Exception,),
    jitter: bool = True,
) -> Callable:
    """
    Retry the decorated callable with exponential backoff.

    The final failure is re-raised unchanged once ``max_retries`` retries
    have been spent.

    :param max_retries: Number of retries after the first attempt.
    :param initial_delay: Delay before the first retry, in seconds.
    :param max_delay: Upper bound for any single delay, in seconds.
    :param backoff_factor: Multiplier applied to the delay after each retry.
    :param exceptions: Exception types that trigger a retry.
    :param jitter: Whether to randomise each delay by up to 10%.
    :return: Decorator.
    """

    def decorator(func: Callable) -> Callable:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delay = initial_delay
            attempt = 0
            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_retries:
                        logger.error(
                            f"{func.__name__} failed after {attempt + 1} attempts: {e}"
                        )
                        raise
                    sleep_for = min(delay, max_delay)
                    if jitter:
                        sleep_for += random.uniform(0, sleep_for * 0.1)
                    logger.warning(
                        f"{func.__name__} failed ({e}); retrying in {sleep_for:.1f}s "
                        f"({attempt + 1}/{max_retries})"
                    )
                    time.sleep(sleep_for)
                    delay *= backoff_factor
                    attempt += 1

        return wrapper

    return decorator
