"""Decorator utilities for cross-cutting concerns."""
import functools
import logging
import random
import time
from typing import Any, Callable, Optional, TypeVar, cast

# Setup logging
logger = logging.getLogger(__name__)

F = TypeVar('F', bound=Callable[..., Any])


def log_execution_time(func: F) -> F:
    """Decorator to log function execution time.

    Args:
        func: The function to decorate

    Returns:
        Decorated function that logs execution time
    """
    @functools.wraps(func)
    def wrapper(*args, **kwargs):
        start_time = time.monotonic()
        try:
            result = func(*args, **kwargs)
            duration = time.monotonic() - start_time
            logger.info(f"{func.__name__} completed in {duration:.2f}s")
            return result
        except Exception as e:
            duration = time.monotonic() - start_time
            logger.error(f"{func.__name__} failed after {duration:.2f}s: {str(e)}")
            raise
    return cast(F, wrapper)


def backoff_delays(max_attempts: int, delay: float, backoff: float, jitter: float):
    """Yield the sleep before each retry: delay * backoff**n plus up to `jitter` seconds."""
    current_delay = delay
    for _ in range(max_attempts - 1):
        yield current_delay + random.uniform(0, jitter)
        current_delay *= backoff


def retry(max_attempts: int = 3, delay: float = 0.2, backoff: float = 2.0, jitter: float = 0.0,
          exceptions: tuple = (Exception,), logger_name: Optional[str] = None):
    """Decorator for retrying functions with exponential backoff and jitter.

    Args:
        max_attempts: Maximum number of attempts, including the first one
        delay: Initial delay between retries in seconds
        backoff: Backoff multiplier (e.g., 2.0 means delay doubles each retry)
        jitter: Upper bound of the random seconds added to every delay
        exceptions: Tuple of exceptions to catch for retry; anything else propagates at once
        logger_name: Optional logger name (defaults to module logger)

    Returns:
        Decorator function
    """
    retry_logger = logging.getLogger(logger_name) if logger_name else logger

    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            delays = backoff_delays(max_attempts, delay, backoff, jitter)
            attempt = 1

            while True:
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt >= max_attempts:
                        retry_logger.error(f"All {max_attempts} attempts failed for {func.__name__}: {str(e)}")
                        raise

                    current_delay = next(delays)
                    retry_logger.warning(
                        f"Attempt {attempt}/{max_attempts} for {func.__name__} failed: {str(e)}. "
                        f"Retrying in {current_delay:.2f}s"
                    )

                    time.sleep(current_delay)
                    attempt += 1

        return cast(F, wrapper)

    return decorator
