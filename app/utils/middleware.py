from functools import wraps
from typing import Callable
import asyncio

from app.config.config import settings
from app.utils.exceptions import BackendError, BackendTimeout
from app.utils.logger_config import setup_logger

logger = setup_logger()


def with_timeout(seconds: float | None = None):
    """
    Decorator bounding a backend coroutine with asyncio.wait_for.
    Falls back to settings.BACKEND_CALL_TIMEOUT.
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            timeout = seconds if seconds is not None else settings.BACKEND_CALL_TIMEOUT
            try:
                return await asyncio.wait_for(func(*args, **kwargs), timeout=timeout)
            except asyncio.TimeoutError as e:
                logger.error(f"{func.__name__} timed out after {timeout}s")
                raise BackendTimeout(
                    f"{func.__name__} did not complete within {timeout}s"
                ) from e

        return wrapper

    return decorator


def backoff_delay(attempt: int, delay: float, max_delay: float) -> float:
    return min(delay * (2**attempt), max_delay)


def with_retry(
    max_retries: int | None = None,
    delay: float | None = None,
    max_delay: float | None = None,
    retry_on: tuple[type[BaseException], ...] = (BackendError,),
):
    """
    Decorator retrying a coroutine with exponential backoff
    """

    def decorator(func: Callable) -> Callable:
        @wraps(func)
        async def wrapper(*args, **kwargs):
            attempts = max_retries or settings.RECONNECT_MAX_ATTEMPTS
            base_delay = settings.RECONNECT_INITIAL_DELAY if delay is None else delay
            ceiling = settings.RECONNECT_MAX_DELAY if max_delay is None else max_delay
            last_error = None
            for attempt in range(attempts):
                try:
                    return await func(*args, **kwargs)
                except retry_on as e:
                    last_error = e
                    logger.warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{attempts}): {e}"
                    )
                    if attempt < attempts - 1:
                        await asyncio.sleep(backoff_delay(attempt, base_delay, ceiling))

            raise last_error

        return wrapper

    return decorator
