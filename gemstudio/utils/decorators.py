import asyncio
import time
from functools import wraps

from gemstudio.utils.logger import get_logger

logger = get_logger("retry")


def smart_retry(retries=3, delay=1, backoff=2):
    """
    Decorator that retries a function or coroutine upon transient failures.
    Supports both sync and async definitions.

    ConnectionError / TimeoutError are retried with exponential backoff.
    Anything else propagates on the first occurrence.
    """

    def decorator(func):
        @wraps(func)
        async def async_wrapper(*args, **kwargs):
            current_delay = delay
            for i in range(retries):
                try:
                    return await func(*args, **kwargs)
                except (ConnectionError, TimeoutError) as e:
                    logger.warning(
                        f"⚠️ [Retry {i+1}/{retries}] Transient error: {e}. Waiting {current_delay}s..."
                    )
                    if i + 1 < retries:
                        await asyncio.sleep(current_delay)
                        current_delay *= backoff
            logger.error(f"❌ Operation failed after {retries} attempts.")
            raise ConnectionError("Max retries exceeded")

        @wraps(func)
        def sync_wrapper(*args, **kwargs):
            current_delay = delay
            for i in range(retries):
                try:
                    return func(*args, **kwargs)
                except (ConnectionError, TimeoutError) as e:
                    logger.warning(
                        f"⚠️ [Retry {i+1}/{retries}] Transient error: {e}. Waiting {current_delay}s..."
                    )
                    if i + 1 < retries:
                        time.sleep(current_delay)
                        current_delay *= backoff
            logger.error(f"❌ Operation failed after {retries} attempts.")
            raise ConnectionError("Max retries exceeded")

        if asyncio.iscoroutinefunction(func):
            return async_wrapper
        else:
            return sync_wrapper

    return decorator
