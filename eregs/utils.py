import functools
import inspect

from loguru import logger


def safe_job(func):
    """
    Decorator for scheduled coroutines.

    Features:
    - Logs job entry and exit
    - Logs and swallows exceptions so the scheduler keeps the job alive
    - Returns None when the job failed
    """
    if not inspect.iscoroutinefunction(func):
        raise TypeError(f"{func.__name__} must be a coroutine function")

    @functools.wraps(func)
    async def wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.debug(f"Entering job {func_name}")

        try:
            result = await func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.error(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    return wrapper
