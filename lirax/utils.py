import functools
import inspect

from loguru import logger


def safe_job(func):
    """
    A decorator for scheduled jobs that logs entry, exit, and exceptions.

    Features:
    - Logs the job name before execution
    - Catches exceptions and logs them with traceback, the scheduler keeps running
    - Works with both sync and async functions
    """

    @functools.wraps(func)
    async def async_wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.debug(f"Entering job {func_name}")
        try:
            result = await func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.exception(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    @functools.wraps(func)
    def sync_wrapper(*args, **kwargs):
        func_name = func.__name__
        logger.debug(f"Entering job {func_name}")
        try:
            result = func(*args, **kwargs)
            logger.debug(f"Job {func_name} finished")
            return result
        except Exception as e:
            logger.exception(f"Job {func_name} failed: {type(e).__name__}: {e}")
            return None

    if inspect.iscoroutinefunction(func):
        return async_wrapper
    return sync_wrapper
