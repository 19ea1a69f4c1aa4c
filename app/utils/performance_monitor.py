from functools import wraps
import time
import logging

from app.utils.logging_config import log_performance_metric

logger = logging.getLogger(__name__)

SLOW_CALL_SECONDS = 0.1


def performance_monitor(func):
    """Decorator reporting slow or failing async service calls"""

    @wraps(func)
    async def wrapper(*args, **kwargs):
        start_time = time.perf_counter()
        try:
            result = await func(*args, **kwargs)
        except Exception as e:
            elapsed = time.perf_counter() - start_time
            logger.error(f"{func.__qualname__} failed after {elapsed:.3f} seconds: {e}")
            raise

        elapsed = time.perf_counter() - start_time
        if elapsed > SLOW_CALL_SECONDS:
            log_performance_metric(
                operation=func.__qualname__,
                duration_seconds=elapsed,
                additional_metrics={"module": func.__module__},
            )
        return result

    return wrapper
