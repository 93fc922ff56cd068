"""Performance Logging.

Decorator for timing service calls and flagging slow ones.
"""

import functools
import logging
import time
from typing import Any, Callable, Optional, Tuple, Type

from src.logging_config.config import DEFAULT_LOGGING_CONFIG


def log_performance(
    threshold_ms: Optional[float] = None,
    logger_name: Optional[str] = None,
    expected: Tuple[Type[BaseException], ...] = (),
) -> Callable:
    """Decorator that logs function execution time.

    Logs every call at DEBUG and calls above the threshold at WARNING.
    A call that raises is logged at ERROR and the exception propagates;
    exceptions of an ``expected`` type are logged at INFO instead.

    Example:
        @log_performance(threshold_ms=500)
        def analyze_trader(self, user_id):
            ...
    """
    if threshold_ms is None:
        threshold_ms = DEFAULT_LOGGING_CONFIG.slow_threshold_ms

    def decorator(func: Callable) -> Callable:
        _logger = logging.getLogger(logger_name or func.__module__)
        func_name = func.__qualname__

        @functools.wraps(func)
        def wrapper(*args: Any, **kwargs: Any) -> Any:
            start = time.perf_counter()
            failed = False
            try:
                return func(*args, **kwargs)
            except Exception as exc:
                failed = True
                duration_ms = (time.perf_counter() - start) * 1000
                level = logging.INFO if isinstance(exc, expected) else logging.ERROR
                _logger.log(
                    level,
                    "%s failed after %.1fms: %s", func_name, duration_ms, type(exc).__name__,
                    extra={"duration_ms": round(duration_ms, 2)},
                )
                raise
            finally:
                if not failed:
                    duration_ms = (time.perf_counter() - start) * 1000
                    extra = {"duration_ms": round(duration_ms, 2)}
                    if duration_ms >= threshold_ms:
                        _logger.warning(
                            "Slow operation: %s took %.1fms", func_name, duration_ms,
                            extra=extra,
                        )
                    else:
                        _logger.debug(
                            "%s completed in %.1fms", func_name, duration_ms,
                            extra=extra,
                        )

        return wrapper

    return decorator
