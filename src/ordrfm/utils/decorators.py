"""
Utility decorators for ordrfm

Retry with backoff for transient failures and slow-call tracking.
"""

import functools
import logging
import time
from collections import deque
from typing import Any, Callable, Optional, TypeVar, cast

F = TypeVar('F', bound=Callable[..., Any])

PERFORMANCE_SAMPLES = 100  # Timings kept per tracked function


def _logger_for(func: Callable, args: tuple) -> logging.Logger:
    if args and hasattr(args[0], 'logger'):
        return args[0].logger
    return logging.getLogger(func.__module__)


def track_performance(
    threshold_ms: Optional[float] = None,
    log_slow: bool = True
) -> Callable[[F], F]:
    """
    Decorator to track function execution time.

    Args:
        threshold_ms: Log warning if execution time exceeds this threshold (milliseconds)
        log_slow: Whether to log slow executions

    Returns:
        Decorated function with performance tracking
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            start_time = time.monotonic()
            try:
                return func(*args, **kwargs)
            finally:
                execution_time = (time.monotonic() - start_time) * 1000

                if threshold_ms and execution_time > threshold_ms and log_slow:
                    _logger_for(func, args).warning(
                        f"{func.__name__} took {execution_time:.2f}ms "
                        f"(threshold: {threshold_ms}ms)"
                    )

                metrics = getattr(args[0], '_performance_metrics', None) if args else None
                if isinstance(metrics, dict):
                    metrics.setdefault(func.__name__, deque(maxlen=PERFORMANCE_SAMPLES)).append(execution_time)

        return cast(F, wrapper)

    return decorator


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 2.0,
    exceptions: tuple = (Exception,)
) -> Callable[[F], F]:
    """
    Decorator to retry function execution with exponential backoff.

    Args:
        max_attempts: Maximum number of attempts
        delay: Initial delay between retries (seconds)
        backoff: Multiplier for delay after each retry
        exceptions: Tuple of exception types to retry on

    Returns:
        Decorated function with retry logic
    """
    def decorator(func: F) -> F:
        @functools.wraps(func)
        def wrapper(*args, **kwargs) -> Any:
            current_delay = delay

            for attempt in range(max_attempts):
                try:
                    return func(*args, **kwargs)
                except exceptions as e:
                    if attempt == max_attempts - 1:
                        raise

                    _logger_for(func, args).warning(
                        f"{func.__name__} failed (attempt {attempt + 1}/{max_attempts}), "
                        f"retrying in {current_delay:.1f}s: {str(e)}"
                    )
                    time.sleep(current_delay)
                    current_delay *= backoff

        return cast(F, wrapper)

    return decorator
