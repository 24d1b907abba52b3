"""
Retry utilities for connector operations.

Directory reads are never retried (a failed page aborts the snapshot); only
mutating calls against the target directory go through these helpers.
"""

import time
import logging
import functools
from typing import Any, Callable, Dict, Optional, Tuple, Type

from team_sync.provider import ProviderAuthenticationError, ProviderTransportError

logger = logging.getLogger(__name__)


class MaxRetriesExceeded(Exception):
    """Raised when maximum retry attempts are exceeded."""

    def __init__(self, attempts: int, last_exception: Exception):
        self.attempts = attempts
        self.last_exception = last_exception
        super().__init__(f"Failed after {attempts} attempts: {last_exception}")


def retry(
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
):
    """
    Decorator to retry function calls on specified exceptions.

    Example:
        @retry(max_attempts=3, delay=2.0, backoff=2.0)
        def remove():
            ...
    """
    def decorator(func):
        @functools.wraps(func)
        def wrapper(*args, **kwargs):
            return retry_call(
                func, args, kwargs,
                max_attempts=max_attempts,
                delay=delay,
                backoff=backoff,
                exceptions=exceptions,
                on_retry=on_retry
            )
        return wrapper
    return decorator


def retry_call(
    func: Callable,
    args: tuple = (),
    kwargs: dict = None,
    max_attempts: int = 3,
    delay: float = 1.0,
    backoff: float = 1.0,
    exceptions: Tuple[Type[Exception], ...] = (Exception,),
    on_retry: Optional[Callable[[int, Exception], None]] = None
) -> Any:
    """
    Call a function with retry logic.

    Exceptions outside ``exceptions`` and non-retryable errors (see
    ``is_retryable_error``) propagate immediately.

    Returns:
        Function result

    Raises:
        MaxRetriesExceeded: If every attempt failed with a retryable error
    """
    if kwargs is None:
        kwargs = {}

    max_attempts = max(1, max_attempts)
    last_exception = None
    current_delay = delay

    for attempt in range(max_attempts):
        try:
            result = func(*args, **kwargs)
            if attempt > 0:
                logger.info(f"Operation succeeded on attempt {attempt + 1}")
            return result

        except exceptions as e:
            if not is_retryable_error(e):
                raise
            last_exception = e

            if attempt == max_attempts - 1:
                break

            logger.debug(f"Attempt {attempt + 1} failed with {type(e).__name__}: {e}")

            if on_retry:
                try:
                    on_retry(attempt + 1, e)
                except Exception as callback_error:
                    logger.warning(f"Retry callback failed: {callback_error}")

            if current_delay > 0:
                time.sleep(current_delay)
            current_delay *= backoff

    raise MaxRetriesExceeded(max_attempts, last_exception)


def retry_settings(error_config: Dict[str, Any]) -> Dict[str, Any]:
    """
    Translate the ``error_handling`` configuration section into retry_call keyword arguments.
    """
    return {
        'max_attempts': error_config.get('max_retries', 3) + 1,  # +1 for initial attempt
        'delay': error_config.get('retry_wait_seconds', 5),
        'backoff': error_config.get('retry_backoff', 1.0),
    }


def is_retryable_error(exception: Exception) -> bool:
    """
    Determine if an exception should trigger a retry.

    Authentication failures never do; transport failures and 429/5xx responses do.
    """
    if isinstance(exception, ProviderAuthenticationError):
        return False

    status_code = getattr(exception, 'status_code', None)
    if status_code is not None:
        return status_code == 429 or 500 <= status_code < 600

    if isinstance(exception, (ConnectionError, TimeoutError, ProviderTransportError)):
        return True

    error_msg = str(exception).lower()
    transient_patterns = [
        'timeout',
        'timed out',
        'connection reset',
        'connection refused',
        'temporary failure',
        'service unavailable',
        'too many requests'
    ]
    return any(pattern in error_msg for pattern in transient_patterns)


def create_retry_callback(operation_name: str) -> Callable[[int, Exception], None]:
    """Create a retry callback that logs each failed attempt."""
    def on_retry(attempt: int, exception: Exception):
        logger.warning(f"{operation_name} failed on attempt {attempt}, "
                       f"retrying due to {type(exception).__name__}: {exception}")

    return on_retry
