"""Retry logic for calls to external services."""

import logging
from typing import Any, Callable, TypeVar

from httpx import ConnectError, HTTPStatusError, NetworkError, TimeoutException
from tenacity import (
    retry,
    retry_if_exception,
    stop_after_attempt,
    wait_exponential,
)

logger = logging.getLogger(__name__)

# Type variable for generic decorator
T = TypeVar("T")


# Transient errors that should be retried
RETRYABLE_EXCEPTIONS = (
    TimeoutException,
    ConnectError,
    NetworkError,
    HTTPStatusError,
)


def is_retryable_http_error(exception: BaseException) -> bool:
    """Check if HTTP error is retryable (5xx or specific 4xx errors)."""
    if isinstance(exception, HTTPStatusError):
        status_code = exception.response.status_code
        # Retry on 5xx server errors
        if 500 <= status_code < 600:
            return True
        # Retry on specific 4xx errors
        if status_code in (408, 429):  # Request Timeout, Too Many Requests
            return True
        return False
    return isinstance(exception, RETRYABLE_EXCEPTIONS)


def _log_retry(retry_state: Any, max_attempts: int) -> None:
    logger.warning(
        f"Retrying {retry_state.fn.__name__} after {retry_state.outcome.exception()}"
        f" (attempt {retry_state.attempt_number}/{max_attempts})"
    )


def retry_with_backoff(
    max_attempts: int = 3,
    min_wait: int = 1,
    max_wait: int = 10,
) -> Callable[[Callable[..., T]], Callable[..., T]]:
    """
    Decorator to retry function with exponential backoff.

    Only transient errors (see ``is_retryable_http_error``) are retried; use it
    for reads and other calls that are safe to repeat.

    Args:
        max_attempts: Maximum number of retry attempts
        min_wait: Minimum wait time in seconds
        max_wait: Maximum wait time in seconds

    Returns:
        Decorated function with retry logic
    """
    return retry(
        retry=retry_if_exception(is_retryable_http_error),
        stop=stop_after_attempt(max_attempts),
        wait=wait_exponential(multiplier=1, min=min_wait, max=max_wait),
        reraise=True,
        before_sleep=lambda retry_state: _log_retry(retry_state, max_attempts),
    )
