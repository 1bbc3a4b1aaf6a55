"""
Retry Policies for Kubernetes API Calls

Two narrow policies built on tenacity. Everything else is retried by
re-entering the reconciliation loop, so failures stay visible on the
Project status instead of being absorbed inside a single call.

- List retry: a freshly installed kind may not be listable yet, so the
  convergence waiter keeps listing at a fixed interval. Only retryable
  transport failures are retried; the caller's wait timeout bounds the
  attempts.
- Conflict retry: a write that loses an optimistic-concurrency race is
  retried immediately with a fresh read.
"""

from tenacity import (
    AsyncRetrying,
    retry_if_exception,
    retry_if_exception_type,
    stop_after_attempt,
    stop_never,
    wait_fixed,
    wait_none,
    before_sleep_log,
)
import logging

from .errors import ConflictError, TransportError

logger = logging.getLogger(__name__)


def is_retryable_transport_error(exception: BaseException) -> bool:
    """True for transport failures another attempt may fix (no response, 404, 408, 410, 429, 5xx)."""
    return isinstance(exception, TransportError) and exception.retryable


def list_retrying(interval: float = 0.1) -> AsyncRetrying:
    """
    Create the retry controller used while waiting for a listable resource.

    Args:
        interval: Fixed wait between attempts in seconds (default: 0.1)

    Returns:
        AsyncRetrying controller, used as ``async for attempt in ...``

    Example:
        >>> async for attempt in list_retrying(0.1):
        ...     with attempt:
        ...         listing = await api.list(field_selector=selector)
    """
    return AsyncRetrying(
        # No attempt limit: the surrounding wait_for_state timeout cancels us
        stop=stop_never,
        wait=wait_fixed(interval),
        retry=retry_if_exception(is_retryable_transport_error),
        before_sleep=before_sleep_log(logger, logging.DEBUG),
        reraise=True
    )


def conflict_retrying(max_attempts: int = 3) -> AsyncRetrying:
    """
    Create the retry controller for read-modify-write cycles.

    Args:
        max_attempts: Maximum number of write attempts (default: 3)

    Returns:
        AsyncRetrying controller that re-raises the last ConflictError
    """
    return AsyncRetrying(
        stop=stop_after_attempt(max_attempts),
        wait=wait_none(),
        retry=retry_if_exception_type(ConflictError),
        before_sleep=before_sleep_log(logger, logging.INFO),
        reraise=True
    )
