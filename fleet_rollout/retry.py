"""Bounded retries for transient HTTP failures.

Only transport-level errors (refused connections, timeouts) and 5xx
responses are retried; anything else propagates on the first attempt.
"""
import time

import httpx

from .logger import get_logger

RETRYABLE_EXCEPTIONS = (httpx.TransportError,)

RETRYABLE_STATUS_CODES = {500, 502, 503, 504}


def is_transient(exc):
    if isinstance(exc, RETRYABLE_EXCEPTIONS):
        return True
    return (isinstance(exc, httpx.HTTPStatusError)
            and exc.response.status_code in RETRYABLE_STATUS_CODES)


def retry_request(func, *args, attempts=3, delay=1.0, **kwargs):
    """Call ``func`` up to ``attempts`` times with a fixed delay between tries.

    Usage::

        info = retry_request(client.status_info, "10.0.0.12", attempts=3)

    The last transient exception is re-raised once attempts are exhausted.
    """
    logger = get_logger("retry")
    attempts = max(1, attempts)
    for attempt in range(1, attempts + 1):
        try:
            return func(*args, **kwargs)
        except (httpx.TransportError, httpx.HTTPStatusError) as exc:
            if not is_transient(exc) or attempt >= attempts:
                raise
            name = getattr(func, "__name__", "request")
            logger.warning(
                f"{name} failed ({exc.__class__.__name__}), attempt {attempt} of {attempts}, "
                f"retrying in {delay}s"
            )
            time.sleep(delay)
    raise RuntimeError("retry loop exited without a result")
