"""Retry with exponential backoff for calls to external services."""

import logging
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

import httpx

logger = logging.getLogger(__name__)

T = TypeVar("T")

RETRYABLE_STATUS_CODES = {429, 500, 502, 503, 504}


@dataclass
class RetryPolicy:
    """How many times to try a call and how long to wait between attempts."""

    max_attempts: int = 3
    initial_delay: float = 1.0  # seconds
    max_delay: float = 8.0  # seconds


def is_retryable(exc: Exception, idempotent: bool = True) -> bool:
    """Whether an httpx error is worth another attempt.

    Non-idempotent calls are only retried when the request never reached the
    server (connection failures).
    """
    if isinstance(exc, (httpx.ConnectError, httpx.ConnectTimeout)):
        return True
    if not idempotent:
        return False
    if isinstance(exc, httpx.HTTPStatusError):
        return exc.response.status_code in RETRYABLE_STATUS_CODES
    return isinstance(exc, httpx.TransportError)


def call_with_retry(
    call: Callable[[], T],
    action: str,
    policy: RetryPolicy | None = None,
    idempotent: bool = True,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """Run `call`, retrying transient httpx failures with exponential backoff.

    The last exception is re-raised once attempts are exhausted or the error
    is not retryable.
    """
    policy = policy or RetryPolicy()
    attempts = max(1, int(policy.max_attempts))
    delay = max(0.0, float(policy.initial_delay))

    for attempt in range(1, attempts + 1):
        try:
            return call()
        except httpx.HTTPError as exc:
            if attempt >= attempts or not is_retryable(exc, idempotent):
                raise
            logger.warning(
                "Transient failure action=%s attempt=%s/%s error=%s",
                action,
                attempt,
                attempts,
                exc,
            )
            if delay > 0:
                sleep(delay)
            delay = min(policy.max_delay, delay * 2)

    raise RuntimeError(f"Retry aborted before first attempt for action={action}")
