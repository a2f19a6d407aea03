"""
Bounded exponential backoff for rate-limited model calls.

Only rate-limit failures are retried. Every other error is re-raised on the
first occurrence so safety blocks and malformed responses surface at once.
"""

from __future__ import annotations

import logging
import random
import re
import time
from dataclasses import dataclass
from typing import Callable, TypeVar

from storybook.core.metrics import record_rate_limit_retry
from storybook.services.gemini import GeminiRateLimitError

logger = logging.getLogger(__name__)

T = TypeVar("T")

_RATE_LIMIT_SIGNATURES = ("RESOURCE_EXHAUSTED", "RATE LIMIT", "QUOTA")
_STATUS_429 = re.compile(r"\b429\b")


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_seconds: float = 2.0
    max_jitter_seconds: float = 1.0

    def delay_for(self, attempt: int, jitter: float) -> float:
        """Delay before retrying after the failed ``attempt`` (0-based)."""
        return self.base_delay_seconds * (2**attempt) + jitter * self.max_jitter_seconds


def is_rate_limit_error(exc: BaseException) -> bool:
    if isinstance(exc, GeminiRateLimitError):
        return True
    for attr in ("code", "status_code"):
        if getattr(exc, attr, None) == 429:
            return True
    message = str(exc).upper()
    if _STATUS_429.search(message):
        return True
    return any(signature in message for signature in _RATE_LIMIT_SIGNATURES)


def with_retry(
    operation: Callable[[], T],
    *,
    policy: RetryPolicy | None = None,
    sleep: Callable[[float], None] = time.sleep,
    jitter: Callable[[], float] = random.random,
) -> T:
    """Call ``operation``, retrying rate-limit errors with exponential backoff.

    Args:
        operation: Zero-argument callable performing the model call
        policy: Attempt count and delay parameters (defaults: 3 attempts, 2s base, 1s jitter)
        sleep: Sleep primitive, injectable for tests
        jitter: Returns a float in [0, 1) scaled by ``policy.max_jitter_seconds``

    Returns:
        The operation's result

    Raises:
        The last error once attempts are exhausted, or any non-rate-limit error immediately.
    """
    policy = policy or RetryPolicy()
    attempt = 0
    while True:
        try:
            return operation()
        except Exception as exc:
            if not is_rate_limit_error(exc) or attempt + 1 >= policy.max_attempts:
                raise
            delay = policy.delay_for(attempt, jitter())
            logger.warning(
                "rate limited; retrying attempt=%s/%s delay_seconds=%.2f error=%s",
                attempt + 2,
                policy.max_attempts,
                delay,
                exc,
            )
            record_rate_limit_retry()
            sleep(delay)
            attempt += 1
