from __future__ import annotations

import random
from dataclasses import dataclass, field
from typing import Callable

from .errors import RetryableError
from .models import DeferredWrite

_TRANSIENT_MARKERS = ("timeout", "temporar", "busy", "retry", "unavailable", "deadlock", "conflict")


def default_retry_classifier(exc: BaseException) -> bool:
    """True for errors that are likely to succeed when tried again."""
    if isinstance(exc, (RetryableError, TimeoutError, ConnectionError)):
        return True
    if isinstance(exc, (ValueError, TypeError, KeyError, PermissionError)):
        return False
    msg = str(exc).lower()
    return any(marker in msg for marker in _TRANSIENT_MARKERS)


@dataclass
class RetryPolicy:
    """Exponential backoff with optional jitter and a retryable-error classifier."""

    max_attempts: int = 5
    initial_backoff_ms: int = 50
    max_backoff_ms: int = 2000
    backoff_multiplier: float = 2.0
    jitter: bool = True
    classify_retryable: Callable[[BaseException], bool] = field(
        default=default_retry_classifier
    )

    def next_backoff_ms(self, attempt: int) -> int:
        """Backoff before retry number ``attempt`` (1-based).

        With jitter the value lies in [50%, 100%] of the capped exponential.
        """
        base = self.initial_backoff_ms * (self.backoff_multiplier ** max(0, attempt - 1))
        capped = min(int(base), self.max_backoff_ms)
        if not self.jitter:
            return capped
        return int(random.uniform(capped / 2, capped))


async def transient_error_handler(error: BaseException, record: DeferredWrite) -> bool:
    """Recovery predicate: transient engine errors are recoverable (not dead-lettered)."""
    return default_retry_classifier(error)
