"""
Error recovery chain for failed direct writes.

Predicates are evaluated in registration order; the first one that declares
the failure recoverable short-circuits the chain. When no predicate claims the
failure, the dead-letter sink (if any) receives exactly one call.

The chain only triages. It never retries the write and never suppresses the
original error; the proxy re-raises after triage.
"""

from __future__ import annotations

import inspect
from enum import Enum
from typing import Optional

from loguru import logger

from .metrics import metrics_registry
from .models import DeferredWrite
from .types import DeadLetterSink, RecoveryPredicate


class RecoveryVerdict(str, Enum):
    """Where one failure ended up."""

    RECOVERABLE = "recoverable"  # a predicate claimed it
    DEAD_LETTERED = "dead_lettered"  # the sink accepted it
    UNHANDLED = "unhandled"  # no sink, or the sink failed


class RecoveryChain:
    """Ordered recoverability predicates plus one terminal dead-letter sink.

    Registration is expected at startup; afterwards the chain is only read and
    may be shared by concurrent callers without locking.
    """

    def __init__(self) -> None:
        self._predicates: list[RecoveryPredicate] = []
        self._dead_letter: Optional[DeadLetterSink] = None

    def register(self, predicate: RecoveryPredicate) -> None:
        """Append a predicate; registration order is evaluation order."""
        self._predicates.append(predicate)
        logger.debug(f"Recovery predicate registered (total: {len(self._predicates)})")

    def set_dead_letter(self, sink: Optional[DeadLetterSink]) -> None:
        """Set the terminal sink. Last registration wins."""
        self._dead_letter = sink

    @property
    def predicate_count(self) -> int:
        return len(self._predicates)

    @property
    def has_dead_letter(self) -> bool:
        return self._dead_letter is not None

    async def triage(self, error: BaseException, record: DeferredWrite) -> bool:
        """Run the chain for one failure. Returns True when a predicate claimed it."""
        return await self.route(error, record) is RecoveryVerdict.RECOVERABLE

    async def route(self, error: BaseException, record: DeferredWrite) -> RecoveryVerdict:
        """Run the chain for one failure and report where it ended up."""
        for predicate in self._predicates:
            try:
                verdict = predicate(error, record)
                if inspect.isawaitable(verdict):
                    verdict = await verdict
            except Exception as exc:
                logger.warning(
                    f"Recovery predicate failed for {record.id}: {type(exc).__name__}: {exc}"
                )
                continue
            if verdict:
                logger.info(f"Write failure marked recoverable: {record.id} ({record.path})")
                metrics_registry.recovery_total.labels(verdict="recoverable").inc()
                return RecoveryVerdict.RECOVERABLE

        if self._dead_letter is None:
            metrics_registry.recovery_total.labels(verdict="unhandled").inc()
            return RecoveryVerdict.UNHANDLED

        logger.error(
            f"Dead-lettering {record.operation.value} {record.path} "
            f"for {record.customer_id}: {type(error).__name__}: {error}"
        )
        try:
            outcome = self._dead_letter(error, record)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception as exc:
            logger.error(f"Dead-letter sink failed for {record.id}: {type(exc).__name__}: {exc}")
            metrics_registry.recovery_total.labels(verdict="unhandled").inc()
            return RecoveryVerdict.UNHANDLED
        metrics_registry.recovery_total.labels(verdict="dead_lettered").inc()
        return RecoveryVerdict.DEAD_LETTERED
