"""Deferred write storage, dead letters and replay."""

from .dlq import DeadLetterQueue, DLQRecord
from .replay import ReplayWorker
from .store import MemoryDeferredStore, NdjsonDeferredStore

__all__ = [
    "DeadLetterQueue",
    "DLQRecord",
    "MemoryDeferredStore",
    "NdjsonDeferredStore",
    "ReplayWorker",
]
