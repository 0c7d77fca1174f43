"""Storage side of the RealtimeDB proxy: deferred stores, DLQ, replay, wiring."""

from .bootstrap import build_engine, build_realtime_db, build_store, open_realtime_db
from .deferred import (
    DeadLetterQueue,
    DLQRecord,
    MemoryDeferredStore,
    NdjsonDeferredStore,
    ReplayWorker,
)

__all__ = [
    "build_engine",
    "build_realtime_db",
    "build_store",
    "open_realtime_db",
    "DeadLetterQueue",
    "DLQRecord",
    "MemoryDeferredStore",
    "NdjsonDeferredStore",
    "ReplayWorker",
]
