"""
Explicit construction of a configured RealtimeDB from settings.

There is no process-wide instance: callers build one at startup and pass it
where it is needed.
"""

from __future__ import annotations

from typing import Optional

from loguru import logger

from realtime_db.admission import TokenBucketGate
from realtime_db.config import Settings, get_settings
from realtime_db.engines import BaseEngine, MemoryEngine, PostgresEngine
from realtime_db.policy import RetryPolicy, transient_error_handler
from realtime_db.proxy import RealtimeDB
from realtime_db.types import DeferredWriteStore

from .deferred import DeadLetterQueue, MemoryDeferredStore, NdjsonDeferredStore


def build_engine(settings: Settings) -> BaseEngine:
    """Engine for ``settings.ENGINE``. A PostgresEngine still has to be opened."""
    policy = RetryPolicy(max_attempts=settings.TRANSACTION_MAX_ATTEMPTS)
    if settings.ENGINE == "postgres":
        if not settings.database_url:
            raise ValueError("RTDB_DATABASE_URL is required for the postgres engine")
        cfg = {"dsn": settings.database_url, "pool_max": settings.POOL_MAX}
        if settings.STATEMENT_TIMEOUT_MS:
            cfg["statement_timeout_ms"] = settings.STATEMENT_TIMEOUT_MS
        return PostgresEngine(cfg, retry_policy=policy)
    return MemoryEngine(retry_policy=policy)


def build_store(settings: Settings) -> DeferredWriteStore:
    if settings.DEFERRED_STORE_PATH:
        return NdjsonDeferredStore(settings.DEFERRED_STORE_PATH)
    logger.warning("RTDB_DEFERRED_STORE_PATH not set; deferred writes are kept in memory only")
    return MemoryDeferredStore()


def build_realtime_db(
    settings: Optional[Settings] = None,
    *,
    engine: Optional[BaseEngine] = None,
    store: Optional[DeferredWriteStore] = None,
) -> RealtimeDB:
    """
    Wire engine, gate, store, recovery predicates and DLQ from settings.

    With ``ADMISSION_ENABLED`` off the proxy runs in pass-through mode.
    """
    settings = settings or get_settings()
    engine = engine or build_engine(settings)

    gate = None
    if settings.ADMISSION_ENABLED:
        gate = TokenBucketGate(points=settings.RATE_POINTS, duration_sec=settings.RATE_DURATION_SEC)
        store = store or build_store(settings)

    db = RealtimeDB(engine, gate, store, default_tenant=settings.DEFAULT_TENANT)
    db.register_error_handler(transient_error_handler)
    db.register_dlq_handler(DeadLetterQueue(settings.DLQ_PATH))
    return db


async def open_realtime_db(settings: Optional[Settings] = None) -> RealtimeDB:
    """``build_realtime_db`` plus opening a pooled engine."""
    db = build_realtime_db(settings)
    if isinstance(db.native, PostgresEngine):
        await db.native.open()
    return db
