"""
Admission-controlled write proxy.

``RealtimeDB`` sits in front of a document engine. Write-class calls ask the
rate gate first: admitted writes are delegated to the engine and return the
engine's native result, rejected writes become ``DeferredWrite`` records in the
deferred store and return a placeholder. Reads always go straight through.
"""

from __future__ import annotations

import time
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger

from .batch import RateLimitedBatch
from .engines.base import DocumentEngine, DocumentSnapshot, Query
from .errors import DeferredStorageNotConfigured, DocumentAlreadyExists
from .metrics import metrics_registry
from .models import (
    DeferredBatch,
    DeferredWrite,
    DeferredWriteResult,
    OperationKind,
    WriteIntent,
    WriteOptions,
)
from .recovery import RecoveryChain, RecoveryVerdict
from .references import CollectionReference, DocumentReference
from .tenancy import resolve_tenant, set_current_tenant
from .transaction import Transaction
from .types import DeadLetterSink, DeferredWriteStore, RateGate, RecoveryPredicate, T
from .utils import PENDING_PREFIX, collection_path, document_path, replay_document_id, split_path, utc_now


class AdmissionMode(str, Enum):
    CONTROLLED = "controlled"
    PASS_THROUGH = "pass_through"


class RealtimeDB:
    """
    Write proxy with per-tenant admission control and write deferral.

    Usage:
        db = RealtimeDB(engine, gate=TokenBucketGate(5, 1), store=NdjsonDeferredStore(path))
        db.register_dlq_handler(DeadLetterQueue(dlq_path))

        ref = await db.add("users", {"name": "Ada"}, tenant_id="acme")
        if is_pending(ref):
            ...  # deferred; the document does not exist yet

        result = await db.update("users/1", {"status": 5})
        if is_deferred(result):
            ...  # queued for replay, not committed
    """

    def __init__(
        self,
        engine: DocumentEngine,
        gate: Optional[RateGate] = None,
        store: Optional[DeferredWriteStore] = None,
        *,
        recovery: Optional[RecoveryChain] = None,
        default_tenant: str = "default",
    ):
        if not default_tenant:
            raise ValueError("default_tenant must be a non-empty string")
        self._engine = engine
        self._gate = gate
        self._store = store
        self._recovery = recovery or RecoveryChain()
        self._default_tenant = default_tenant
        self._mode = AdmissionMode.CONTROLLED if gate is not None else AdmissionMode.PASS_THROUGH
        logger.info(f"RealtimeDB initialized (mode={self._mode.value}, deferred store={store is not None})")

    # --------------------------- properties

    @property
    def mode(self) -> AdmissionMode:
        return self._mode

    @property
    def gate(self) -> Optional[RateGate]:
        return self._gate

    @property
    def store(self) -> Optional[DeferredWriteStore]:
        return self._store

    @property
    def recovery(self) -> RecoveryChain:
        return self._recovery

    @property
    def native(self) -> DocumentEngine:
        """The raw engine, bypassing admission control."""
        return self._engine

    def get_native_engine(self) -> DocumentEngine:
        return self._engine

    # --------------------------- configuration

    def register_error_handler(self, predicate: RecoveryPredicate) -> None:
        self._recovery.register(predicate)

    def register_dlq_handler(self, sink: Optional[DeadLetterSink]) -> None:
        self._recovery.set_dead_letter(sink)

    def set_customer_id(self, customer_id: str) -> None:
        """Bind the tenant for the current request context (task local)."""
        set_current_tenant(customer_id)

    # --------------------------- writes

    async def add(self, collection: str, data: Dict[str, Any], *, tenant_id: Optional[str] = None) -> Any:
        intent = WriteIntent(kind=OperationKind.CREATE, path=collection_path(collection), payload=data)
        tenant = resolve_tenant(tenant_id, self._default_tenant)

        if await self._should_rate_limit(tenant):
            record = await self._defer(intent, tenant)
            # placeholder handle; nothing exists at this path until replay
            return self._engine.document(f"{intent.path}/{PENDING_PREFIX}{record.id}")

        return await self._direct(intent, tenant, lambda: self._engine.collection(intent.path).add(data))

    async def set(
        self,
        path: str,
        data: Dict[str, Any],
        options: Union[WriteOptions, Mapping[str, Any], None] = None,
        *,
        tenant_id: Optional[str] = None,
    ) -> Any:
        intent = WriteIntent(
            kind=OperationKind.SET,
            path=document_path(path),
            payload=data,
            options=WriteOptions.coerce(options),
        )
        return await self._write(
            intent,
            tenant_id,
            lambda: self._engine.document(intent.path).set(data, merge=intent.merge),
        )

    async def update(self, path: str, data: Dict[str, Any], *, tenant_id: Optional[str] = None) -> Any:
        intent = WriteIntent(kind=OperationKind.UPDATE, path=document_path(path), payload=data)
        return await self._write(intent, tenant_id, lambda: self._engine.document(intent.path).update(data))

    async def delete(self, path: str, *, tenant_id: Optional[str] = None) -> Any:
        intent = WriteIntent(kind=OperationKind.DELETE, path=document_path(path))
        return await self._write(intent, tenant_id, lambda: self._engine.document(intent.path).delete())

    # --------------------------- reads / navigation

    async def get(self, path: str) -> DocumentSnapshot:
        return await self._engine.document(document_path(path)).get()

    async def query(self, collection: str, query_fn: Callable[[Query], Query]) -> List[DocumentSnapshot]:
        return await query_fn(self._engine.collection(collection)).get()

    def collection(self, path: str) -> CollectionReference:
        return CollectionReference(self._engine.collection(path))

    def doc(self, path: str) -> DocumentReference:
        return DocumentReference(self._engine.document(path))

    # --------------------------- units

    def batch(self, tenant_id: Optional[str] = None) -> Any:
        """
        New write batch.

        Without both a gate and a store this is the engine's native batch;
        otherwise a ``RateLimitedBatch`` admitted as a whole for the tenant.
        """
        if self._gate is None or self._store is None:
            return self._engine.batch()
        return RateLimitedBatch(
            self._engine,
            resolve_tenant(tenant_id, self._default_tenant),
            self._should_rate_limit,
            self._defer_batch,
            on_error=self._handle_batch_error,
        )

    async def run_transaction(self, fn: Callable[[Transaction[T]], Awaitable[T]]) -> T:
        """Run ``fn`` in an engine transaction. Transactions are not admission checked."""

        async def attempt(native_tx: Any) -> T:
            return await Transaction(native_tx, fn).execute()

        return await self._engine.run_transaction(attempt)

    async def close(self) -> None:
        await self._engine.close()

    # --------------------------- replay

    async def replay(self, record: DeferredWrite) -> None:
        """
        Apply a deferred record to the engine, bypassing admission.

        Used as the deferred store's drain handler. Failures are routed through
        the recovery chain. A dead-lettered record returns normally so the store
        drops it; recoverable or unhandled failures are re-raised so the store
        keeps the record for the next pass.
        """
        intent = record.to_intent()
        try:
            await self._apply(intent, record)
        except Exception as exc:
            metrics_registry.replay_total.labels(outcome="failed").inc()
            logger.warning(f"Replay failed for {record.id} ({record.path}): {type(exc).__name__}: {exc}")
            verdict = await self._recovery.route(exc, record)
            if verdict is RecoveryVerdict.DEAD_LETTERED:
                metrics_registry.replay_total.labels(outcome="dead_lettered").inc()
                return
            raise
        metrics_registry.replay_total.labels(outcome="applied").inc()
        logger.info(f"Replayed {record.effective_operation.value} {record.path} ({record.id})")

    async def _apply(self, intent: WriteIntent, record: DeferredWrite) -> None:
        if intent.kind is OperationKind.CREATE:
            if len(split_path(intent.path)) % 2 == 1:
                doc = self._engine.collection(intent.path).document(replay_document_id(record.id))
                try:
                    await doc.create(intent.payload or {})
                except DocumentAlreadyExists:
                    logger.info(f"Deferred create {record.id} already applied at {doc.path}")
                return
            await self._engine.document(intent.path).create(intent.payload or {})
        elif intent.kind is OperationKind.SET:
            await self._engine.document(intent.path).set(intent.payload or {}, merge=intent.merge)
        elif intent.kind is OperationKind.UPDATE:
            await self._engine.document(intent.path).update(intent.payload or {})
        elif intent.kind is OperationKind.DELETE:
            await self._engine.document(intent.path).delete()
        else:
            raise ValueError(f"unsupported operation: {intent.kind}")

    # --------------------------- internals

    async def _should_rate_limit(self, tenant: str, cost: int = 1) -> bool:
        if self._mode is AdmissionMode.PASS_THROUGH:
            return False
        limited = await self._gate.is_rate_limited(tenant, cost)
        metrics_registry.admission_checks_total.labels(decision="limited" if limited else "admitted").inc()
        return limited

    async def _write(self, intent: WriteIntent, tenant_id: Optional[str], call: Callable[[], Awaitable[Any]]) -> Any:
        tenant = resolve_tenant(tenant_id, self._default_tenant)
        if await self._should_rate_limit(tenant):
            record = await self._defer(intent, tenant)
            return DeferredWriteResult(update_time=utc_now(), record_id=record.id)
        return await self._direct(intent, tenant, call)

    async def _direct(self, intent: WriteIntent, tenant: str, call: Callable[[], Awaitable[Any]]) -> Any:
        operation = intent.kind.value
        start = time.perf_counter()
        try:
            result = await call()
        except Exception as exc:
            metrics_registry.writes_total.labels(operation=operation, outcome="failed").inc()
            await self._handle_error(exc, intent, tenant)
            raise
        metrics_registry.write_latency.labels(operation=operation).observe(time.perf_counter() - start)
        metrics_registry.writes_total.labels(operation=operation, outcome="committed").inc()
        return result

    async def _store_record(self, record: DeferredWrite) -> None:
        if self._store is None:
            raise DeferredStorageNotConfigured(
                f"write to {record.path} was rate limited and no deferred store is configured"
            )
        await self._store.store(record)

    async def _defer(self, intent: WriteIntent, tenant: str) -> DeferredWrite:
        record = DeferredWrite.from_intent(intent, customer_id=tenant)
        await self._store_record(record)
        metrics_registry.writes_total.labels(operation=intent.kind.value, outcome="deferred").inc()
        logger.info(f"Deferred {intent.kind.value} {intent.path} for {tenant} as {record.id}")
        return record

    async def _defer_batch(self, batch: DeferredBatch) -> List[DeferredWrite]:
        records = []
        for intent in batch.operations:
            record = DeferredWrite.from_intent(intent, customer_id=batch.customer_id, batch_id=batch.batch_id)
            await self._store_record(record)
            metrics_registry.writes_total.labels(operation=intent.kind.value, outcome="deferred").inc()
            records.append(record)
        logger.info(f"Deferred batch {batch.batch_id} for {batch.customer_id} as {len(records)} records")
        return records

    async def _handle_error(self, error: BaseException, intent: WriteIntent, tenant: str) -> None:
        record = DeferredWrite.from_intent(intent, customer_id=tenant, prefix="error")
        await self._recovery.triage(error, record)

    async def _handle_batch_error(self, error: BaseException, batch: DeferredBatch) -> None:
        for intent in batch.operations:
            metrics_registry.writes_total.labels(operation=intent.kind.value, outcome="failed").inc()
            record = DeferredWrite.from_intent(
                intent, customer_id=batch.customer_id, prefix="error", batch_id=batch.batch_id
            )
            await self._recovery.triage(error, record)
