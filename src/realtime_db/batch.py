from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Sequence, Union

from loguru import logger

from .engines.base import DocumentEngine, WriteBatchHandle, WriteResult, target_path
from .models import DeferredBatch, DeferredWrite, DeferredWriteResult, OperationKind, WriteIntent, WriteOptions
from .utils import collection_path, generate_record_id, split_path, utc_now

# (tenant, operation count) -> rate limited?
CostFunction = Callable[[str, int], Awaitable[bool]]
# rejected batch -> the deferred records it was decomposed into
BatchFallback = Callable[[DeferredBatch], Awaitable[List[DeferredWrite]]]
# native commit failure hook
BatchErrorHook = Callable[[BaseException, DeferredBatch], Awaitable[None]]


class RateLimitedBatch:
    """
    Write batch under admission control.

    Intents accumulate without touching the engine. ``commit()`` asks the cost
    function about the whole batch: admitted batches commit atomically through
    the engine's native batch, rejected ones go to the fallback, which defers
    each operation separately. The batch never talks to a deferred store itself.

    Usage:
        batch = db.batch()
        batch.set("users/1", {"status": 1}).update("users/2", {"status": 2})
        batch.delete("users/3")
        results = await batch.commit()
    """

    def __init__(
        self,
        engine: DocumentEngine,
        customer_id: str,
        is_rate_limited: CostFunction,
        fallback: BatchFallback,
        *,
        on_error: Optional[BatchErrorHook] = None,
    ):
        self._engine = engine
        self._customer_id = customer_id
        self._is_rate_limited = is_rate_limited
        self._fallback = fallback
        self._on_error = on_error
        self._intents: List[WriteIntent] = []
        self._committed = False

    # --------------------------- public API

    @property
    def customer_id(self) -> str:
        return self._customer_id

    @property
    def operations(self) -> Sequence[WriteIntent]:
        return tuple(self._intents)

    def __len__(self) -> int:
        return len(self._intents)

    def add(self, collection: str, data: Dict[str, Any]) -> "RateLimitedBatch":
        """Create a document with a generated id in ``collection``."""
        return self._push(WriteIntent(kind=OperationKind.CREATE, path=collection_path(collection), payload=data))

    def create(self, target: Any, data: Dict[str, Any]) -> "RateLimitedBatch":
        return self._push(WriteIntent(kind=OperationKind.CREATE, path=target_path(target), payload=data))

    def set(
        self,
        target: Any,
        data: Dict[str, Any],
        options: Union[WriteOptions, Mapping[str, Any], None] = None,
    ) -> "RateLimitedBatch":
        return self._push(
            WriteIntent(
                kind=OperationKind.SET,
                path=target_path(target),
                payload=data,
                options=WriteOptions.coerce(options),
            )
        )

    def update(self, target: Any, data: Dict[str, Any]) -> "RateLimitedBatch":
        return self._push(WriteIntent(kind=OperationKind.UPDATE, path=target_path(target), payload=data))

    def delete(self, target: Any) -> "RateLimitedBatch":
        return self._push(WriteIntent(kind=OperationKind.DELETE, path=target_path(target)))

    async def commit(self) -> List[Union[WriteResult, DeferredWriteResult]]:
        """Commit atomically if admitted, otherwise defer every operation."""
        if self._committed:
            raise RuntimeError("batch already committed")
        intents = list(self._intents)
        if not intents:
            self._committed = True
            return []

        batch = DeferredBatch(
            batch_id=generate_record_id("batch"),
            customer_id=self._customer_id,
            operations=intents,
        )

        if await self._is_rate_limited(self._customer_id, len(intents)):
            logger.info(f"Deferring batch {batch.batch_id} with {len(intents)} operations")
            records = await self._fallback(batch)
            self._finish()
            now = utc_now()
            return [DeferredWriteResult(update_time=now, record_id=r.id) for r in records]

        native = self._engine.batch()
        for intent in intents:
            apply_intent(native, intent)
        try:
            results = await native.commit()
        except Exception as exc:
            if self._on_error is not None:
                await self._on_error(exc, batch)
            raise
        self._finish()
        return results

    # --------------------------- internals

    def _push(self, intent: WriteIntent) -> "RateLimitedBatch":
        if self._committed:
            raise RuntimeError("batch already committed")
        self._intents.append(intent)
        return self

    def _finish(self) -> None:
        self._intents.clear()
        self._committed = True


def apply_intent(native: WriteBatchHandle, intent: WriteIntent) -> None:
    """Translate one intent onto an engine native batch."""
    if intent.kind is OperationKind.CREATE:
        # a collection path means "generated id", a document path is explicit
        if len(split_path(intent.path)) % 2 == 1:
            native.add(intent.path, intent.payload or {})
        else:
            native.create(intent.path, intent.payload or {})
    elif intent.kind is OperationKind.SET:
        native.set(intent.path, intent.payload or {}, merge=intent.merge)
    elif intent.kind is OperationKind.UPDATE:
        native.update(intent.path, intent.payload or {})
    elif intent.kind is OperationKind.DELETE:
        native.delete(intent.path)
    else:
        raise ValueError(f"unsupported intent kind: {intent.kind}")
