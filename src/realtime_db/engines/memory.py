"""
In-process document engine.

Documents carry a version that changes on every committed write. Transactions
are optimistic: reads record the version they saw, writes buffer, and commit
validates the read set under the engine lock. A stale read set discards the
attempt and the transaction function runs again, up to the retry policy's
``max_attempts``.
"""

from __future__ import annotations

import asyncio
import copy
from dataclasses import dataclass
from datetime import datetime
from typing import Any, Awaitable, Callable, Dict, List, Optional, TypeVar

from loguru import logger

from ..errors import TransactionConflict
from ..policy import RetryPolicy
from ..utils import utc_now
from .base import (
    BaseEngine,
    BufferedTransaction,
    DocumentSnapshot,
    EngineCollection,
    FieldFilter,
    PendingWrite,
    QuerySpec,
    WriteResult,
    apply_write,
    get_field,
    sort_key,
)

T = TypeVar("T")


@dataclass
class _StoredDocument:
    data: Dict[str, Any]
    version: int
    update_time: datetime


class _ReadConflict(Exception):
    pass


def _compare(op: str, actual: Any, expected: Any) -> bool:
    if op == "==":
        return actual == expected
    if op == "!=":
        return actual != expected
    if op == "in":
        return actual in expected
    if op == "array-contains":
        return isinstance(actual, list) and expected in actual
    # range operators only compare values of the same JSON type
    if sort_key(actual)[0] != sort_key(expected)[0]:
        return False
    try:
        if op == "<":
            return actual < expected
        if op == "<=":
            return actual <= expected
        if op == ">":
            return actual > expected
        if op == ">=":
            return actual >= expected
    except TypeError:
        return False
    raise ValueError(f"unsupported operator {op!r}")


def _matches(data: Dict[str, Any], flt: FieldFilter) -> bool:
    found, actual = get_field(data, flt.field_path)
    if not found:
        return False
    return _compare(flt.op, actual, flt.value)


class MemoryTransaction(BufferedTransaction):
    def __init__(self, engine: "MemoryEngine"):
        super().__init__()
        self._engine = engine
        self.read_versions: Dict[str, int] = {}

    async def _read(self, path: str) -> DocumentSnapshot:
        snapshot, version = await self._engine._fetch_versioned(path)
        self.read_versions.setdefault(path, version)
        return snapshot


class MemoryEngine(BaseEngine):
    """Document engine backed by a dict; suitable for tests and single-process use."""

    def __init__(
        self,
        *,
        retry_policy: Optional[RetryPolicy] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._docs: Dict[str, _StoredDocument] = {}
        self._lock = asyncio.Lock()
        self._version = 0
        self._clock = clock
        self.retry_policy = retry_policy or RetryPolicy(
            max_attempts=5, initial_backoff_ms=5, max_backoff_ms=100
        )

    def __len__(self) -> int:
        return len(self._docs)

    # ---------- storage hooks ----------

    async def _fetch_versioned(self, path: str) -> tuple[DocumentSnapshot, int]:
        await asyncio.sleep(0)  # suspension point, like a network read
        stored = self._docs.get(path)
        if stored is None:
            return DocumentSnapshot(path=path, exists=False), 0
        snapshot = DocumentSnapshot(
            path=path,
            exists=True,
            update_time=stored.update_time,
            _data=copy.deepcopy(stored.data),
        )
        return snapshot, stored.version

    async def _fetch(self, path: str) -> DocumentSnapshot:
        snapshot, _ = await self._fetch_versioned(path)
        return snapshot

    async def _commit(
        self,
        writes: List[PendingWrite],
        read_versions: Optional[Dict[str, int]] = None,
    ) -> List[WriteResult]:
        async with self._lock:
            for path, seen in (read_versions or {}).items():
                stored = self._docs.get(path)
                if (stored.version if stored else 0) != seen:
                    raise _ReadConflict(path)

            # stage everything first so a failing write leaves storage untouched
            staged: Dict[str, Optional[Dict[str, Any]]] = {}
            for write in writes:
                if write.path in staged:
                    current = staged[write.path]
                else:
                    stored = self._docs.get(write.path)
                    current = stored.data if stored else None
                staged[write.path] = apply_write(current, write)

            now = self._clock()
            for path, data in staged.items():
                if data is None:
                    self._docs.pop(path, None)
                else:
                    self._version += 1
                    self._docs[path] = _StoredDocument(data, self._version, now)
            return [WriteResult(update_time=now) for _ in writes]

    async def _run_query(self, spec: QuerySpec) -> List[DocumentSnapshot]:
        await asyncio.sleep(0)
        prefix = spec.collection + "/"
        rows = [
            (path, stored)
            for path, stored in self._docs.items()
            if path.startswith(prefix) and "/" not in path[len(prefix):]
        ]
        rows = [(p, s) for p, s in rows if all(_matches(s.data, f) for f in spec.filters)]

        # documents missing an ordered field are excluded, then stable sorts
        # from the last order clause to the first
        for field_path, _ in spec.orders:
            rows = [(p, s) for p, s in rows if get_field(s.data, field_path)[0]]
        rows.sort(key=lambda row: row[0])
        for field_path, direction in reversed(spec.orders):
            rows.sort(
                key=lambda row: sort_key(get_field(row[1].data, field_path)[1]),
                reverse=direction == "desc",
            )
        if spec.limit is not None:
            rows = rows[: spec.limit]
        return [
            DocumentSnapshot(
                path=p, exists=True, update_time=s.update_time, _data=copy.deepcopy(s.data)
            )
            for p, s in rows
        ]

    # ---------- engine API ----------

    async def run_transaction(self, fn: Callable[[MemoryTransaction], Awaitable[T]]) -> T:
        policy = self.retry_policy
        for attempt in range(1, policy.max_attempts + 1):
            tx = MemoryTransaction(self)
            result = await fn(tx)
            try:
                await self._commit(list(tx.writes), tx.read_versions)
                return result
            except _ReadConflict as exc:
                logger.debug(f"[MemoryEngine] Transaction conflict on {exc} (attempt {attempt})")
                if attempt < policy.max_attempts:
                    await asyncio.sleep(policy.next_backoff_ms(attempt) / 1000.0)
        raise TransactionConflict(f"transaction aborted after {policy.max_attempts} attempts")

    async def list_collections(self) -> List[EngineCollection]:
        names = sorted({path.split("/", 1)[0] for path in self._docs})
        return [self.collection(name) for name in names]
