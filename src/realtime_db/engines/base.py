"""
Document engine interface and the pieces every engine shares.

An engine stores JSON documents addressed by slash separated paths that
alternate collection and document segments (``users/1/orders/7``). Engines
provide reads, atomic multi-document commits, queries and a transaction
primitive with automatic retry on conflict. Handles (documents, collections,
batches) are engine agnostic and call back into the engine's storage hooks.
"""

from __future__ import annotations

import copy
import json
from abc import ABC, abstractmethod
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import (
    Any,
    Awaitable,
    Callable,
    Dict,
    List,
    Mapping,
    Optional,
    Protocol,
    Sequence,
    Tuple,
    TypeVar,
    Union,
)

from ..errors import DocumentAlreadyExists, DocumentNotFound
from ..models import OperationKind
from ..utils import auto_id, collection_path, document_path

T = TypeVar("T")

QUERY_OPERATORS = frozenset({"==", "!=", "<", "<=", ">", ">=", "in", "array-contains"})
ORDER_DIRECTIONS = frozenset({"asc", "desc"})


# ---------- value objects ----------


@dataclass(frozen=True)
class WriteResult:
    """Acknowledgement of one committed write."""

    update_time: datetime


@dataclass(frozen=True)
class DocumentSnapshot:
    """Point-in-time read of one document."""

    path: str
    exists: bool
    update_time: Optional[datetime] = None
    _data: Optional[Dict[str, Any]] = field(default=None, repr=False)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def to_dict(self) -> Optional[Dict[str, Any]]:
        """Copy of the document data, None when the document does not exist."""
        if not self.exists:
            return None
        return copy.deepcopy(self._data)

    def get(self, field_path: str, default: Any = None) -> Any:
        """Value at a dotted field path."""
        if not self.exists:
            return default
        found, value = get_field(self._data or {}, field_path)
        return copy.deepcopy(value) if found else default


@dataclass(frozen=True)
class PendingWrite:
    """One buffered write of a batch or transaction."""

    kind: OperationKind
    path: str
    data: Optional[Dict[str, Any]] = None
    merge: bool = False


@dataclass(frozen=True)
class FieldFilter:
    field_path: str
    op: str
    value: Any


@dataclass(frozen=True)
class QuerySpec:
    collection: str
    filters: Tuple[FieldFilter, ...] = ()
    orders: Tuple[Tuple[str, str], ...] = ()
    limit: Optional[int] = None


# ---------- pure document helpers ----------


def get_field(data: Mapping[str, Any], field_path: str) -> Tuple[bool, Any]:
    """Look up a dotted field path. Returns (found, value)."""
    node: Any = data
    for part in field_path.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return False, None
        node = node[part]
    return True, node


def deep_merge(base: Mapping[str, Any], overlay: Mapping[str, Any]) -> Dict[str, Any]:
    """Merge ``overlay`` into a copy of ``base``; nested mappings merge recursively."""
    out = copy.deepcopy(dict(base))
    for key, value in overlay.items():
        if isinstance(value, Mapping) and isinstance(out.get(key), Mapping):
            out[key] = deep_merge(out[key], value)
        else:
            out[key] = copy.deepcopy(value)
    return out


def apply_field_updates(data: Mapping[str, Any], updates: Mapping[str, Any]) -> Dict[str, Any]:
    """Apply ``{"a.b": value}`` style updates; intermediate maps are created."""
    out = copy.deepcopy(dict(data))
    for field_path, value in updates.items():
        parts = field_path.split(".")
        node = out
        for part in parts[:-1]:
            child = node.get(part)
            if not isinstance(child, dict):
                child = node[part] = {}
            node = child
        node[parts[-1]] = copy.deepcopy(value)
    return out


def apply_write(current: Optional[Dict[str, Any]], write: PendingWrite) -> Optional[Dict[str, Any]]:
    """New state of a document after ``write``; None means deleted."""
    if write.kind is OperationKind.CREATE:
        if current is not None:
            raise DocumentAlreadyExists(f"document already exists: {write.path}")
        return copy.deepcopy(write.data or {})
    if write.kind is OperationKind.SET:
        if write.merge and current is not None:
            return deep_merge(current, write.data or {})
        return copy.deepcopy(write.data or {})
    if write.kind is OperationKind.UPDATE:
        if current is None:
            raise DocumentNotFound(f"no document to update: {write.path}")
        return apply_field_updates(current, write.data or {})
    if write.kind is OperationKind.DELETE:
        return None
    raise ValueError(f"unsupported write kind: {write.kind}")


def target_path(target: Union[str, Any]) -> str:
    """Document path of a path string or anything exposing ``.path``."""
    raw = target if isinstance(target, str) else getattr(target, "path", None)
    if raw is None:
        raise TypeError(f"expected a document path or reference, got {type(target).__name__}")
    return document_path(raw)


def sort_key(value: Any) -> Tuple[int, Any]:
    """Total order across JSON types: null < bool < number < string < other."""
    if value is None:
        return (0, 0)
    if isinstance(value, bool):
        return (1, value)
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    return (4, json.dumps(value, sort_keys=True, default=str))


# ---------- handle protocols (what the proxy relies on) ----------


class DocumentHandle(Protocol):
    path: str

    @property
    def id(self) -> str: ...

    async def get(self) -> DocumentSnapshot: ...

    async def create(self, data: Dict[str, Any]) -> WriteResult: ...

    async def set(self, data: Dict[str, Any], merge: bool = False) -> WriteResult: ...

    async def update(self, data: Dict[str, Any]) -> WriteResult: ...

    async def delete(self) -> WriteResult: ...

    def collection(self, collection_id: str) -> "CollectionHandle": ...


class CollectionHandle(Protocol):
    path: str

    @property
    def id(self) -> str: ...

    def document(self, document_id: Optional[str] = None) -> DocumentHandle: ...

    async def add(self, data: Dict[str, Any]) -> DocumentHandle: ...

    async def get(self) -> List[DocumentSnapshot]: ...


class WriteBatchHandle(Protocol):
    def create(self, target: Any, data: Dict[str, Any]) -> Any: ...

    def set(self, target: Any, data: Dict[str, Any], merge: bool = False) -> Any: ...

    def update(self, target: Any, data: Dict[str, Any]) -> Any: ...

    def delete(self, target: Any) -> Any: ...

    async def commit(self) -> List[WriteResult]: ...


class TransactionHandle(Protocol):
    async def get(self, target: Any) -> DocumentSnapshot: ...

    def create(self, target: Any, data: Dict[str, Any]) -> None: ...

    def set(self, target: Any, data: Dict[str, Any], merge: bool = False) -> None: ...

    def update(self, target: Any, data: Dict[str, Any]) -> None: ...

    def delete(self, target: Any) -> None: ...


class DocumentEngine(Protocol):
    def collection(self, path: str) -> CollectionHandle: ...

    def document(self, path: str) -> DocumentHandle: ...

    def batch(self) -> WriteBatchHandle: ...

    async def run_transaction(self, fn: Callable[[Any], Awaitable[T]]) -> T: ...

    async def list_collections(self) -> List[CollectionHandle]: ...

    async def close(self) -> None: ...


# ---------- shared handle implementations ----------


class Query:
    """Immutable query over the direct children of one collection."""

    def __init__(self, engine: "BaseEngine", spec: QuerySpec):
        self._engine = engine
        self._spec = spec

    @property
    def spec(self) -> QuerySpec:
        return self._spec

    def where(self, field_path: str, op: str, value: Any) -> "Query":
        if op not in QUERY_OPERATORS:
            raise ValueError(f"unsupported operator {op!r}; use one of {sorted(QUERY_OPERATORS)}")
        if op == "in" and not isinstance(value, (list, tuple)):
            raise ValueError("'in' expects a list of values")
        flt = FieldFilter(field_path, op, list(value) if op == "in" else value)
        return Query(self._engine, replace(self._spec, filters=self._spec.filters + (flt,)))

    def order_by(self, field_path: str, direction: str = "asc") -> "Query":
        direction = direction.lower()
        if direction not in ORDER_DIRECTIONS:
            raise ValueError("direction must be 'asc' or 'desc'")
        orders = self._spec.orders + ((field_path, direction),)
        return Query(self._engine, replace(self._spec, orders=orders))

    def limit(self, count: int) -> "Query":
        if count < 0:
            raise ValueError("limit must be >= 0")
        return Query(self._engine, replace(self._spec, limit=count))

    async def get(self) -> List[DocumentSnapshot]:
        return await self._engine._run_query(self._spec)


class EngineCollection(Query):
    """Collection handle; also the unfiltered query over its documents."""

    def __init__(self, engine: "BaseEngine", path: str):
        self.path = collection_path(path)
        super().__init__(engine, QuerySpec(collection=self.path))

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    def document(self, document_id: Optional[str] = None) -> "EngineDocument":
        return EngineDocument(self._engine, f"{self.path}/{document_id or auto_id()}")

    async def add(self, data: Dict[str, Any]) -> "EngineDocument":
        """Create a document with a generated id and return its handle."""
        doc = self.document()
        await doc.create(data)
        return doc

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path}>"


class EngineDocument:
    """Document handle bound to an engine."""

    def __init__(self, engine: "BaseEngine", path: str):
        self._engine = engine
        self.path = document_path(path)

    @property
    def id(self) -> str:
        return self.path.rsplit("/", 1)[-1]

    @property
    def parent(self) -> EngineCollection:
        return EngineCollection(self._engine, self.path.rsplit("/", 1)[0])

    def collection(self, collection_id: str) -> EngineCollection:
        return EngineCollection(self._engine, f"{self.path}/{collection_id}")

    async def get(self) -> DocumentSnapshot:
        return await self._engine._fetch(self.path)

    async def create(self, data: Dict[str, Any]) -> WriteResult:
        return await self._write(PendingWrite(OperationKind.CREATE, self.path, dict(data)))

    async def set(self, data: Dict[str, Any], merge: bool = False) -> WriteResult:
        return await self._write(PendingWrite(OperationKind.SET, self.path, dict(data), merge))

    async def update(self, data: Dict[str, Any]) -> WriteResult:
        return await self._write(PendingWrite(OperationKind.UPDATE, self.path, dict(data)))

    async def delete(self) -> WriteResult:
        return await self._write(PendingWrite(OperationKind.DELETE, self.path))

    async def _write(self, write: PendingWrite) -> WriteResult:
        results = await self._engine._commit([write])
        return results[0]

    def __eq__(self, other: object) -> bool:
        return (
            isinstance(other, EngineDocument)
            and other._engine is self._engine
            and other.path == self.path
        )

    def __hash__(self) -> int:
        return hash((id(self._engine), self.path))

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.path}>"


class BufferedWriteBatch:
    """Native write batch: buffers writes, commits them atomically once."""

    def __init__(self, engine: "BaseEngine"):
        self._engine = engine
        self._writes: List[PendingWrite] = []
        self._committed = False

    def __len__(self) -> int:
        return len(self._writes)

    def _push(self, write: PendingWrite) -> "BufferedWriteBatch":
        if self._committed:
            raise RuntimeError("batch already committed")
        self._writes.append(write)
        return self

    def add(self, collection: str, data: Dict[str, Any]) -> "BufferedWriteBatch":
        doc = self._engine.collection(collection).document()
        return self._push(PendingWrite(OperationKind.CREATE, doc.path, dict(data)))

    def create(self, target: Any, data: Dict[str, Any]) -> "BufferedWriteBatch":
        return self._push(PendingWrite(OperationKind.CREATE, target_path(target), dict(data)))

    def set(self, target: Any, data: Dict[str, Any], merge: bool = False) -> "BufferedWriteBatch":
        return self._push(PendingWrite(OperationKind.SET, target_path(target), dict(data), merge))

    def update(self, target: Any, data: Dict[str, Any]) -> "BufferedWriteBatch":
        return self._push(PendingWrite(OperationKind.UPDATE, target_path(target), dict(data)))

    def delete(self, target: Any) -> "BufferedWriteBatch":
        return self._push(PendingWrite(OperationKind.DELETE, target_path(target)))

    async def commit(self) -> List[WriteResult]:
        if self._committed:
            raise RuntimeError("batch already committed")
        if not self._writes:
            self._committed = True
            return []
        results = await self._engine._commit(list(self._writes))
        self._committed = True
        return results


class BufferedTransaction(ABC):
    """Transaction handle: reads go to the engine, writes buffer until commit."""

    def __init__(self) -> None:
        self._writes: List[PendingWrite] = []

    @abstractmethod
    async def _read(self, path: str) -> DocumentSnapshot: ...

    async def get(self, target: Any) -> DocumentSnapshot:
        if self._writes:
            raise RuntimeError("transaction reads must happen before writes")
        return await self._read(target_path(target))

    def create(self, target: Any, data: Dict[str, Any]) -> None:
        self._writes.append(PendingWrite(OperationKind.CREATE, target_path(target), dict(data)))

    def set(self, target: Any, data: Dict[str, Any], merge: bool = False) -> None:
        self._writes.append(PendingWrite(OperationKind.SET, target_path(target), dict(data), merge))

    def update(self, target: Any, data: Dict[str, Any]) -> None:
        self._writes.append(PendingWrite(OperationKind.UPDATE, target_path(target), dict(data)))

    def delete(self, target: Any) -> None:
        self._writes.append(PendingWrite(OperationKind.DELETE, target_path(target)))

    @property
    def writes(self) -> Sequence[PendingWrite]:
        return tuple(self._writes)


class BaseEngine(ABC):
    """Navigation and batching shared by engines; storage hooks are abstract."""

    def collection(self, path: str) -> EngineCollection:
        return EngineCollection(self, path)

    def document(self, path: str) -> EngineDocument:
        return EngineDocument(self, path)

    def batch(self) -> BufferedWriteBatch:
        return BufferedWriteBatch(self)

    async def close(self) -> None:
        return None

    @abstractmethod
    async def _fetch(self, path: str) -> DocumentSnapshot: ...

    @abstractmethod
    async def _commit(self, writes: List[PendingWrite]) -> List[WriteResult]:
        """Apply all writes atomically or none of them."""

    @abstractmethod
    async def _run_query(self, spec: QuerySpec) -> List[DocumentSnapshot]: ...

    @abstractmethod
    async def run_transaction(self, fn: Callable[[Any], Awaitable[T]]) -> T: ...

    @abstractmethod
    async def list_collections(self) -> List[EngineCollection]: ...
