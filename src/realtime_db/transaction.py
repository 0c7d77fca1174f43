from __future__ import annotations

from typing import Any, Awaitable, Callable, Dict, Generic, Mapping, TypeVar, Union

from .engines.base import DocumentSnapshot, TransactionHandle
from .models import WriteOptions
from .references import DocumentReference

T = TypeVar("T")


class Transaction(Generic[T]):
    """
    One attempt of an engine transaction, seen through wrapped references.

    Snapshot reads and retry on conflicting writes belong to the engine; this
    unit only restricts the surface and runs the caller's function once per
    attempt, returning its result or letting its error through untouched.
    """

    def __init__(
        self,
        transaction: TransactionHandle,
        update_fn: Callable[["Transaction[T]"], Awaitable[T]],
    ):
        self._transaction = transaction
        self._update_fn = update_fn

    async def execute(self) -> T:
        return await self._update_fn(self)

    async def get(self, doc_ref: DocumentReference) -> DocumentSnapshot:
        return await self._transaction.get(doc_ref.ref)

    def update(self, doc_ref: DocumentReference, data: Dict[str, Any]) -> None:
        self._transaction.update(doc_ref.ref, data)

    def delete(self, doc_ref: DocumentReference) -> None:
        self._transaction.delete(doc_ref.ref)

    def set(
        self,
        doc_ref: DocumentReference,
        data: Dict[str, Any],
        options: Union[WriteOptions, Mapping[str, Any], None] = None,
    ) -> None:
        opts = WriteOptions.coerce(options)
        self._transaction.set(doc_ref.ref, data, merge=bool(opts and opts.merge))

    @property
    def ref(self) -> TransactionHandle:
        """The engine transaction object."""
        return self._transaction
