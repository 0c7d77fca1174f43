"""
Document and collection reference wrappers.

Thin pass-through decorators over engine handles: every I/O call logs one
trace line and delegates to the handle, returning its result unchanged.
Navigation (``doc()``, ``collection()``) returns new wrappers. No admission
logic lives here.
"""

from __future__ import annotations

from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from loguru import logger

from .engines.base import CollectionHandle, DocumentHandle, DocumentSnapshot, Query, WriteResult
from .models import WriteOptions

_TAG = "[RealtimeDB]"


class DocumentReference:
    def __init__(self, doc_ref: DocumentHandle):
        self._doc_ref = doc_ref

    @property
    def path(self) -> str:
        return self._doc_ref.path

    @property
    def id(self) -> str:
        return self._doc_ref.id

    @property
    def ref(self) -> DocumentHandle:
        """The wrapped engine handle."""
        return self._doc_ref

    async def get(self) -> DocumentSnapshot:
        logger.debug(f"{_TAG} Reading document: {self.path}")
        return await self._doc_ref.get()

    async def create(self, data: Dict[str, Any]) -> WriteResult:
        logger.debug(f"{_TAG} Creating document: {self.path}")
        return await self._doc_ref.create(data)

    async def set(
        self,
        data: Dict[str, Any],
        options: Union[WriteOptions, Mapping[str, Any], None] = None,
    ) -> WriteResult:
        logger.debug(f"{_TAG} Setting document: {self.path}")
        opts = WriteOptions.coerce(options)
        if opts is not None:
            return await self._doc_ref.set(data, merge=opts.merge)
        return await self._doc_ref.set(data)

    async def update(self, data: Dict[str, Any]) -> WriteResult:
        logger.debug(f"{_TAG} Updating document: {self.path}")
        return await self._doc_ref.update(data)

    async def delete(self) -> WriteResult:
        logger.debug(f"{_TAG} Deleting document: {self.path}")
        return await self._doc_ref.delete()

    def collection(self, collection_path: str) -> "CollectionReference":
        return CollectionReference(self._doc_ref.collection(collection_path))

    def __eq__(self, other: object) -> bool:
        return isinstance(other, DocumentReference) and other.ref == self.ref

    def __hash__(self) -> int:
        return hash(self.path)

    def __repr__(self) -> str:
        return f"<DocumentReference {self.path}>"


class CollectionReference:
    def __init__(self, collection_ref: CollectionHandle):
        self._collection_ref = collection_ref

    @property
    def path(self) -> str:
        return self._collection_ref.path

    @property
    def id(self) -> str:
        return self._collection_ref.id

    @property
    def ref(self) -> CollectionHandle:
        return self._collection_ref

    def doc(self, document_path: Optional[str] = None) -> DocumentReference:
        if document_path:
            return DocumentReference(self._collection_ref.document(document_path))
        return DocumentReference(self._collection_ref.document())

    async def get(self) -> List[DocumentSnapshot]:
        logger.debug(f"{_TAG} Reading collection: {self.path}")
        return await self._collection_ref.get()

    async def add(self, data: Dict[str, Any]) -> DocumentHandle:
        logger.debug(f"{_TAG} Adding document to collection: {self.path}")
        return await self._collection_ref.add(data)

    async def query(self, query_fn: Callable[[Query], Query]) -> List[DocumentSnapshot]:
        logger.debug(f"{_TAG} Querying collection: {self.path}")
        query = query_fn(self._collection_ref)
        return await query.get()

    def __repr__(self) -> str:
        return f"<CollectionReference {self.path}>"
