"""In-process document store.

Documents are deep-copied on the way in and out so callers never share state
with the store. Writes are serialized through one asyncio lock, which makes
``update_if`` a true compare-and-set within the event loop. Changes are
published while the lock is held, so subscribers see them in commit order;
delivery itself happens in each subscriber's own task.
"""
import asyncio
import copy
import logging
import uuid
from typing import Dict, List, Optional

from .lib.document_store import (
    DocumentStore, DocumentChange, Document, Where, matches,
    INSERT, UPDATE, DELETE
)

logger = logging.getLogger(__name__)


class MemoryDocumentStore(DocumentStore):
    """Document store kept in a dict of collections."""

    def __init__(self) -> None:
        super().__init__()
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._lock = asyncio.Lock()

    def _collection(self, name: str) -> Dict[str, Document]:
        return self._collections.setdefault(name, {})

    async def put(self, collection: str, doc_id: Optional[str], doc: Document) -> Document:
        doc_id = doc_id or str(uuid.uuid4())
        stored = copy.deepcopy(doc)
        stored['id'] = doc_id

        async with self._lock:
            docs = self._collection(collection)
            previous = docs.get(doc_id)
            docs[doc_id] = stored
            self._publish(DocumentChange(
                op=UPDATE if previous else INSERT,
                collection=collection,
                doc_id=doc_id,
                doc=copy.deepcopy(stored),
                previous=copy.deepcopy(previous)
            ))
        return copy.deepcopy(stored)

    async def get(self, collection: str, doc_id: str) -> Optional[Document]:
        doc = self._collection(collection).get(doc_id)
        return copy.deepcopy(doc) if doc is not None else None

    async def query(self, collection: str, where: Where = None) -> List[Document]:
        return [
            copy.deepcopy(doc)
            for doc in self._collection(collection).values()
            if matches(doc, where)
        ]

    async def update(self, collection: str, doc_id: str, changes: Document) -> Optional[Document]:
        return await self.update_if(collection, doc_id, changes, {})

    async def update_if(
        self,
        collection: str,
        doc_id: str,
        changes: Document,
        expected: Document
    ) -> Optional[Document]:
        async with self._lock:
            docs = self._collection(collection)
            current = docs.get(doc_id)
            if current is None:
                return None
            if not matches(current, expected):
                logger.debug(
                    f"Precondition failed for {collection}/{doc_id}: "
                    f"expected {expected}"
                )
                return None
            previous = copy.deepcopy(current)
            current.update(copy.deepcopy(changes))
            current['id'] = doc_id
            updated = copy.deepcopy(current)
            self._publish(DocumentChange(
                op=UPDATE,
                collection=collection,
                doc_id=doc_id,
                doc=copy.deepcopy(updated),
                previous=previous
            ))
        return updated

    async def delete(self, collection: str, doc_id: str) -> Optional[Document]:
        async with self._lock:
            removed = self._collection(collection).pop(doc_id, None)
            if removed is not None:
                self._publish(DocumentChange(
                    op=DELETE,
                    collection=collection,
                    doc_id=doc_id,
                    doc=copy.deepcopy(removed)
                ))
        return removed

    async def close(self) -> None:
        await super().close()
        self._collections.clear()
