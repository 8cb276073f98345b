"""In-process document store.

Used by the test suites and for local development without Postgres or Kafka.
It is also a realtime source: every write is fanned out synchronously to the
callbacks subscribed to the collection's channel.
"""

import asyncio
import copy
import logging
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Mapping, Optional

from .base import (
    META_KEYS,
    Document,
    DocumentConflictError,
    DocumentExistsError,
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    RealtimeCallback,
    Unsubscribe,
    collection_channel,
    document_event,
    matches_filters,
)

logger = logging.getLogger(__name__)


class InMemoryDocumentStore(DocumentStore):
    """Dict-backed store with push subscriptions."""

    def __init__(self, database_id: str = "chat"):
        self.database_id = database_id
        self._collections: Dict[str, Dict[str, Document]] = {}
        self._subscribers: Dict[str, List[RealtimeCallback]] = {}
        self._last_timestamp: Optional[datetime] = None

    # ------------------------------------------------------------------
    # Realtime
    # ------------------------------------------------------------------

    async def start(self) -> None:
        return None

    async def stop(self) -> None:
        self._subscribers.clear()

    def subscribe(self, channel: str, callback: RealtimeCallback) -> Unsubscribe:
        self._subscribers.setdefault(channel, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self._subscribers.get(channel)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self._subscribers[channel]

        return unsubscribe

    def _emit(self, collection: str, document: Document, action: str) -> None:
        event = document_event(self.database_id, collection, copy.deepcopy(document), action)
        channel = collection_channel(self.database_id, collection)
        for callback in list(self._subscribers.get(channel, [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Realtime callback failed on {channel}: {e}", exc_info=True)

    # ------------------------------------------------------------------
    # CRUD
    # ------------------------------------------------------------------

    def _timestamp(self) -> str:
        # Strictly increasing so creation order is also sort order
        now = datetime.now(timezone.utc)
        if self._last_timestamp is not None and now <= self._last_timestamp:
            now = self._last_timestamp + timedelta(microseconds=1)
        self._last_timestamp = now
        return now.isoformat(timespec="microseconds")

    def _collection(self, collection: str) -> Dict[str, Document]:
        return self._collections.setdefault(collection, {})

    async def get_document(self, collection: str, document_id: str) -> Document:
        await asyncio.sleep(0)
        document = self._collection(collection).get(document_id)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        return copy.deepcopy(document)

    async def list_documents(
        self,
        collection: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order: str = "asc",
        cursor_after: Optional[str] = None,
        limit: int = 25,
    ) -> DocumentList:
        await asyncio.sleep(0)
        matching = [
            doc for doc in self._collection(collection).values() if matches_filters(doc, filters)
        ]
        matching.sort(
            key=lambda doc: (doc["createdAt"], doc["id"]),
            reverse=(order == "desc"),
        )
        total = len(matching)

        if cursor_after is not None:
            ids = [doc["id"] for doc in matching]
            if cursor_after not in ids:
                # Cursor outside the filtered set: fall back to its position by time
                cursor = self._collection(collection).get(cursor_after)
                if cursor is None:
                    raise DocumentNotFoundError(collection, cursor_after)
                key = (cursor["createdAt"], cursor["id"])
                if order == "desc":
                    matching = [d for d in matching if (d["createdAt"], d["id"]) < key]
                else:
                    matching = [d for d in matching if (d["createdAt"], d["id"]) > key]
            else:
                matching = matching[ids.index(cursor_after) + 1:]

        return DocumentList(
            documents=[copy.deepcopy(doc) for doc in matching[:limit]],
            total=total,
        )

    async def create_document(
        self,
        collection: str,
        data: Mapping[str, Any],
        document_id: Optional[str] = None,
    ) -> Document:
        await asyncio.sleep(0)
        documents = self._collection(collection)
        document_id = document_id or uuid.uuid4().hex
        if document_id in documents:
            raise DocumentExistsError(collection, document_id)

        now = self._timestamp()
        document = {k: v for k, v in copy.deepcopy(dict(data)).items() if k not in META_KEYS}
        document.update(id=document_id, createdAt=now, updatedAt=now, revision=1)
        documents[document_id] = document

        self._emit(collection, document, "create")
        return copy.deepcopy(document)

    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: Mapping[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        await asyncio.sleep(0)
        documents = self._collection(collection)
        document = documents.get(document_id)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        if expected_revision is not None and document["revision"] != expected_revision:
            raise DocumentConflictError(
                collection, document_id, expected_revision, document["revision"]
            )

        for key, value in copy.deepcopy(dict(data)).items():
            if key not in META_KEYS:
                document[key] = value
        document["revision"] += 1
        document["updatedAt"] = self._timestamp()

        self._emit(collection, document, "update")
        return copy.deepcopy(document)

    async def delete_document(self, collection: str, document_id: str) -> None:
        await asyncio.sleep(0)
        document = self._collection(collection).pop(document_id, None)
        if document is None:
            raise DocumentNotFoundError(collection, document_id)
        self._emit(collection, document, "delete")
