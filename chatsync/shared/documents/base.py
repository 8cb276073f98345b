"""Document store abstraction.

The backing store is a plain document database: get/list/create/update/delete
plus a push subscription. It offers no multi-document transactions and no
atomic increment. The only concurrency primitive is an optional revision
check on a single-document update.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Mapping, Optional

Document = Dict[str, Any]
RealtimeCallback = Callable[[Dict[str, Any]], None]
Unsubscribe = Callable[[], None]

# Metadata keys every stored document carries
META_KEYS = ("id", "createdAt", "updatedAt", "revision")


class DocumentStoreError(Exception):
    """Base class for document store failures."""


class DocumentNotFoundError(DocumentStoreError):
    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {document_id} not found in {collection}")
        self.collection = collection
        self.document_id = document_id


class DocumentExistsError(DocumentStoreError):
    def __init__(self, collection: str, document_id: str):
        super().__init__(f"Document {document_id} already exists in {collection}")
        self.collection = collection
        self.document_id = document_id


class DocumentConflictError(DocumentStoreError):
    """Raised when an update's expected revision is stale."""

    def __init__(self, collection: str, document_id: str, expected: int, actual: int):
        super().__init__(
            f"Revision conflict on {collection}/{document_id}: "
            f"expected {expected}, found {actual}"
        )
        self.collection = collection
        self.document_id = document_id
        self.expected = expected
        self.actual = actual


@dataclass
class DocumentList:
    documents: List[Document] = field(default_factory=list)
    total: int = 0


def collection_channel(database_id: str, collection_id: str) -> str:
    """Realtime channel name for every document in a collection."""
    return f"databases.{database_id}.collections.{collection_id}.documents"


def document_event(
    database_id: str,
    collection_id: str,
    document: Document,
    action: str,
) -> Dict[str, Any]:
    """Build the push payload for a document change."""
    channel = collection_channel(database_id, collection_id)
    return {
        "channel": channel,
        "payload": document,
        "eventKinds": [
            f"{channel}.{document['id']}.{action}",
            f"{channel}.*.{action}",
        ],
    }


def matches_filters(document: Mapping[str, Any], filters: Optional[Mapping[str, Any]]) -> bool:
    """Equality filters; a ``None`` value matches absent or null fields."""
    if not filters:
        return True
    for key, expected in filters.items():
        if document.get(key) != expected:
            return False
    return True


class ChangePublisher(ABC):
    """Sink for document change events (e.g. Kafka)."""

    @abstractmethod
    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        ...


class DocumentStore(ABC):
    """Async CRUD interface over named collections."""

    database_id: str

    @abstractmethod
    async def get_document(self, collection: str, document_id: str) -> Document:
        ...

    @abstractmethod
    async def list_documents(
        self,
        collection: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order: str = "asc",
        cursor_after: Optional[str] = None,
        limit: int = 25,
    ) -> DocumentList:
        ...

    @abstractmethod
    async def create_document(
        self,
        collection: str,
        data: Mapping[str, Any],
        document_id: Optional[str] = None,
    ) -> Document:
        ...

    @abstractmethod
    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: Mapping[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        ...

    @abstractmethod
    async def delete_document(self, collection: str, document_id: str) -> None:
        ...

    async def close(self) -> None:
        """Release backend resources."""
