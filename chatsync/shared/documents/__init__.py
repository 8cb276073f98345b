"""Document store abstraction and backends.

This package provides:
- The async ``DocumentStore`` interface and its errors
- ``InMemoryDocumentStore`` for tests and local development
- ``SqlDocumentStore`` backed by SQLAlchemy
"""

from chatsync.shared.documents.base import (
    META_KEYS,
    ChangePublisher,
    Document,
    DocumentConflictError,
    DocumentExistsError,
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    DocumentStoreError,
    RealtimeCallback,
    Unsubscribe,
    collection_channel,
    document_event,
    matches_filters,
)
from chatsync.shared.documents.memory import InMemoryDocumentStore
from chatsync.shared.documents.sql import SqlDocumentStore

__all__ = [
    # Interface
    "DocumentStore",
    "ChangePublisher",
    "Document",
    "DocumentList",
    "RealtimeCallback",
    "Unsubscribe",
    "META_KEYS",
    # Errors
    "DocumentStoreError",
    "DocumentNotFoundError",
    "DocumentExistsError",
    "DocumentConflictError",
    # Helpers
    "collection_channel",
    "document_event",
    "matches_filters",
    # Backends
    "InMemoryDocumentStore",
    "SqlDocumentStore",
]
