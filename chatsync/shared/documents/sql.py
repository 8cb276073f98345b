"""SQLAlchemy-backed document store.

All collections share the ``documents`` table. Listing filters on JSON
fields of the document body, ordered by ``(created_at, id)``. Writes are
published to a ``ChangePublisher`` after commit, which is how realtime
subscribers (through Kafka) learn about them.
"""

import logging
import uuid
from datetime import datetime, timezone
from typing import Any, Dict, Mapping, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from chatsync.shared.database import DocumentRecord, session_scope

from .base import (
    META_KEYS,
    ChangePublisher,
    Document,
    DocumentConflictError,
    DocumentExistsError,
    DocumentList,
    DocumentNotFoundError,
    DocumentStore,
    collection_channel,
    document_event,
)

logger = logging.getLogger(__name__)

# Unconditional updates re-read and retry this many times when a concurrent
# writer bumps the revision between read and write
UNCONDITIONAL_UPDATE_ATTEMPTS = 5


def _iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _to_document(record: DocumentRecord) -> Document:
    document = dict(record.data or {})
    document.update(
        id=record.id,
        createdAt=_iso(record.created_at),
        updatedAt=_iso(record.updated_at),
        revision=record.revision,
    )
    return document


def _filter_clause(key: str, expected: Any):
    field = DocumentRecord.data[key]
    if expected is None:
        return field.as_string().is_(None)
    if isinstance(expected, bool):
        return field.as_boolean() == expected
    if isinstance(expected, int):
        return field.as_integer() == expected
    return field.as_string() == str(expected)


class SqlDocumentStore(DocumentStore):
    """Document store over the ``documents`` table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        database_id: str = "chat",
        publisher: Optional[ChangePublisher] = None,
    ):
        self.session_factory = session_factory
        self.database_id = database_id
        self.publisher = publisher

    async def _publish(self, collection: str, document: Document, action: str) -> None:
        if self.publisher is None:
            return
        channel = collection_channel(self.database_id, collection)
        await self.publisher.publish(
            channel, document_event(self.database_id, collection, document, action)
        )

    async def _get_record(
        self, session: AsyncSession, collection: str, document_id: str
    ) -> DocumentRecord:
        stmt = select(DocumentRecord).where(
            DocumentRecord.collection == collection,
            DocumentRecord.id == document_id,
        )
        result = await session.execute(stmt)
        record = result.scalar_one_or_none()
        if record is None:
            raise DocumentNotFoundError(collection, document_id)
        return record

    async def get_document(self, collection: str, document_id: str) -> Document:
        async with session_scope(self.session_factory) as session:
            record = await self._get_record(session, collection, document_id)
            return _to_document(record)

    async def list_documents(
        self,
        collection: str,
        *,
        filters: Optional[Mapping[str, Any]] = None,
        order: str = "asc",
        cursor_after: Optional[str] = None,
        limit: int = 25,
    ) -> DocumentList:
        conditions = [DocumentRecord.collection == collection]
        for key, expected in (filters or {}).items():
            conditions.append(_filter_clause(key, expected))

        async with session_scope(self.session_factory) as session:
            count_stmt = (
                select(func.count()).select_from(DocumentRecord).where(and_(*conditions))
            )
            total = (await session.execute(count_stmt)).scalar() or 0

            stmt = select(DocumentRecord).where(and_(*conditions))

            if cursor_after is not None:
                cursor = await self._get_record(session, collection, cursor_after)
                if order == "desc":
                    stmt = stmt.where(
                        or_(
                            DocumentRecord.created_at < cursor.created_at,
                            and_(
                                DocumentRecord.created_at == cursor.created_at,
                                DocumentRecord.id < cursor.id,
                            ),
                        )
                    )
                else:
                    stmt = stmt.where(
                        or_(
                            DocumentRecord.created_at > cursor.created_at,
                            and_(
                                DocumentRecord.created_at == cursor.created_at,
                                DocumentRecord.id > cursor.id,
                            ),
                        )
                    )

            if order == "desc":
                stmt = stmt.order_by(DocumentRecord.created_at.desc(), DocumentRecord.id.desc())
            else:
                stmt = stmt.order_by(DocumentRecord.created_at, DocumentRecord.id)

            result = await session.execute(stmt.limit(limit))
            documents = [_to_document(record) for record in result.scalars().all()]

        return DocumentList(documents=documents, total=total)

    async def create_document(
        self,
        collection: str,
        data: Mapping[str, Any],
        document_id: Optional[str] = None,
    ) -> Document:
        document_id = document_id or uuid.uuid4().hex
        now = datetime.now(timezone.utc)
        record = DocumentRecord(
            collection=collection,
            id=document_id,
            data={k: v for k, v in data.items() if k not in META_KEYS},
            revision=1,
            created_at=now,
            updated_at=now,
        )

        try:
            async with session_scope(self.session_factory) as session:
                session.add(record)
        except IntegrityError as e:
            raise DocumentExistsError(collection, document_id) from e

        document = _to_document(record)
        logger.debug(f"Created {collection}/{document_id}")
        await self._publish(collection, document, "create")
        return document

    async def update_document(
        self,
        collection: str,
        document_id: str,
        data: Mapping[str, Any],
        expected_revision: Optional[int] = None,
    ) -> Document:
        changes = {k: v for k, v in data.items() if k not in META_KEYS}

        for _ in range(UNCONDITIONAL_UPDATE_ATTEMPTS):
            async with session_scope(self.session_factory) as session:
                record = await self._get_record(session, collection, document_id)
                current = record.revision
                if expected_revision is not None and current != expected_revision:
                    raise DocumentConflictError(
                        collection, document_id, expected_revision, current
                    )

                merged: Dict[str, Any] = {**(record.data or {}), **changes}
                now = datetime.now(timezone.utc)
                stmt = (
                    update(DocumentRecord)
                    .where(
                        DocumentRecord.collection == collection,
                        DocumentRecord.id == document_id,
                        DocumentRecord.revision == current,
                    )
                    .values(data=merged, revision=current + 1, updated_at=now)
                )
                result = await session.execute(stmt)

            if result.rowcount == 1:
                document = dict(merged)
                document.update(
                    id=document_id,
                    createdAt=_iso(record.created_at),
                    updatedAt=_iso(now),
                    revision=current + 1,
                )
                await self._publish(collection, document, "update")
                return document

            if expected_revision is not None:
                raise DocumentConflictError(
                    collection, document_id, expected_revision, current + 1
                )
            logger.debug(f"Concurrent write on {collection}/{document_id}, re-reading")

        raise DocumentConflictError(collection, document_id, current, current + 1)

    async def delete_document(self, collection: str, document_id: str) -> None:
        async with session_scope(self.session_factory) as session:
            record = await self._get_record(session, collection, document_id)
            document = _to_document(record)
            await session.execute(
                delete(DocumentRecord).where(
                    DocumentRecord.collection == collection,
                    DocumentRecord.id == document_id,
                )
            )
        await self._publish(collection, document, "delete")
