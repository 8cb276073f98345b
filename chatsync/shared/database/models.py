"""SQLAlchemy models for chatsync.

Every collection (messages, pinned messages, typing indicators) lives in the
single ``documents`` table; the document body is a JSON column and the
revision column backs the conditional update.
"""

from typing import Any, Dict

from sqlalchemy import JSON, Index, Integer, String
from sqlalchemy.dialects.postgresql import JSONB
from sqlalchemy.orm import Mapped, mapped_column

from chatsync.shared.database.base import Base, TimestampMixin


class DocumentRecord(Base, TimestampMixin):
    """One document of one collection."""

    __tablename__ = "documents"

    collection: Mapped[str] = mapped_column(String(64), primary_key=True)
    id: Mapped[str] = mapped_column(String(64), primary_key=True)
    data: Mapped[Dict[str, Any]] = mapped_column(
        JSON().with_variant(JSONB(), "postgresql"),
        nullable=False,
        default=dict,
    )
    revision: Mapped[int] = mapped_column(Integer, nullable=False, default=1)

    __table_args__ = (
        Index("ix_documents_collection_created_at_id", "collection", "created_at", "id"),
    )

    def __repr__(self) -> str:
        return f"<DocumentRecord {self.collection}/{self.id} rev={self.revision}>"
