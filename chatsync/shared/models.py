"""Pydantic domain models shared by the message service and the client core.

Wire format is camelCase (``scopeId``, ``createdAt``, ...) so documents read
from the store and payloads pushed over the realtime channel validate
directly into these models.
"""

from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel


def utcnow_iso() -> str:
    """Current UTC time as an ISO-8601 string."""
    return datetime.now(timezone.utc).isoformat(timespec="microseconds")


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp, treating naive values as UTC."""
    parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


class CamelModel(BaseModel):
    """Base model with camelCase aliases."""

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        extra="ignore",
    )

    def to_wire(self) -> dict:
        return self.model_dump(by_alias=True, mode="json")


# ============================================================================
# Messages
# ============================================================================


class Attachment(CamelModel):
    """File attached to a message."""

    file_id: str
    file_name: str
    file_size: int = 0
    file_type: str = "application/octet-stream"
    file_url: str
    thumbnail_url: Optional[str] = None


class ReplyContext(CamelModel):
    """Quoted parent shown above a reply (enrichment only)."""

    text: str
    author_name: Optional[str] = None
    display_name: Optional[str] = None


class Message(CamelModel):
    """Message in a channel or a direct-message conversation."""

    id: str
    scope_id: str
    scope_type: str = "channel"
    author_id: str
    author_name: Optional[str] = None
    text: str = ""
    created_at: str
    updated_at: Optional[str] = None
    edited_at: Optional[str] = None
    removed_at: Optional[str] = None
    removed_by: Optional[str] = None
    image_ref: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    reply_to_id: Optional[str] = None
    thread_id: Optional[str] = None
    thread_message_count: int = 0
    thread_participants: List[str] = Field(default_factory=list)
    last_thread_reply_at: Optional[str] = None
    reactions: Dict[str, List[str]] = Field(default_factory=dict)
    mentions: List[str] = Field(default_factory=list)

    # Enrichment
    display_name: Optional[str] = None
    avatar_url: Optional[str] = None
    reply_to: Optional[ReplyContext] = None

    @property
    def sort_key(self) -> Tuple[str, str]:
        # Identical timestamps are ordered by id so every client converges
        return (self.created_at, self.id)

    @property
    def is_thread_reply(self) -> bool:
        return self.thread_id is not None

    @property
    def is_removed(self) -> bool:
        return self.removed_at is not None

    def merged(self, other: "Message") -> "Message":
        """Copy of this message with the fields explicitly set on ``other``."""
        updates = {name: getattr(other, name) for name in other.model_fields_set}
        return self.model_copy(update=updates)


# ============================================================================
# Pins
# ============================================================================


class PinnedMessage(CamelModel):
    """A pin of one message in one context (channel or conversation)."""

    id: str
    context_type: str
    context_id: str
    message_id: str
    pinned_by: str
    pinned_at: str


# ============================================================================
# Typing
# ============================================================================


class TypingIndicator(CamelModel):
    """Ephemeral signal that a user is composing in a scope."""

    user_id: str
    user_name: Optional[str] = None
    scope_id: str
    updated_at: str
