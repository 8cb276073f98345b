"""Pydantic schemas for Message Service."""

from typing import List, Optional

from pydantic import Field

from chatsync.shared.models import Attachment, CamelModel, Message, PinnedMessage


# ============================================================================
# Message Schemas
# ============================================================================


class MessageCreate(CamelModel):
    """Request model for sending a message."""

    text: str = ""
    channel_id: str = Field(..., min_length=1, description="Channel or conversation ID")
    scope_type: str = Field("channel", pattern="^(channel|conversation)$")
    image_ref: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    reply_to_id: Optional[str] = None
    mentions: List[str] = Field(default_factory=list)


class MessageUpdate(CamelModel):
    """Request model for editing a message."""

    text: str


class MessageResponse(CamelModel):
    message: Message


class MessageListResponse(CamelModel):
    """One page of top-level messages, oldest first."""

    items: List[Message]
    has_more: bool = False


# ============================================================================
# Thread Schemas
# ============================================================================


class ThreadReplyCreate(CamelModel):
    """Request model for replying in a thread."""

    text: str = ""
    image_ref: Optional[str] = None
    attachments: List[Attachment] = Field(default_factory=list)
    mentions: List[str] = Field(default_factory=list)


class ThreadReplyResponse(CamelModel):
    reply: Message
    thread_id: str


class ThreadRepliesResponse(CamelModel):
    """Replies of a thread, oldest first."""

    parent_message: Message
    replies: List[Message]
    total: int
    has_more: bool = False


# ============================================================================
# Pin Schemas
# ============================================================================


class PinResponse(CamelModel):
    pin: PinnedMessage


class PinListItem(CamelModel):
    pin: PinnedMessage
    message: Optional[Message] = None


class PinListResponse(CamelModel):
    items: List[PinListItem]
    total: int


# ============================================================================
# Reaction / Typing Schemas
# ============================================================================


class ReactionCreate(CamelModel):
    """Request model for adding a reaction."""

    emoji: str = Field(..., min_length=1, max_length=50, description="Emoji or reaction text")


class TypingUpdate(CamelModel):
    """Request model for announcing that the caller is typing."""

    channel_id: str = Field(..., min_length=1)
    user_name: Optional[str] = None


class SuccessResponse(CamelModel):
    success: bool = True
