"""Message endpoints for Message Service."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatsync.shared.documents import DocumentNotFoundError, DocumentStore
from chatsync.shared.errors import (
    ForbiddenError,
    MessageTooLongError,
    NotFoundError,
    ValidationError,
)
from chatsync.shared.models import Message, utcnow_iso

from ..config import Settings
from ..dependencies import (
    CurrentUser,
    get_current_user,
    get_message_rate_limiter,
    get_page_limit,
    get_settings,
    get_store,
    security,
)
from ..schemas.messages import (
    MessageCreate,
    MessageListResponse,
    MessageResponse,
    MessageUpdate,
)
from ..services.rate_limiter import RateLimiter

logger = logging.getLogger(__name__)
router = APIRouter()


# ============================================================================
# Helper Functions
# ============================================================================


def validate_text(text: str, settings: Settings, *, has_content: bool = False) -> None:
    """Reject over-long text, and empty text unless something else is attached."""
    if len(text) > settings.max_message_length:
        raise MessageTooLongError(settings.max_message_length)
    if not text.strip() and not has_content:
        raise ValidationError("text, imageRef, or attachments are required")


async def get_owned_message(
    store: DocumentStore,
    settings: Settings,
    message_id: str,
    user_id: str,
    action: str,
) -> dict:
    """Load a message the caller authored, or raise 404/403."""
    try:
        document = await store.get_document(settings.messages_collection, message_id)
    except DocumentNotFoundError as e:
        raise NotFoundError("Message not found") from e

    if document.get("authorId") != user_id:
        raise ForbiddenError(f"You can only {action} your own messages")
    return document


# ============================================================================
# Endpoints
# ============================================================================


@router.get(
    "/messages",
    response_model=MessageListResponse,
    dependencies=[Depends(security)],
)
async def list_messages(
    channel_id: str = Query(..., alias="channelId", min_length=1),
    cursor: Optional[str] = Query(None, description="Oldest message ID already loaded"),
    limit: int = Depends(get_page_limit),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get the newest top-level messages older than ``cursor``.

    Items are returned oldest first. Thread replies are never included.
    """
    try:
        page = await store.list_documents(
            settings.messages_collection,
            filters={"scopeId": channel_id, "threadId": None},
            order="desc",
            cursor_after=cursor,
            limit=limit + 1,
        )
    except DocumentNotFoundError as e:
        raise NotFoundError("Cursor message not found") from e

    has_more = len(page.documents) > limit
    documents = list(reversed(page.documents[:limit]))

    logger.debug(f"Retrieved {len(documents)} messages for {channel_id} (cursor={cursor})")

    return MessageListResponse(
        items=[Message.model_validate(doc) for doc in documents],
        has_more=has_more,
    )


@router.post(
    "/messages",
    response_model=MessageResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(security)],
)
async def send_message(
    message_data: MessageCreate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    rate_limiter: RateLimiter = Depends(get_message_rate_limiter),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Send a message to a channel or conversation.

    Requires:
    - Non-empty text, an image or at least one attachment
    - Text no longer than the configured maximum
    - Caller under the per-user message rate limit
    """
    validate_text(
        message_data.text,
        settings,
        has_content=bool(message_data.image_ref or message_data.attachments),
    )
    rate_limiter.enforce(current_user.id)

    data = {
        "scopeId": message_data.channel_id,
        "scopeType": message_data.scope_type,
        "authorId": current_user.id,
        "authorName": current_user.name,
        "text": message_data.text,
    }
    if message_data.image_ref:
        data["imageRef"] = message_data.image_ref
    if message_data.attachments:
        data["attachments"] = [a.to_wire() for a in message_data.attachments]
    if message_data.reply_to_id:
        data["replyToId"] = message_data.reply_to_id
    if message_data.mentions:
        data["mentions"] = message_data.mentions

    document = await store.create_document(settings.messages_collection, data)

    logger.info(
        f"Message {document['id']} sent to {message_data.channel_id} by {current_user.id}"
    )

    return MessageResponse(message=Message.model_validate(document))


@router.patch("/messages", dependencies=[Depends(security)])
async def edit_message(
    update_data: MessageUpdate,
    message_id: str = Query(..., alias="id", min_length=1),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Edit a message.

    Requires:
    - User must be the message author
    """
    validate_text(update_data.text, settings)

    document = await get_owned_message(store, settings, message_id, current_user.id, "edit")
    if document.get("removedAt"):
        raise ValidationError("Removed messages cannot be edited")

    await store.update_document(
        settings.messages_collection,
        message_id,
        {"text": update_data.text, "editedAt": utcnow_iso()},
    )

    logger.info(f"Message {message_id} edited by {current_user.id}")
    return {}


@router.delete("/messages", dependencies=[Depends(security)])
async def remove_message(
    message_id: str = Query(..., alias="id", min_length=1),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Remove a message (soft delete).

    The document stays so thread roots and pins keep resolving; clients
    render it as removed. Removing twice is a no-op.

    Requires:
    - User must be the message author
    """
    document = await get_owned_message(
        store, settings, message_id, current_user.id, "delete"
    )
    if document.get("removedAt"):
        return {}

    await store.update_document(
        settings.messages_collection,
        message_id,
        {"removedAt": utcnow_iso(), "removedBy": current_user.id},
    )

    logger.info(f"Message {message_id} removed by {current_user.id}")
    return {}
