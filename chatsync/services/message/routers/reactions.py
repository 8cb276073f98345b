"""Reaction endpoints for Message Service."""

import logging

from fastapi import APIRouter, Depends, Query

from chatsync.shared.documents import DocumentStore
from chatsync.shared.errors import NotFoundError, ValidationError
from chatsync.shared.models import Message

from ..config import Settings
from ..dependencies import CurrentUser, get_current_user, get_settings, get_store, security
from ..schemas.messages import MessageResponse, ReactionCreate
from ..services.threads import update_with_retry

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/messages/{message_id}/reactions",
    response_model=MessageResponse,
    dependencies=[Depends(security)],
)
async def add_reaction(
    message_id: str,
    reaction_data: ReactionCreate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Add a reaction to a message.

    Requires:
    - Message must exist
    - User can only add one reaction of each emoji per message
    """
    emoji = reaction_data.emoji

    def add(message: dict) -> dict:
        reactions = {k: list(v) for k, v in (message.get("reactions") or {}).items()}
        users = reactions.setdefault(emoji, [])
        if current_user.id in users:
            raise ValidationError("You already reacted with this emoji")
        users.append(current_user.id)
        return {"reactions": reactions}

    document = await update_with_retry(
        store,
        settings.messages_collection,
        message_id,
        add,
        attempts=settings.thread_retry_attempts,
        base_delay=settings.thread_retry_base_delay,
    )

    logger.info(f"Reaction {emoji} added to {message_id} by {current_user.id}")
    return MessageResponse(message=Message.model_validate(document))


@router.delete(
    "/messages/{message_id}/reactions",
    response_model=MessageResponse,
    dependencies=[Depends(security)],
)
async def remove_reaction(
    message_id: str,
    emoji: str = Query(..., min_length=1),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Remove the caller's reaction from a message."""

    def remove(message: dict) -> dict:
        reactions = {k: list(v) for k, v in (message.get("reactions") or {}).items()}
        if emoji not in reactions:
            raise NotFoundError("Reaction not found")
        if current_user.id not in reactions[emoji]:
            raise ValidationError("You have not reacted with this emoji")
        reactions[emoji].remove(current_user.id)
        if not reactions[emoji]:
            del reactions[emoji]
        return {"reactions": reactions}

    document = await update_with_retry(
        store,
        settings.messages_collection,
        message_id,
        remove,
        attempts=settings.thread_retry_attempts,
        base_delay=settings.thread_retry_base_delay,
    )

    logger.info(f"Reaction {emoji} removed from {message_id} by {current_user.id}")
    return MessageResponse(message=Message.model_validate(document))
