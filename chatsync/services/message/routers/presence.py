"""Typing indicator (presence) endpoints for Message Service."""

import hashlib
import logging

from fastapi import APIRouter, Depends, Query

from chatsync.shared.documents import (
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
)

from ..config import Settings
from ..dependencies import CurrentUser, get_current_user, get_settings, get_store, security
from ..schemas.messages import SuccessResponse, TypingUpdate

logger = logging.getLogger(__name__)
router = APIRouter()


def typing_document_id(user_id: str, scope_id: str) -> str:
    """Deterministic document ID for one user's indicator in one scope."""
    digest = hashlib.sha1(f"{user_id}_{scope_id}".encode("utf-8")).hexdigest()
    return f"typ_{digest[:32]}"


@router.post(
    "/typing",
    response_model=SuccessResponse,
    dependencies=[Depends(security)],
)
async def start_typing(
    typing_data: TypingUpdate,
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Create or refresh the caller's typing indicator in a scope."""
    document_id = typing_document_id(current_user.id, typing_data.channel_id)
    payload = {
        "userId": current_user.id,
        "userName": typing_data.user_name or current_user.name,
        "scopeId": typing_data.channel_id,
    }

    try:
        await store.update_document(settings.typing_collection, document_id, payload)
    except DocumentNotFoundError:
        try:
            await store.create_document(settings.typing_collection, payload, document_id)
        except DocumentExistsError:
            # Created by a concurrent request from the same user
            await store.update_document(settings.typing_collection, document_id, payload)

    return SuccessResponse()


@router.delete(
    "/typing",
    response_model=SuccessResponse,
    dependencies=[Depends(security)],
)
async def stop_typing(
    channel_id: str = Query(..., alias="channelId", min_length=1),
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Delete the caller's typing indicator in a scope."""
    try:
        await store.delete_document(
            settings.typing_collection, typing_document_id(current_user.id, channel_id)
        )
    except DocumentNotFoundError:
        logger.debug(f"No typing indicator for {current_user.id} in {channel_id}")

    return SuccessResponse()
