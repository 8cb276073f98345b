"""Pin endpoints for Message Service."""

import logging

from fastapi import APIRouter, Depends, Query

from chatsync.shared.models import Message, PinnedMessage

from ..dependencies import CurrentUser, get_current_user, get_pin_service, security
from ..schemas.messages import PinListItem, PinListResponse, PinResponse, SuccessResponse
from ..services.pins import PinService

logger = logging.getLogger(__name__)
router = APIRouter()


@router.post(
    "/messages/{message_id}/pin",
    response_model=PinResponse,
    dependencies=[Depends(security)],
)
async def pin_message(
    message_id: str,
    pin_service: PinService = Depends(get_pin_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Pin a message in its channel or conversation.

    Pinning an already pinned message returns the existing pin. Answers 409
    once the context holds the maximum number of pins.
    """
    pin, _ = await pin_service.pin(message_id, current_user.id)
    return PinResponse(pin=PinnedMessage.model_validate(pin))


@router.delete(
    "/messages/{message_id}/pin",
    response_model=SuccessResponse,
    dependencies=[Depends(security)],
)
async def unpin_message(
    message_id: str,
    pin_service: PinService = Depends(get_pin_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Unpin a message. Succeeds whether or not it was pinned."""
    await pin_service.unpin(message_id)
    return SuccessResponse()


@router.get(
    "/channels/{channel_id}/pins",
    response_model=PinListResponse,
    dependencies=[Depends(security)],
)
async def list_channel_pins(
    channel_id: str,
    context_type: str = Query("channel", alias="contextType", pattern="^(channel|conversation)$"),
    pin_service: PinService = Depends(get_pin_service),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get the pins of a channel (or conversation), oldest first."""
    pins = await pin_service.list_pins(context_type, channel_id)
    items = [
        PinListItem(
            pin=PinnedMessage.model_validate(pin),
            message=Message.model_validate(message) if message else None,
        )
        for pin, message in pins
    ]
    return PinListResponse(items=items, total=len(items))
