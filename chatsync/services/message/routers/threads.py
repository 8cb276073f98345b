"""Thread endpoints for Message Service."""

import logging
from typing import Optional

from fastapi import APIRouter, Depends, Query, status

from chatsync.shared.models import Message

from ..config import Settings
from ..dependencies import (
    CurrentUser,
    get_current_user,
    get_settings,
    get_thread_controller,
    security,
)
from ..schemas.messages import ThreadRepliesResponse, ThreadReplyCreate, ThreadReplyResponse
from ..services.threads import ThreadReplyController
from .messages import validate_text

logger = logging.getLogger(__name__)
router = APIRouter()


@router.get(
    "/messages/{message_id}/thread",
    response_model=ThreadRepliesResponse,
    dependencies=[Depends(security)],
)
async def get_thread_replies(
    message_id: str,
    limit: Optional[int] = Query(None, ge=1),
    cursor: Optional[str] = Query(None, description="Last reply ID already loaded"),
    controller: ThreadReplyController = Depends(get_thread_controller),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Get the replies in a thread (oldest first, paginated).

    ``message_id`` may be the root or any reply in the thread.
    """
    page_size = min(limit or settings.thread_page_size, settings.max_thread_page_size)
    root, replies, total, has_more = await controller.list_replies(
        message_id, limit=page_size, cursor=cursor
    )

    logger.info(f"Retrieved {len(replies)} replies for thread {root['id']}")

    return ThreadRepliesResponse(
        parent_message=Message.model_validate(root),
        replies=[Message.model_validate(doc) for doc in replies],
        total=total,
        has_more=has_more,
    )


@router.post(
    "/messages/{message_id}/thread",
    response_model=ThreadReplyResponse,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(security)],
)
async def create_thread_reply(
    message_id: str,
    reply_data: ThreadReplyCreate,
    controller: ThreadReplyController = Depends(get_thread_controller),
    settings: Settings = Depends(get_settings),
    current_user: CurrentUser = Depends(get_current_user),
):
    """Reply in the thread of a message.

    Replying to a reply attaches to the original root. The root's
    ``threadMessageCount``, ``threadParticipants`` and ``lastThreadReplyAt``
    are updated with a bounded optimistic retry; exhausting it answers 500
    with code ``concurrency_exhausted``.
    """
    validate_text(
        reply_data.text,
        settings,
        has_content=bool(reply_data.image_ref or reply_data.attachments),
    )

    reply, root_id = await controller.create_reply(
        message_id,
        current_user.id,
        author_name=current_user.name,
        text=reply_data.text,
        image_ref=reply_data.image_ref,
        attachments=[a.to_wire() for a in reply_data.attachments],
        mentions=reply_data.mentions,
    )

    return ThreadReplyResponse(reply=Message.model_validate(reply), thread_id=root_id)
