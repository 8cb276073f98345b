"""HTTP client for the message service."""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

import httpx

from chatsync.shared.errors import ChatSyncError, TransientNetworkError, error_from_payload
from chatsync.shared.models import Attachment, Message, PinnedMessage

logger = logging.getLogger(__name__)


@dataclass
class MessagePage:
    items: List[Message] = field(default_factory=list)
    has_more: bool = False


@dataclass
class ThreadPage:
    parent_message: Message
    replies: List[Message] = field(default_factory=list)
    total: int = 0
    has_more: bool = False


def _message_body(
    text: str,
    attachments: Optional[Sequence[Attachment]],
    image_ref: Optional[str],
    mentions: Optional[Sequence[str]],
) -> Dict[str, Any]:
    body: Dict[str, Any] = {"text": text}
    if attachments:
        body["attachments"] = [a.to_wire() for a in attachments]
    if image_ref:
        body["imageRef"] = image_ref
    if mentions:
        body["mentions"] = list(mentions)
    return body


class ChatApiClient:
    """Async client for every message service endpoint.

    Error responses are raised as the matching ``ChatSyncError`` subclass;
    connection failures and timeouts as ``TransientNetworkError``.
    """

    def __init__(
        self,
        base_url: str,
        token: Optional[str] = None,
        *,
        timeout: float = 10.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        headers = {"Authorization": f"Bearer {token}"} if token else {}
        self._client = httpx.AsyncClient(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    async def __aenter__(self) -> "ChatApiClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        await self._client.aclose()

    def set_token(self, token: str) -> None:
        self._client.headers["Authorization"] = f"Bearer {token}"

    async def _request(self, method: str, path: str, **kwargs) -> Dict[str, Any]:
        try:
            response = await self._client.request(method, path, **kwargs)
        except httpx.TransportError as e:
            logger.warning(f"{method} {path} failed: {e}")
            raise TransientNetworkError(f"Network error: {e}") from e

        if response.is_success:
            return response.json() if response.content else {}

        raise self._error(response)

    @staticmethod
    def _error(response: httpx.Response) -> ChatSyncError:
        try:
            body = response.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        detail = body.get("detail")
        if not isinstance(detail, str):
            # FastAPI request validation errors carry a list of problems
            detail = response.reason_phrase or None

        retry_after = body.get("retryAfter")
        if retry_after is None and "Retry-After" in response.headers:
            try:
                retry_after = float(response.headers["Retry-After"])
            except ValueError:
                retry_after = None

        return error_from_payload(
            response.status_code,
            body.get("code"),
            detail,
            max_length=body.get("maxLength"),
            limit=body.get("limit"),
            retry_after=retry_after,
            attempts=body.get("attempts"),
        )

    # ------------------------------------------------------------------
    # Messages
    # ------------------------------------------------------------------

    async def list_messages(
        self,
        channel_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> MessagePage:
        """Fetch top-level messages older than ``cursor``.

        Args:
            channel_id: Channel or conversation ID
            cursor: ID of the oldest message already loaded, if any
            limit: Page size (server default when omitted)

        Returns:
            MessagePage with items ordered oldest first
        """
        params: Dict[str, Any] = {"channelId": channel_id}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit

        data = await self._request("GET", "/messages", params=params)
        return MessagePage(
            items=[Message.model_validate(item) for item in data.get("items", [])],
            has_more=bool(data.get("hasMore", False)),
        )

    async def send_message(
        self,
        channel_id: str,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None,
        *,
        scope_type: str = "channel",
        image_ref: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        body = _message_body(text, attachments, image_ref, mentions)
        body["channelId"] = channel_id
        body["scopeType"] = scope_type
        if reply_to_id:
            body["replyToId"] = reply_to_id

        data = await self._request("POST", "/messages", json=body)
        return Message.model_validate(data["message"])

    async def edit_message(self, message_id: str, text: str) -> None:
        await self._request("PATCH", "/messages", params={"id": message_id}, json={"text": text})

    async def remove_message(self, message_id: str) -> None:
        await self._request("DELETE", "/messages", params={"id": message_id})

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def get_thread(
        self,
        message_id: str,
        cursor: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> ThreadPage:
        params: Dict[str, Any] = {}
        if cursor:
            params["cursor"] = cursor
        if limit:
            params["limit"] = limit

        data = await self._request("GET", f"/messages/{message_id}/thread", params=params)
        return ThreadPage(
            parent_message=Message.model_validate(data["parentMessage"]),
            replies=[Message.model_validate(item) for item in data.get("replies", [])],
            total=data.get("total", 0),
            has_more=bool(data.get("hasMore", False)),
        )

    async def reply_in_thread(
        self,
        message_id: str,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None,
        *,
        image_ref: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Tuple[Message, str]:
        """Reply in the thread of ``message_id``.

        Returns:
            The created reply and the thread (root message) ID
        """
        body = _message_body(text, attachments, image_ref, mentions)
        data = await self._request("POST", f"/messages/{message_id}/thread", json=body)
        return Message.model_validate(data["reply"]), data["threadId"]

    # ------------------------------------------------------------------
    # Pins
    # ------------------------------------------------------------------

    async def pin_message(self, message_id: str) -> PinnedMessage:
        data = await self._request("POST", f"/messages/{message_id}/pin")
        return PinnedMessage.model_validate(data["pin"])

    async def unpin_message(self, message_id: str) -> None:
        await self._request("DELETE", f"/messages/{message_id}/pin")

    async def list_pins(
        self, channel_id: str, context_type: str = "channel"
    ) -> List[Tuple[PinnedMessage, Optional[Message]]]:
        data = await self._request(
            "GET",
            f"/channels/{channel_id}/pins",
            params={"contextType": context_type},
        )
        pins = []
        for item in data.get("items", []):
            message = item.get("message")
            pins.append(
                (
                    PinnedMessage.model_validate(item["pin"]),
                    Message.model_validate(message) if message else None,
                )
            )
        return pins

    # ------------------------------------------------------------------
    # Reactions
    # ------------------------------------------------------------------

    async def add_reaction(self, message_id: str, emoji: str) -> Message:
        data = await self._request(
            "POST", f"/messages/{message_id}/reactions", json={"emoji": emoji}
        )
        return Message.model_validate(data["message"])

    async def remove_reaction(self, message_id: str, emoji: str) -> Message:
        data = await self._request(
            "DELETE", f"/messages/{message_id}/reactions", params={"emoji": emoji}
        )
        return Message.model_validate(data["message"])

    # ------------------------------------------------------------------
    # Typing
    # ------------------------------------------------------------------

    async def set_typing(
        self, channel_id: str, typing: bool, user_name: Optional[str] = None
    ) -> None:
        if typing:
            body: Dict[str, Any] = {"channelId": channel_id}
            if user_name:
                body["userName"] = user_name
            await self._request("POST", "/typing", json=body)
        else:
            await self._request("DELETE", "/typing", params={"channelId": channel_id})
