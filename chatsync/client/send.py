"""Optimistic send pipeline.

Sending validates locally, consumes a slot of the client flood guard,
clears the compose field and posts the message. The returned message is
applied to the store straight away; its realtime echo is then a no-op
because the store deduplicates by id. On failure the compose field gets the
attempted text back.
"""

import logging
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Deque, Optional, Sequence

from chatsync.shared.errors import (
    MessageTooLongError,
    NotFoundError,
    RateLimitedError,
    ValidationError,
)
from chatsync.shared.models import Attachment, Message, utcnow_iso

from .api_client import ChatApiClient
from .enrichment import MessageEnricher
from .events import MessageCreated
from .store import MessageStore

logger = logging.getLogger(__name__)


class FloodGuard:
    """Sliding-window limit on local sends."""

    def __init__(
        self,
        max_messages: int = 8,
        window: float = 5.0,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.max_messages = max_messages
        self.window = window
        self._clock = clock
        self._sent: Deque[float] = deque()

    def _prune(self, now: float) -> None:
        while self._sent and now - self._sent[0] >= self.window:
            self._sent.popleft()

    def try_acquire(self) -> bool:
        now = self._clock()
        self._prune(now)
        if len(self._sent) >= self.max_messages:
            return False
        self._sent.append(now)
        return True

    def retry_after(self) -> float:
        """Seconds until the next send would be allowed."""
        now = self._clock()
        self._prune(now)
        if len(self._sent) < self.max_messages:
            return 0.0
        return max(0.0, self._sent[0] + self.window - now)


@dataclass
class ComposeState:
    """Contents of the compose field and the message being edited, if any."""

    text: str = ""
    editing_message_id: Optional[str] = None
    edit_text: str = ""

    @property
    def editing(self) -> bool:
        return self.editing_message_id is not None


class OptimisticSendPipeline:
    def __init__(
        self,
        api: ChatApiClient,
        store: MessageStore,
        compose: Optional[ComposeState] = None,
        scope_id: Optional[str] = None,
        enricher: Optional[MessageEnricher] = None,
        flood_guard: Optional[FloodGuard] = None,
        max_length: int = 2000,
        scope_type: str = "channel",
    ):
        self.api = api
        self.store = store
        self.compose = compose or ComposeState()
        self.scope_id = scope_id
        self.scope_type = scope_type
        self.enricher = enricher
        self.flood_guard = flood_guard or FloodGuard()
        self.max_length = max_length

    def set_scope(self, scope_id: Optional[str], scope_type: str = "channel") -> None:
        self.scope_id = scope_id
        self.scope_type = scope_type
        self.compose.editing_message_id = None
        self.compose.edit_text = ""

    def validate(self, text: str, has_content: bool = False) -> str:
        trimmed = text.strip()
        if not trimmed and not has_content:
            raise ValidationError("Message cannot be empty")
        if len(trimmed) > self.max_length:
            raise MessageTooLongError(self.max_length)
        return trimmed

    async def send(
        self,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None,
        *,
        image_ref: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        """Send a message to the active scope.

        Raises:
            ValidationError: Empty message (no text, image or attachment)
            MessageTooLongError: Text above the maximum length
            RateLimitedError: Client flood guard tripped
            ChatSyncError: Any failure reported by the service
        """
        if self.scope_id is None:
            raise ValidationError("No active conversation")

        trimmed = self.validate(text, has_content=bool(attachments or image_ref))

        if not self.flood_guard.try_acquire():
            raise RateLimitedError(
                "You are sending messages too quickly",
                retry_after=self.flood_guard.retry_after(),
            )

        scope_id = self.scope_id
        self.compose.text = ""

        try:
            message = await self.api.send_message(
                scope_id,
                trimmed,
                attachments,
                scope_type=self.scope_type,
                image_ref=image_ref,
                reply_to_id=reply_to_id,
                mentions=mentions,
            )
        except Exception as e:
            logger.warning(f"Send to {scope_id} failed: {e}")
            self.compose.text = text
            raise

        if self.enricher is not None:
            try:
                message = await self.enricher.enrich(message, context=self.store)
            except Exception as e:
                logger.warning(f"Enrichment failed for {message.id}: {e}")

        if self.scope_id == scope_id:
            self.store.apply(MessageCreated(message))
        return message

    async def submit(self) -> Optional[Message]:
        """Send the compose field, or save the edit in progress."""
        if self.compose.editing:
            await self.apply_edit()
            return None
        return await self.send(self.compose.text)

    # ------------------------------------------------------------------
    # Editing and removal
    # ------------------------------------------------------------------

    def start_edit(self, message_id: str) -> None:
        message = self.store.get(message_id)
        if message is None:
            raise NotFoundError("Message not found")
        if message.is_removed:
            raise ValidationError("Removed messages cannot be edited")
        self.compose.editing_message_id = message_id
        self.compose.edit_text = message.text

    def cancel_edit(self) -> None:
        self.compose.editing_message_id = None
        self.compose.edit_text = ""

    async def apply_edit(self) -> None:
        message_id = self.compose.editing_message_id
        if message_id is None:
            raise ValidationError("No message is being edited")

        text = self.validate(self.compose.edit_text)
        await self.api.edit_message(message_id, text)

        current = self.store.get(message_id)
        if current is not None:
            self.store.update(
                current.model_copy(update={"text": text, "edited_at": utcnow_iso()})
            )
        self.cancel_edit()

    async def remove(self, message_id: str) -> None:
        await self.api.remove_message(message_id)

        current = self.store.get(message_id)
        if current is not None and not current.is_removed:
            self.store.update(
                current.model_copy(
                    update={"removed_at": utcnow_iso(), "removed_by": current.author_id}
                )
            )
        if self.compose.editing_message_id == message_id:
            self.cancel_edit()
