"""Pinned messages with a per-context limit.

Pinning is check-then-act without retry: two pinners racing on the last
free slot can both pass the count check, so the limit is soft under
concurrency. Pins are rare enough that this is accepted.
"""

import logging
from typing import List, Optional, Tuple

from chatsync.shared.documents import Document, DocumentNotFoundError, DocumentStore
from chatsync.shared.errors import NotFoundError, PinLimitReachedError
from chatsync.shared.models import utcnow_iso

logger = logging.getLogger(__name__)


def pin_context(message: Document) -> Tuple[str, str]:
    """``(contextType, contextId)`` of the scope a message belongs to."""
    return message.get("scopeType") or "channel", message["scopeId"]


class PinService:
    """Pins and unpins messages in their channel or conversation."""

    def __init__(
        self,
        store: DocumentStore,
        pins_collection: str = "pinned_messages",
        messages_collection: str = "messages",
        limit: int = 50,
    ):
        self.store = store
        self.pins_collection = pins_collection
        self.messages_collection = messages_collection
        self.limit = limit

    async def _get_message(self, message_id: str) -> Document:
        try:
            return await self.store.get_document(self.messages_collection, message_id)
        except DocumentNotFoundError as e:
            raise NotFoundError("Message not found") from e

    async def find_pin(
        self, context_type: str, context_id: str, message_id: str
    ) -> Optional[Document]:
        page = await self.store.list_documents(
            self.pins_collection,
            filters={
                "contextType": context_type,
                "contextId": context_id,
                "messageId": message_id,
            },
            limit=1,
        )
        return page.documents[0] if page.documents else None

    async def count_pins(self, context_type: str, context_id: str) -> int:
        page = await self.store.list_documents(
            self.pins_collection,
            filters={"contextType": context_type, "contextId": context_id},
            limit=self.limit + 1,
        )
        return page.total

    async def pin(self, message_id: str, user_id: str) -> Tuple[Document, bool]:
        """Pin a message.

        Returns ``(pin, created)``. An existing pin is returned unchanged.
        Raises ``PinLimitReachedError`` when the context already holds
        ``limit`` pins.
        """
        message = await self._get_message(message_id)
        context_type, context_id = pin_context(message)

        existing = await self.find_pin(context_type, context_id, message_id)
        if existing is not None:
            return existing, False

        if await self.count_pins(context_type, context_id) >= self.limit:
            logger.info(f"Pin limit reached for {context_type} {context_id}")
            raise PinLimitReachedError(
                self.limit, f"Pin limit reached for this {context_type}"
            )

        pin = await self.store.create_document(
            self.pins_collection,
            {
                "messageId": message_id,
                "contextType": context_type,
                "contextId": context_id,
                "pinnedBy": user_id,
                "pinnedAt": utcnow_iso(),
            },
        )
        logger.info(f"Message {message_id} pinned in {context_type} {context_id} by {user_id}")
        return pin, True

    async def unpin(self, message_id: str) -> bool:
        """Remove the pin of a message; returns whether one existed."""
        message = await self._get_message(message_id)
        context_type, context_id = pin_context(message)

        existing = await self.find_pin(context_type, context_id, message_id)
        if existing is None:
            return False

        try:
            await self.store.delete_document(self.pins_collection, existing["id"])
        except DocumentNotFoundError:
            # Removed concurrently
            return False
        logger.info(f"Message {message_id} unpinned from {context_type} {context_id}")
        return True

    async def list_pins(
        self, context_type: str, context_id: str
    ) -> List[Tuple[Document, Optional[Document]]]:
        """Pins of a context, oldest first, each with its message if it still exists."""
        page = await self.store.list_documents(
            self.pins_collection,
            filters={"contextType": context_type, "contextId": context_id},
            limit=self.limit,
        )

        items: List[Tuple[Document, Optional[Document]]] = []
        for pin in page.documents:
            try:
                message = await self.store.get_document(
                    self.messages_collection, pin["messageId"]
                )
            except DocumentNotFoundError:
                message = None
            items.append((pin, message))
        return items
