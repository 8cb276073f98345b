"""Thread reply counters without transactions.

The document store has no multi-document transaction and no atomic
increment, so a reply is two writes: create the reply document, then bump
``threadMessageCount`` on the root. Concurrent repliers race on the second
write. Each attempt re-reads the root and writes the counter conditioned on
the revision it read; a lost race fails the attempt, which is retried with
linear backoff up to a fixed budget.
"""

import asyncio
import logging
import uuid
from typing import Any, Awaitable, Callable, Dict, List, Mapping, Optional, Tuple, TypeVar

from chatsync.shared.documents import (
    Document,
    DocumentExistsError,
    DocumentNotFoundError,
    DocumentStore,
)
from chatsync.shared.errors import ChatSyncError, ConcurrencyExhaustedError, NotFoundError

logger = logging.getLogger(__name__)

T = TypeVar("T")

Sleep = Callable[[float], Awaitable[Any]]


async def retry_with_backoff(
    operation: Callable[[int], Awaitable[T]],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    description: str = "operation",
    sleep: Sleep = asyncio.sleep,
) -> T:
    """Run ``operation(attempt)`` until it succeeds or the budget runs out.

    Waits ``base_delay * attempt`` between attempts. Domain errors and
    missing documents are not retried. Exhaustion raises
    ``ConcurrencyExhaustedError`` chained to the last failure.
    """
    last_error: Optional[BaseException] = None

    for attempt in range(1, attempts + 1):
        try:
            return await operation(attempt)
        except DocumentNotFoundError as e:
            raise NotFoundError("Message not found") from e
        except ChatSyncError:
            raise
        except Exception as e:
            last_error = e
            if attempt == attempts:
                break
            delay = base_delay * attempt
            logger.debug(
                f"{description} attempt {attempt}/{attempts} failed ({e}), "
                f"retrying in {delay:.3f}s"
            )
            await sleep(delay)

    logger.error(f"{description} failed after {attempts} attempts: {last_error}")
    raise ConcurrencyExhaustedError(
        f"{description} failed after {attempts} attempts",
        attempts=attempts,
    ) from last_error


async def update_with_retry(
    store: DocumentStore,
    collection: str,
    document_id: str,
    mutate: Callable[[Document], Mapping[str, Any]],
    *,
    attempts: int = 3,
    base_delay: float = 0.05,
    sleep: Sleep = asyncio.sleep,
) -> Document:
    """Read-modify-write one document with a revision check per attempt.

    ``mutate`` receives a fresh copy of the document on every attempt and
    returns the fields to write.
    """

    async def attempt(_: int) -> Document:
        current = await store.get_document(collection, document_id)
        changes = mutate(current)
        return await store.update_document(
            collection,
            document_id,
            changes,
            expected_revision=current["revision"],
        )

    return await retry_with_backoff(
        attempt,
        attempts=attempts,
        base_delay=base_delay,
        description=f"Update of {collection}/{document_id}",
        sleep=sleep,
    )


def merge_participants(participants: Optional[List[str]], user_id: str) -> List[str]:
    merged = list(participants or [])
    if user_id not in merged:
        merged.append(user_id)
    return merged


class ThreadReplyController:
    """Creates thread replies and keeps the root's counters in step."""

    def __init__(
        self,
        store: DocumentStore,
        collection: str = "messages",
        attempts: int = 3,
        base_delay: float = 0.05,
        sleep: Sleep = asyncio.sleep,
    ):
        self.store = store
        self.collection = collection
        self.attempts = attempts
        self.base_delay = base_delay
        self.sleep = sleep

    async def resolve_root(self, message_id: str) -> Document:
        """Return the thread root for ``message_id``.

        Replies to a reply attach to the original root; threads never nest.
        """
        try:
            target = await self.store.get_document(self.collection, message_id)
        except DocumentNotFoundError as e:
            raise NotFoundError("Parent message not found") from e

        root_id = target.get("threadId")
        if not root_id:
            return target

        try:
            return await self.store.get_document(self.collection, root_id)
        except DocumentNotFoundError as e:
            raise NotFoundError("Thread root message not found") from e

    async def create_reply(
        self,
        message_id: str,
        author_id: str,
        *,
        author_name: Optional[str] = None,
        text: str = "",
        image_ref: Optional[str] = None,
        attachments: Optional[List[Dict[str, Any]]] = None,
        mentions: Optional[List[str]] = None,
    ) -> Tuple[Document, str]:
        """Create a reply under the root of ``message_id``.

        Returns ``(reply, root_id)``. Raises ``NotFoundError`` when the target
        is missing and ``ConcurrencyExhaustedError`` when every attempt lost
        its race; in that case the reply itself may already exist.
        """
        root = await self.resolve_root(message_id)
        root_id = root["id"]

        # One id for every attempt so a retry after a partial failure finds
        # the reply it already created instead of writing a second one
        reply_id = uuid.uuid4().hex
        reply_data: Dict[str, Any] = {
            "scopeId": root.get("scopeId"),
            "scopeType": root.get("scopeType", "channel"),
            "authorId": author_id,
            "authorName": author_name,
            "text": text or "",
            "threadId": root_id,
        }
        if image_ref:
            reply_data["imageRef"] = image_ref
        if attachments:
            reply_data["attachments"] = attachments
        if mentions:
            reply_data["mentions"] = mentions

        reply: Optional[Document] = None

        async def attempt(number: int) -> Document:
            nonlocal reply

            # Never reuse a counter read by an earlier attempt
            parent = await self.store.get_document(self.collection, root_id)

            if reply is None:
                try:
                    reply = await self.store.create_document(
                        self.collection, reply_data, document_id=reply_id
                    )
                except DocumentExistsError:
                    reply = await self.store.get_document(self.collection, reply_id)

            await self.store.update_document(
                self.collection,
                root_id,
                {
                    "threadMessageCount": (parent.get("threadMessageCount") or 0) + 1,
                    "threadParticipants": merge_participants(
                        parent.get("threadParticipants"), author_id
                    ),
                    "lastThreadReplyAt": reply["createdAt"],
                },
                expected_revision=parent["revision"],
            )
            return reply

        created = await retry_with_backoff(
            attempt,
            attempts=self.attempts,
            base_delay=self.base_delay,
            description=f"Thread reply to {root_id}",
            sleep=self.sleep,
        )
        logger.info(f"Thread reply {created['id']} created under {root_id} by {author_id}")
        return created, root_id

    async def list_replies(
        self,
        message_id: str,
        *,
        limit: int = 50,
        cursor: Optional[str] = None,
    ) -> Tuple[Document, List[Document], int, bool]:
        """Replies of the thread containing ``message_id``, oldest first.

        Returns ``(root, replies, total, has_more)``.
        """
        root = await self.resolve_root(message_id)
        try:
            page = await self.store.list_documents(
                self.collection,
                filters={"threadId": root["id"]},
                order="asc",
                cursor_after=cursor,
                limit=limit + 1,
            )
        except DocumentNotFoundError as e:
            raise NotFoundError("Cursor message not found") from e

        replies = page.documents[:limit]
        has_more = len(page.documents) > limit
        return root, replies, page.total, has_more
