"""One conversation view: every client component wired to a single scope."""

import logging
from typing import Callable, List, Optional, Sequence

from chatsync.shared.documents import collection_channel
from chatsync.shared.documents.base import Unsubscribe
from chatsync.shared.models import Attachment, Message, TypingIndicator
from chatsync.shared.realtime import RealtimePool

from .api_client import ChatApiClient
from .config import ClientSettings
from .dispatcher import RealtimeEventDispatcher
from .enrichment import MessageEnricher
from .events import MessageCreated
from .pagination import CursorPaginationManager
from .presence import TypingDebouncer, TypingPresence
from .send import ComposeState, FloodGuard, OptimisticSendPipeline
from .store import MessageStore, ThreadStore

logger = logging.getLogger(__name__)


class ConversationSync:
    """Keeps the messages, threads and typing state of the active scope in sync.

    The realtime pool is shared with other sessions and is not closed here.
    """

    def __init__(
        self,
        api: ChatApiClient,
        pool: RealtimePool,
        user_id: str,
        *,
        user_name: Optional[str] = None,
        settings: Optional[ClientSettings] = None,
        enricher: Optional[MessageEnricher] = None,
        on_messages_change: Optional[Callable[[], None]] = None,
        on_thread_change: Optional[Callable[[str], None]] = None,
        on_typing_change: Optional[Callable[[List[TypingIndicator]], None]] = None,
    ):
        self.api = api
        self.pool = pool
        self.user_id = user_id
        self.user_name = user_name
        self.settings = settings or ClientSettings()
        self.enricher = enricher

        self.scope_id: Optional[str] = None
        self.scope_type = "channel"
        self.messages_channel = collection_channel(
            self.settings.database_id, self.settings.messages_collection
        )
        self.typing_channel = collection_channel(
            self.settings.database_id, self.settings.typing_collection
        )

        self.store = MessageStore(on_change=on_messages_change)
        self.threads = ThreadStore(on_change=on_thread_change)
        self.dispatcher = RealtimeEventDispatcher(self.store, self.threads, enricher=enricher)
        self.pagination = CursorPaginationManager(
            self._fetch_page,
            self.store,
            page_size=self.settings.page_size,
            enricher=enricher,
        )
        self.presence = TypingPresence(
            user_id,
            stale_after=self.settings.typing_stale_after,
            sweep_interval=self.settings.typing_sweep_interval,
            batch_window=self.settings.typing_batch_window,
            on_change=on_typing_change,
        )
        self.debouncer = TypingDebouncer(
            self._emit_typing,
            start_debounce=self.settings.typing_start_debounce,
            idle_timeout=self.settings.typing_idle_timeout,
            min_repeat_interval=self.settings.typing_min_repeat_interval,
        )
        self.sender = OptimisticSendPipeline(
            api,
            self.store,
            ComposeState(),
            enricher=enricher,
            flood_guard=FloodGuard(
                self.settings.flood_max_messages, self.settings.flood_window
            ),
            max_length=self.settings.max_message_length,
        )
        self._subscriptions: List[Unsubscribe] = []

    @property
    def compose(self) -> ComposeState:
        return self.sender.compose

    @property
    def messages(self) -> List[Message]:
        return self.store.messages

    @property
    def can_load_older(self) -> bool:
        return self.pagination.can_load_older

    async def _fetch_page(
        self, scope_id: str, cursor: Optional[str], limit: int
    ) -> List[Message]:
        page = await self.api.list_messages(scope_id, cursor=cursor, limit=limit)
        return page.items

    async def _emit_typing(self, typing: bool) -> None:
        if self.scope_id is None:
            return
        await self.api.set_typing(self.scope_id, typing, self.user_name)

    # ------------------------------------------------------------------
    # Scope
    # ------------------------------------------------------------------

    def _unsubscribe(self) -> None:
        subscriptions, self._subscriptions = self._subscriptions, []
        for unsubscribe in subscriptions:
            try:
                unsubscribe()
            except Exception as e:
                logger.warning(f"Unsubscribe failed: {e}")

    async def _subscribe(self) -> None:
        for channel, callback in (
            (self.messages_channel, self.dispatcher.handle),
            (self.typing_channel, self.presence.handle),
        ):
            try:
                self._subscriptions.append(await self.pool.subscribe(channel, callback))
            except Exception as e:
                # History still loads; the view just will not update live
                logger.warning(f"Realtime subscription to {channel} failed: {e}")

    async def switch_scope(
        self, scope_id: Optional[str], scope_type: str = "channel"
    ) -> List[Message]:
        """Make ``scope_id`` the active channel or conversation.

        Returns the newest page of its history.
        """
        logger.debug(f"Switching scope {self.scope_id} -> {scope_id}")
        self._unsubscribe()
        self.debouncer.cancel()
        self.dispatcher.cancel()

        self.scope_id = scope_id
        self.scope_type = scope_type
        self.dispatcher.set_scope(scope_id)
        self.presence.set_scope(scope_id)
        self.sender.set_scope(scope_id, scope_type)
        self.threads.clear()

        if scope_id is not None:
            await self._subscribe()
            self.presence.start()
        else:
            await self.presence.stop()

        return await self.pagination.load_initial(scope_id)

    async def load_older(self) -> List[Message]:
        return await self.pagination.load_older()

    # ------------------------------------------------------------------
    # Compose
    # ------------------------------------------------------------------

    def on_input_change(self, text: str) -> None:
        self.compose.text = text
        self.debouncer.on_local_input_change(text)

    async def send(
        self,
        text: Optional[str] = None,
        attachments: Optional[Sequence[Attachment]] = None,
        *,
        image_ref: Optional[str] = None,
        reply_to_id: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        """Send ``text`` (the compose field when omitted) to the active scope."""
        message = await self.sender.send(
            self.compose.text if text is None else text,
            attachments,
            image_ref=image_ref,
            reply_to_id=reply_to_id,
            mentions=mentions,
        )
        self.debouncer.on_local_input_change("")
        return message

    # ------------------------------------------------------------------
    # Threads
    # ------------------------------------------------------------------

    async def open_thread(self, root_id: str) -> Message:
        """Open the thread of ``root_id`` and load its replies.

        Returns the root message.
        """
        page = await self.api.get_thread(root_id)
        root = page.parent_message
        replies = page.replies
        if self.enricher is not None:
            replies = await self.enricher.enrich_many(replies)

        thread = self.threads.open(root.id)
        thread.extend(replies)
        logger.debug(f"Opened thread {root.id} with {len(replies)} of {page.total} replies")
        return root

    def close_thread(self, root_id: str) -> None:
        self.threads.close(root_id)

    async def reply_in_thread(
        self,
        root_id: str,
        text: str,
        attachments: Optional[Sequence[Attachment]] = None,
        *,
        image_ref: Optional[str] = None,
        mentions: Optional[Sequence[str]] = None,
    ) -> Message:
        trimmed = self.sender.validate(text, has_content=bool(attachments or image_ref))
        reply, thread_id = await self.api.reply_in_thread(
            root_id, trimmed, attachments, image_ref=image_ref, mentions=mentions
        )
        thread = self.threads.get(thread_id)
        if thread is not None:
            thread.apply(MessageCreated(reply))
        return reply

    async def close(self) -> None:
        self._unsubscribe()
        self.debouncer.cancel()
        await self.debouncer.flush()
        self.dispatcher.cancel()
        await self.presence.stop()
        self.threads.clear()
