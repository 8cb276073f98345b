"""Routes realtime message events to the right store."""

import asyncio
import logging
from typing import Any, Dict, Mapping, Optional, Set

from chatsync.shared.errors import InvalidEventError
from chatsync.shared.models import Message

from .enrichment import MessageEnricher
from .events import (
    MessageCreated,
    MessageDeleted,
    MessageEvent,
    MessageUpdated,
    parse_realtime_event,
)
from .store import MessageStore, ThreadStore

logger = logging.getLogger(__name__)


class RealtimeEventDispatcher:
    """Applies push events for the active scope.

    Events for other scopes are dropped. Thread replies go to the open
    thread's store, never to the top-level store. Creates and updates are
    enriched asynchronously before being applied; enrichments may finish
    out of order and the last one to finish wins.

    A delete is applied immediately and leaves a tombstone, so a create or
    update for the same id that finishes enriching afterwards is dropped.
    An update that finishes before the create it follows is applied as the
    create.
    """

    def __init__(
        self,
        store: MessageStore,
        threads: Optional[ThreadStore] = None,
        scope_id: Optional[str] = None,
        enricher: Optional[MessageEnricher] = None,
    ):
        self.store = store
        self.threads = threads or ThreadStore()
        self.scope_id = scope_id
        self.enricher = enricher
        self._tasks: Set[asyncio.Task] = set()
        self._deleted: Set[str] = set()
        # message id -> creates still being enriched
        self._creating: Dict[str, int] = {}

    def set_scope(self, scope_id: Optional[str]) -> None:
        self.scope_id = scope_id
        self._deleted.clear()

    @property
    def pending(self) -> int:
        return len(self._tasks)

    def handle(self, raw: Mapping[str, Any]) -> None:
        """Subscription callback for the messages channel."""
        try:
            event = parse_realtime_event(raw)
        except InvalidEventError as e:
            logger.warning(f"Dropping realtime event: {e}")
            return
        self.dispatch(event)

    def dispatch(self, event: MessageEvent) -> None:
        message = event.message
        if self.scope_id is None or message.scope_id != self.scope_id:
            return

        if isinstance(event, MessageDeleted):
            self._deleted.add(message.id)
        elif message.id in self._deleted:
            logger.debug(f"Dropping {type(event).__name__} for deleted message {message.id}")
            return

        target = self._target(message)
        if target is None:
            return

        if isinstance(event, MessageDeleted) or self.enricher is None:
            target.apply(event)
            return

        if isinstance(event, MessageCreated):
            self._creating[message.id] = self._creating.get(message.id, 0) + 1

        task = asyncio.create_task(self._enrich_and_apply(event, self.scope_id))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)

    def _target(self, message: Message) -> Optional[MessageStore]:
        if message.thread_id:
            return self.threads.get(message.thread_id)
        return self.store

    async def _enrich_and_apply(self, event: MessageEvent, scope_id: str) -> None:
        try:
            await self._apply_enriched(event, scope_id)
        finally:
            if isinstance(event, MessageCreated):
                remaining = self._creating.get(event.message_id, 1) - 1
                if remaining > 0:
                    self._creating[event.message_id] = remaining
                else:
                    self._creating.pop(event.message_id, None)

    async def _apply_enriched(self, event: MessageEvent, scope_id: str) -> None:
        target = self._target(event.message)
        context = list(target) if target is not None else []
        try:
            enriched = await self.enricher.enrich(event.message, context=context)
        except Exception as e:
            logger.warning(f"Enrichment failed for {event.message_id}: {e}")
            enriched = event.message

        # The scope may have changed while enrichment was running
        if self.scope_id != scope_id:
            logger.debug(f"Discarding {event.message_id}: scope changed to {self.scope_id}")
            return
        if enriched.id in self._deleted:
            logger.debug(f"Discarding {event.message_id}: deleted while enriching")
            return

        target = self._target(enriched)
        if target is None:
            return
        if (
            isinstance(event, MessageUpdated)
            and enriched.id not in target
            and self._creating.get(enriched.id)
        ):
            # The create is still enriching; it becomes a no-op once this lands
            target.apply(MessageCreated(enriched))
            return
        target.apply(type(event)(enriched))

    async def drain(self) -> None:
        """Wait for every in-flight enrichment to be applied."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    def cancel(self) -> None:
        for task in list(self._tasks):
            task.cancel()
        self._tasks.clear()
        self._creating.clear()
