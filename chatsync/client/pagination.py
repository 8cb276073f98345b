"""Cursor pagination over a scope's message history.

The cursor is the id of the oldest loaded message. ``has_more`` is a
heuristic: a full page means more history may exist, a short or empty page
means it does not.
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Sequence

from chatsync.shared.models import Message

from .enrichment import MessageEnricher
from .store import MessageStore

logger = logging.getLogger(__name__)

# (scope_id, cursor, limit) -> messages oldest first
FetchPage = Callable[[str, Optional[str], int], Awaitable[Sequence[Message]]]


class CursorPaginationManager:
    """Loads the newest page of a scope, then older pages on demand."""

    def __init__(
        self,
        fetch_page: FetchPage,
        store: MessageStore,
        page_size: int = 30,
        enricher: Optional[MessageEnricher] = None,
    ):
        self.fetch_page = fetch_page
        self.store = store
        self.page_size = page_size
        self.enricher = enricher

        self.scope_id: Optional[str] = None
        self.cursor: Optional[str] = None
        self.has_more = False
        # Bumped on every scope switch; responses from an older generation are stale
        self._generation = 0
        self._older: Optional[asyncio.Task] = None

    @property
    def can_load_older(self) -> bool:
        return self.has_more and self.cursor is not None

    @property
    def loading_older(self) -> bool:
        return self._older is not None and not self._older.done()

    def _is_current(self, scope_id: Optional[str], generation: int) -> bool:
        return scope_id == self.scope_id and generation == self._generation

    async def _enrich(self, page: List[Message]) -> List[Message]:
        if self.enricher is None:
            return page
        try:
            return await self.enricher.enrich_many(page)
        except Exception as e:
            logger.warning(f"Page enrichment failed: {e}")
            return page

    async def load_initial(self, scope_id: Optional[str]) -> List[Message]:
        """Switch to ``scope_id`` and load its newest page.

        State and store are reset before the fetch is issued. Returns the
        applied page, or an empty list when the response went stale.
        """
        self._generation += 1
        generation = self._generation
        self.scope_id = scope_id
        self.cursor = None
        self.has_more = False
        # An older-page request still in flight finishes and is discarded
        self._older = None
        self.store.reset()

        if scope_id is None:
            return []

        page = list(await self.fetch_page(scope_id, None, self.page_size))
        page = await self._enrich(page)

        if not self._is_current(scope_id, generation):
            logger.debug(f"Discarding initial page for {scope_id}: scope changed")
            return []

        self.store.extend(page)
        self.cursor = page[0].id if page else None
        self.has_more = len(page) == self.page_size
        logger.debug(
            f"Loaded {len(page)} messages for {scope_id} (has_more={self.has_more})"
        )
        return page

    async def load_older(self) -> List[Message]:
        """Load up to one page strictly older than the cursor.

        Concurrent calls share the request already in flight.
        """
        if self.loading_older:
            return await asyncio.shield(self._older)
        if not self.can_load_older or self.scope_id is None:
            return []

        self._older = asyncio.create_task(
            self._load_older(self.scope_id, self.cursor, self._generation)
        )
        return await asyncio.shield(self._older)

    async def _load_older(
        self, scope_id: str, cursor: str, generation: int
    ) -> List[Message]:
        page = list(await self.fetch_page(scope_id, cursor, self.page_size))
        page = await self._enrich(page)

        if not self._is_current(scope_id, generation):
            logger.debug(f"Discarding older page for {scope_id}: scope changed")
            return []

        if page:
            self.store.extend(page)
            self.cursor = page[0].id
        self.has_more = len(page) == self.page_size
        return page
