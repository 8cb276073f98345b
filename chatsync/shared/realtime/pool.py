"""Shared realtime connection with reference-counted subscriptions.

One ``RealtimePool`` is built per process (or client session) and handed to
every consumer that needs push events, so they all share a single
connection to the realtime source instead of opening their own.
"""

import asyncio
import logging
from typing import Callable, Dict, Optional, Protocol

from chatsync.shared.documents.base import RealtimeCallback, Unsubscribe
from chatsync.shared.errors import TransientNetworkError

logger = logging.getLogger(__name__)


class RealtimeSource(Protocol):
    """Anything that can push document events to channel subscribers."""

    async def start(self) -> None:
        ...

    async def stop(self) -> None:
        ...

    def subscribe(self, channel: str, callback: RealtimeCallback) -> Unsubscribe:
        ...


class RealtimePool:
    """Lazily connected realtime source shared by all subscribers."""

    def __init__(self, factory: Callable[[], RealtimeSource]):
        self._factory = factory
        self._source: Optional[RealtimeSource] = None
        self._refs: Dict[str, int] = {}
        self._lock = asyncio.Lock()

    @property
    def connected(self) -> bool:
        return self._source is not None

    async def connect(self) -> RealtimeSource:
        """Return the shared source, starting it on first use."""
        async with self._lock:
            if self._source is None:
                try:
                    source = self._factory()
                    await source.start()
                except Exception as e:
                    raise TransientNetworkError(f"Realtime connection failed: {e}") from e
                self._source = source
                logger.info("Realtime connection established")
            return self._source

    async def subscribe(self, channel: str, callback: RealtimeCallback) -> Unsubscribe:
        """Subscribe ``callback`` to ``channel``.

        Returns an unsubscribe callable; calling it more than once is a no-op.
        """
        source = await self.connect()
        try:
            unsubscribe_source = source.subscribe(channel, callback)
        except Exception as e:
            raise TransientNetworkError(f"Subscription to {channel} failed: {e}") from e

        self._refs[channel] = self._refs.get(channel, 0) + 1
        logger.debug(f"Subscribed to {channel} ({self._refs[channel]} active)")
        released = False

        def unsubscribe() -> None:
            nonlocal released
            if released:
                return
            released = True
            unsubscribe_source()
            remaining = self._refs.get(channel, 1) - 1
            if remaining <= 0:
                self._refs.pop(channel, None)
            else:
                self._refs[channel] = remaining

        return unsubscribe

    def has_active_subscriptions(self, channel: str) -> bool:
        return self._refs.get(channel, 0) > 0

    def subscription_count(self, channel: str) -> int:
        return self._refs.get(channel, 0)

    async def close(self) -> None:
        """Stop the shared source and forget every subscription."""
        async with self._lock:
            source, self._source = self._source, None
            self._refs.clear()
        if source is not None:
            try:
                await source.stop()
            except Exception as e:
                logger.error(f"Error closing realtime connection: {e}", exc_info=True)
