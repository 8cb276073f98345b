"""Kafka realtime client.

Consumes the document-events topic the message service publishes to and
routes every event to the callbacks subscribed to its channel.
"""

import asyncio
import json
import logging
from typing import Any, Dict, List, Optional

from aiokafka import AIOKafkaConsumer

from chatsync.shared.documents.base import RealtimeCallback, Unsubscribe

logger = logging.getLogger(__name__)


class KafkaRealtimeClient:
    """Realtime source backed by an aiokafka consumer."""

    def __init__(
        self,
        bootstrap_servers: str,
        topic: str,
        group_id: Optional[str] = None,
    ):
        self.bootstrap_servers = bootstrap_servers
        self.topic = topic
        # No group: every client sees every event
        self.group_id = group_id
        self.consumer: Optional[AIOKafkaConsumer] = None
        self.running = False
        self.callbacks: Dict[str, List[RealtimeCallback]] = {}
        self._task: Optional[asyncio.Task] = None

    async def start(self) -> None:
        """Start the Kafka consumer."""
        self.consumer = AIOKafkaConsumer(
            self.topic,
            bootstrap_servers=self.bootstrap_servers,
            group_id=self.group_id,
            value_deserializer=lambda m: json.loads(m.decode("utf-8")),
            auto_offset_reset="latest",
            enable_auto_commit=True,
        )
        await self.consumer.start()
        self.running = True
        logger.info(f"Kafka realtime consumer started: {self.bootstrap_servers} ({self.topic})")

        self._task = asyncio.create_task(self._consume_events())

    async def stop(self) -> None:
        """Stop the Kafka consumer."""
        self.running = False
        if self._task:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        if self.consumer:
            await self.consumer.stop()
            self.consumer = None
            logger.info("Kafka realtime consumer stopped")
        self.callbacks.clear()

    def subscribe(self, channel: str, callback: RealtimeCallback) -> Unsubscribe:
        self.callbacks.setdefault(channel, []).append(callback)

        def unsubscribe() -> None:
            callbacks = self.callbacks.get(channel)
            if callbacks and callback in callbacks:
                callbacks.remove(callback)
                if not callbacks:
                    del self.callbacks[channel]

        return unsubscribe

    def dispatch(self, event: Dict[str, Any]) -> None:
        """Deliver one decoded event to the subscribers of its channel."""
        channel = event.get("channel")
        if not channel:
            logger.warning(f"Dropping realtime event without channel: {event}")
            return

        for callback in list(self.callbacks.get(channel, [])):
            try:
                callback(event)
            except Exception as e:
                logger.error(f"Error handling realtime event on {channel}: {e}", exc_info=True)

    async def _consume_events(self) -> None:
        try:
            async for message in self.consumer:
                logger.debug(f"Received realtime event from {message.topic}")
                self.dispatch(message.value)
        except asyncio.CancelledError:
            logger.info("Kafka realtime consumer task cancelled")
            raise
        except Exception as e:
            logger.error(f"Error consuming realtime events: {e}", exc_info=True)
