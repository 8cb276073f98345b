"""Kafka producer for publishing document change events."""

import json
import logging
from typing import Any, Dict, Optional

from aiokafka import AIOKafkaProducer

from chatsync.shared.documents import ChangePublisher

from ..config import settings

logger = logging.getLogger(__name__)


class KafkaProducerService(ChangePublisher):
    """Publishes every document change to the document-events topic."""

    def __init__(
        self,
        bootstrap_servers: Optional[str] = None,
        topic: Optional[str] = None,
    ):
        """Initialize Kafka producer."""
        self.producer: Optional[AIOKafkaProducer] = None
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self.topic = topic or settings.kafka_document_events_topic

    async def start(self):
        """Start Kafka producer."""
        try:
            self.producer = AIOKafkaProducer(
                bootstrap_servers=self.bootstrap_servers,
                value_serializer=lambda v: json.dumps(v).encode("utf-8"),
                key_serializer=lambda v: v.encode("utf-8") if v else None,
            )
            await self.producer.start()
            logger.info(f"Kafka producer started: {self.bootstrap_servers}")
        except Exception as e:
            logger.error(f"Failed to start Kafka producer: {e}", exc_info=True)
            self.producer = None
            # Don't raise - service should work without Kafka

    async def stop(self):
        """Stop Kafka producer."""
        if self.producer:
            try:
                await self.producer.stop()
                logger.info("Kafka producer stopped")
            except Exception as e:
                logger.error(f"Error stopping Kafka producer: {e}", exc_info=True)
            self.producer = None

    async def publish(self, channel: str, event: Dict[str, Any]) -> None:
        """Publish a document change event.

        Args:
            channel: Realtime channel of the document's collection
            event: ``{"channel", "payload", "eventKinds"}`` change event
        """
        if not self.producer:
            logger.warning("Kafka producer not available, skipping event publish")
            return

        try:
            key = (event.get("payload") or {}).get("id")
            await self.producer.send(topic=self.topic, value=event, key=key)
            logger.debug(f"Published {event['eventKinds'][0]} to Kafka topic {self.topic}")
        except Exception as e:
            logger.error(f"Failed to publish event to Kafka for {channel}: {e}", exc_info=True)


# Global Kafka producer instance
kafka_producer = KafkaProducerService()
