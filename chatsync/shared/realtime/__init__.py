"""Realtime transport: shared connection pool and Kafka source."""

from chatsync.shared.realtime.kafka import KafkaRealtimeClient
from chatsync.shared.realtime.pool import RealtimePool, RealtimeSource

__all__ = ["KafkaRealtimeClient", "RealtimePool", "RealtimeSource"]
