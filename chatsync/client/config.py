"""Configuration for the client synchronization core."""

from pydantic_settings import BaseSettings, SettingsConfigDict


class ClientSettings(BaseSettings):
    """Client settings loaded from ``CHATSYNC_*`` environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="CHATSYNC_",
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Message service
    api_base_url: str = "http://localhost:8002"
    request_timeout: float = 10.0

    # Realtime channels
    database_id: str = "chat"
    messages_collection: str = "messages"
    typing_collection: str = "typing"
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_document_events_topic: str = "document-events"

    # Pagination
    page_size: int = 30

    # Outbound typing (seconds)
    typing_start_debounce: float = 0.4
    typing_idle_timeout: float = 2.5
    typing_min_repeat_interval: float = 0.4

    # Inbound typing (seconds)
    typing_stale_after: float = 5.0
    typing_sweep_interval: float = 1.0
    typing_batch_window: float = 0.05

    # Send pipeline
    max_message_length: int = 2000
    flood_max_messages: int = 8
    flood_window: float = 5.0

    # Enrichment
    profile_cache_ttl: float = 300.0
