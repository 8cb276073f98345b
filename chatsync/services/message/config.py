"""Configuration for Message Service."""

from typing import List

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Service
    service_name: str = "message-service"
    service_version: str = "0.1.0"
    port: int = 8002
    debug: bool = False

    # Database (empty URL runs on the in-process store)
    database_url: str = ""
    database_echo: bool = False

    # Document collections
    database_id: str = "chat"
    messages_collection: str = "messages"
    pinned_messages_collection: str = "pinned_messages"
    typing_collection: str = "typing"

    # Kafka
    kafka_enabled: bool = True
    kafka_bootstrap_servers: str = "localhost:9092"
    kafka_document_events_topic: str = "document-events"

    # Pagination
    default_page_size: int = 30
    max_page_size: int = 100
    thread_page_size: int = 50
    max_thread_page_size: int = 1000

    # Limits
    max_message_length: int = 2000
    pin_limit: int = 50

    # Thread reply retry loop
    thread_retry_attempts: int = 3
    thread_retry_base_delay: float = 0.05

    # Rate Limiting (messages per user per window)
    message_rate_limit: int = 10
    message_rate_window: float = 10.0

    # CORS
    cors_origins: str = "http://localhost:3000,http://localhost:8000"
    cors_allow_credentials: bool = True

    def get_cors_origins(self) -> List[str]:
        """Parse and return CORS origins as list."""
        return [origin.strip() for origin in self.cors_origins.split(",")]


# Global settings instance
settings = Settings()
