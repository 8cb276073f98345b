"""Message synchronization and counter-concurrency core for a chat service."""

__version__ = "0.1.0"
