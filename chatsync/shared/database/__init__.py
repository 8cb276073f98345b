"""Shared database components for chatsync.

This package provides:
- Base SQLAlchemy model class
- Database engine and session management
- The ``documents`` table model
"""

from chatsync.shared.database.base import (
    Base,
    TimestampMixin,
    close_db,
    create_tables,
    init_db,
    session_scope,
)
from chatsync.shared.database.models import DocumentRecord

__all__ = [
    # Base classes
    "Base",
    "TimestampMixin",
    # Database functions
    "init_db",
    "create_tables",
    "session_scope",
    "close_db",
    # Models
    "DocumentRecord",
]
