"""Client synchronization core: local stores kept in sync with the message service."""

from .api_client import ChatApiClient, MessagePage, ThreadPage
from .config import ClientSettings
from .dispatcher import RealtimeEventDispatcher
from .enrichment import MessageEnricher, Profile, ProfileCache
from .events import (
    EventKind,
    MessageCreated,
    MessageDeleted,
    MessageEvent,
    MessageUpdated,
    parse_realtime_event,
)
from .pagination import CursorPaginationManager
from .presence import TypingDebouncer, TypingPresence, TypingState
from .send import ComposeState, FloodGuard, OptimisticSendPipeline
from .session import ConversationSync
from .store import MessageStore, ThreadStore

__all__ = [
    "ChatApiClient",
    "ClientSettings",
    "ComposeState",
    "ConversationSync",
    "CursorPaginationManager",
    "EventKind",
    "FloodGuard",
    "MessageCreated",
    "MessageDeleted",
    "MessageEnricher",
    "MessageEvent",
    "MessagePage",
    "MessageStore",
    "MessageUpdated",
    "OptimisticSendPipeline",
    "Profile",
    "ProfileCache",
    "RealtimeEventDispatcher",
    "ThreadPage",
    "ThreadStore",
    "TypingDebouncer",
    "TypingPresence",
    "TypingState",
    "parse_realtime_event",
]
