"""Typed realtime events.

Push notifications arrive as untyped ``{"payload", "eventKinds"}`` dicts.
``parse_realtime_event`` validates them into one of three concrete event
types before any store or dispatcher logic sees them.
"""

from dataclasses import dataclass
from enum import Enum
from typing import Any, Mapping, Optional, Sequence, Union

from pydantic import ValidationError as PydanticValidationError

from chatsync.shared.errors import InvalidEventError
from chatsync.shared.models import Message


class EventKind(str, Enum):
    CREATE = "create"
    UPDATE = "update"
    DELETE = "delete"


# Checked in this order when an event carries several kinds
KIND_PRECEDENCE = (EventKind.CREATE, EventKind.UPDATE, EventKind.DELETE)


@dataclass(frozen=True)
class MessageCreated:
    message: Message

    @property
    def message_id(self) -> str:
        return self.message.id


@dataclass(frozen=True)
class MessageUpdated:
    message: Message

    @property
    def message_id(self) -> str:
        return self.message.id


@dataclass(frozen=True)
class MessageDeleted:
    message: Message

    @property
    def message_id(self) -> str:
        return self.message.id


MessageEvent = Union[MessageCreated, MessageUpdated, MessageDeleted]

EVENT_TYPES = {
    EventKind.CREATE: MessageCreated,
    EventKind.UPDATE: MessageUpdated,
    EventKind.DELETE: MessageDeleted,
}


def event_kind(event_kinds: Sequence[str]) -> Optional[EventKind]:
    """First kind, by precedence, that any of ``event_kinds`` ends with."""
    for kind in KIND_PRECEDENCE:
        suffix = f".{kind.value}"
        if any(str(name).endswith(suffix) for name in event_kinds):
            return kind
    return None


def parse_realtime_event(raw: Mapping[str, Any]) -> MessageEvent:
    """Convert a raw push notification into a typed message event.

    Raises ``InvalidEventError`` when the payload is not a message or no
    event kind is recognised.
    """
    if not isinstance(raw, Mapping):
        raise InvalidEventError(f"Realtime event must be an object, got {type(raw).__name__}")

    kinds = raw.get("eventKinds") or raw.get("events") or []
    if isinstance(kinds, str) or not isinstance(kinds, Sequence):
        raise InvalidEventError("eventKinds must be a list of strings")

    kind = event_kind(kinds)
    if kind is None:
        raise InvalidEventError(f"Unrecognised event kinds: {list(kinds)}")

    payload = raw.get("payload")
    if not isinstance(payload, Mapping):
        raise InvalidEventError("Realtime event has no payload")

    try:
        message = Message.model_validate(payload)
    except PydanticValidationError as e:
        raise InvalidEventError(f"Invalid message payload: {e.error_count()} errors") from e

    return EVENT_TYPES[kind](message)
