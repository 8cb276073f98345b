import asyncio
from datetime import datetime, timedelta, timezone
from typing import Optional

import pytest

from chatsync.client.enrichment import Profile
from chatsync.shared.documents import collection_channel
from chatsync.shared.models import Message

SCOPE_ID = "channel-general"
OTHER_SCOPE_ID = "channel-random"
MESSAGES_CHANNEL = collection_channel("chat", "messages")
TYPING_CHANNEL = collection_channel("chat", "typing")

BASE_TIME = datetime(2024, 1, 1, tzinfo=timezone.utc)


def timestamp(seconds: float) -> str:
    return (BASE_TIME + timedelta(seconds=seconds)).isoformat(timespec="microseconds")


def make_message(
    message_id: str,
    seconds: float = 0,
    *,
    scope_id: str = SCOPE_ID,
    author_id: str = "user-alice",
    text: Optional[str] = None,
    **fields,
) -> Message:
    return Message(
        id=message_id,
        scope_id=scope_id,
        author_id=author_id,
        text=message_id if text is None else text,
        created_at=timestamp(seconds),
        **fields,
    )


def raw_event(message: Message, action: str, channel: str = MESSAGES_CHANNEL) -> dict:
    payload = message.to_wire()
    return {
        "channel": channel,
        "payload": payload,
        "eventKinds": [f"{channel}.{message.id}.{action}", f"{channel}.*.{action}"],
    }


class FakeProfiles:
    """Profile lookup that records calls and can fail for chosen users."""

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    async def __call__(self, user_id: str) -> Optional[Profile]:
        self.calls.append(user_id)
        await asyncio.sleep(0)
        if user_id in self.failing:
            raise ConnectionError("profile service down")
        return Profile(user_id=user_id, display_name=user_id.upper())


@pytest.fixture
def profiles():
    return FakeProfiles()
