import base64
import json

import pytest
from fastapi.testclient import TestClient
from unittest.mock import AsyncMock, patch

from chatsync.services.message.config import Settings
from chatsync.services.message.main import app, configure_services, reset_services
from chatsync.shared.documents import DocumentConflictError, InMemoryDocumentStore

MOCK_USER_ID = "user-alice"
OTHER_USER_ID = "user-bob"
CHANNEL_ID = "channel-general"


def make_token(user_id: str, name: str = None) -> str:
    """Unsigned JWT; the service only decodes the payload."""

    def encode(data: dict) -> str:
        raw = json.dumps(data).encode("utf-8")
        return base64.urlsafe_b64encode(raw).rstrip(b"=").decode("ascii")

    claims = {"sub": user_id}
    if name:
        claims["name"] = name
    return f"{encode({'alg': 'none', 'typ': 'JWT'})}.{encode(claims)}.signature"


def auth_headers(user_id: str = MOCK_USER_ID, name: str = "Alice") -> dict:
    return {"Authorization": f"Bearer {make_token(user_id, name)}"}


@pytest.fixture
def settings():
    return Settings(
        _env_file=None,
        kafka_enabled=False,
        thread_retry_base_delay=0.0,
    )


@pytest.fixture
def store():
    return InMemoryDocumentStore()


@pytest.fixture
def mock_kafka_producer():
    with patch("chatsync.services.message.main.kafka_producer") as mock:
        mock.start = AsyncMock()
        mock.stop = AsyncMock()
        yield mock


@pytest.fixture
def client(store, settings, mock_kafka_producer):
    configure_services(app, store, settings)

    with TestClient(app) as c:
        c.headers.update(auth_headers())
        yield c

    app.dependency_overrides.clear()
    reset_services(app)


def post_message(client, text="Hello", channel_id=CHANNEL_ID, headers=None, **extra):
    body = {"text": text, "channelId": channel_id, **extra}
    response = client.post("/messages", json=body, headers=headers)
    assert response.status_code == 201, response.text
    return response.json()["message"]


class RacyStore(InMemoryDocumentStore):
    """Memory store that can lose races on conditional updates.

    While ``forced_conflicts`` is positive, every conditional update is
    preceded by a write from "another client" that bumps the revision.
    """

    def __init__(self, forced_conflicts: int = 0):
        super().__init__()
        self.forced_conflicts = forced_conflicts
        self.conflicts = 0

    async def update_document(self, collection, document_id, data, expected_revision=None):
        if expected_revision is not None and self.forced_conflicts > 0:
            self.forced_conflicts -= 1
            await super().update_document(collection, document_id, {})
        try:
            return await super().update_document(
                collection, document_id, data, expected_revision=expected_revision
            )
        except DocumentConflictError:
            self.conflicts += 1
            raise
