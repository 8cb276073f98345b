import asyncio

import pytest
from unittest.mock import AsyncMock

from chatsync.services.message.main import app, configure_services
from chatsync.services.message.services.threads import (
    ThreadReplyController,
    merge_participants,
    retry_with_backoff,
)
from chatsync.shared.documents import DocumentConflictError, DocumentExistsError
from chatsync.shared.errors import ConcurrencyExhaustedError, NotFoundError, ValidationError

from .conftest import (
    CHANNEL_ID,
    MOCK_USER_ID,
    OTHER_USER_ID,
    RacyStore,
    auth_headers,
    post_message,
)

MESSAGES = "messages"


async def create_root(store, author_id=MOCK_USER_ID, scope_id=CHANNEL_ID):
    return await store.create_document(
        MESSAGES, {"scopeId": scope_id, "authorId": author_id, "text": "root"}
    )


async def thread_replies(store, root_id):
    page = await store.list_documents(MESSAGES, filters={"threadId": root_id}, limit=100)
    return page.documents


# ============================================================================
# Retry helper
# ============================================================================


@pytest.mark.asyncio
async def test_retry_with_backoff_linear_delays():
    sleep = AsyncMock()
    calls = []

    async def operation(attempt):
        calls.append(attempt)
        if attempt < 3:
            raise DocumentConflictError(MESSAGES, "m1", attempt, attempt + 1)
        return "ok"

    result = await retry_with_backoff(operation, attempts=3, base_delay=0.05, sleep=sleep)

    assert result == "ok"
    assert calls == [1, 2, 3]
    assert [c.args[0] for c in sleep.await_args_list] == pytest.approx([0.05, 0.10])


@pytest.mark.asyncio
async def test_retry_with_backoff_exhausted_chains_last_error():
    async def operation(attempt):
        raise DocumentConflictError(MESSAGES, "m1", attempt, attempt + 1)

    with pytest.raises(ConcurrencyExhaustedError) as exc_info:
        await retry_with_backoff(operation, attempts=3, base_delay=0.0, sleep=AsyncMock())

    assert exc_info.value.attempts == 3
    assert isinstance(exc_info.value.__cause__, DocumentConflictError)
    assert exc_info.value.__cause__.expected == 3


@pytest.mark.asyncio
async def test_retry_with_backoff_does_not_retry_domain_errors():
    operation = AsyncMock(side_effect=ValidationError("bad input"))

    with pytest.raises(ValidationError):
        await retry_with_backoff(operation, attempts=3, base_delay=0.0, sleep=AsyncMock())

    assert operation.await_count == 1


def test_merge_participants():
    assert merge_participants(None, "u1") == ["u1"]
    assert merge_participants(["u1"], "u1") == ["u1"]
    assert merge_participants(["u1"], "u2") == ["u1", "u2"]


# ============================================================================
# Controller
# ============================================================================


@pytest.mark.asyncio
async def test_create_reply_updates_root_counters():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)

    reply, root_id = await controller.create_reply(root["id"], OTHER_USER_ID, text="hi")

    assert root_id == root["id"]
    assert reply["threadId"] == root["id"]
    assert reply["scopeId"] == CHANNEL_ID
    updated = await store.get_document(MESSAGES, root["id"])
    assert updated["threadMessageCount"] == 1
    assert updated["threadParticipants"] == [OTHER_USER_ID]
    assert updated["lastThreadReplyAt"] == reply["createdAt"]


@pytest.mark.asyncio
async def test_reply_to_reply_attaches_to_root():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)
    first, _ = await controller.create_reply(root["id"], OTHER_USER_ID, text="first")

    second, root_id = await controller.create_reply(first["id"], MOCK_USER_ID, text="second")

    assert root_id == root["id"]
    assert second["threadId"] == root["id"]
    updated = await store.get_document(MESSAGES, root["id"])
    assert updated["threadMessageCount"] == 2
    assert updated["threadParticipants"] == [OTHER_USER_ID, MOCK_USER_ID]
    assert len(await thread_replies(store, first["id"])) == 0


@pytest.mark.asyncio
async def test_create_reply_missing_parent():
    controller = ThreadReplyController(RacyStore(), base_delay=0.0)

    with pytest.raises(NotFoundError):
        await controller.create_reply("missing", MOCK_USER_ID, text="hi")


@pytest.mark.asyncio
async def test_two_replies_with_conflict():
    # Second replier's first counter write loses the race and is retried
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)
    await controller.create_reply(root["id"], MOCK_USER_ID, text="first")

    store.forced_conflicts = 1
    reply, _ = await controller.create_reply(root["id"], OTHER_USER_ID, text="second")

    assert store.conflicts == 1
    updated = await store.get_document(MESSAGES, root["id"])
    assert updated["threadMessageCount"] == 2
    assert set(updated["threadParticipants"]) == {MOCK_USER_ID, OTHER_USER_ID}
    replies = await thread_replies(store, root["id"])
    assert [r["text"] for r in replies] == ["first", "second"]
    assert replies[1]["id"] == reply["id"]


@pytest.mark.asyncio
async def test_concurrent_replies_converge():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)
    users = ["user-1", "user-2", "user-3"]

    results = await asyncio.gather(
        *(controller.create_reply(root["id"], user, text=user) for user in users)
    )

    assert store.conflicts > 0
    updated = await store.get_document(MESSAGES, root["id"])
    assert updated["threadMessageCount"] == 3
    assert sorted(updated["threadParticipants"]) == users
    replies = await thread_replies(store, root["id"])
    assert len(replies) == 3
    assert {r["id"] for r in replies} == {reply["id"] for reply, _ in results}
    assert updated["lastThreadReplyAt"] in {r["createdAt"] for r in replies}


@pytest.mark.asyncio
async def test_exhausted_retries_never_duplicate_reply():
    store = RacyStore(forced_conflicts=100)
    sleep = AsyncMock()
    controller = ThreadReplyController(store, attempts=3, base_delay=0.05, sleep=sleep)
    root = await create_root(store)

    with pytest.raises(ConcurrencyExhaustedError) as exc_info:
        await controller.create_reply(root["id"], OTHER_USER_ID, text="hi")

    assert exc_info.value.attempts == 3
    assert [c.args[0] for c in sleep.await_args_list] == pytest.approx([0.05, 0.10])
    # The reply was written once and reused by every attempt
    assert len(await thread_replies(store, root["id"])) == 1


@pytest.mark.asyncio
async def test_retry_after_partial_create_reuses_reply():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)

    original_create = store.create_document
    calls = {"count": 0}

    async def create_then_fail(collection, data, document_id=None):
        calls["count"] += 1
        document = await original_create(collection, data, document_id)
        if calls["count"] == 1:
            raise ConnectionError("response lost")
        return document

    store.create_document = create_then_fail

    reply, _ = await controller.create_reply(root["id"], OTHER_USER_ID, text="hi")

    assert calls["count"] == 2
    replies = await thread_replies(store, root["id"])
    assert [r["id"] for r in replies] == [reply["id"]]
    updated = await store.get_document(MESSAGES, root["id"])
    assert updated["threadMessageCount"] == 1


@pytest.mark.asyncio
async def test_existing_reply_id_is_fetched_not_recreated():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)

    original_create = store.create_document

    async def create_raises_exists(collection, data, document_id=None):
        await original_create(collection, data, document_id)
        raise DocumentExistsError(collection, document_id)

    store.create_document = create_raises_exists

    reply, _ = await controller.create_reply(root["id"], OTHER_USER_ID, text="hi")

    assert reply["text"] == "hi"
    assert len(await thread_replies(store, root["id"])) == 1


@pytest.mark.asyncio
async def test_list_replies_pagination():
    store = RacyStore()
    controller = ThreadReplyController(store, base_delay=0.0)
    root = await create_root(store)
    created = []
    for i in range(5):
        reply, _ = await controller.create_reply(root["id"], MOCK_USER_ID, text=f"r{i}")
        created.append(reply["id"])

    parent, replies, total, has_more = await controller.list_replies(root["id"], limit=3)
    assert parent["id"] == root["id"]
    assert [r["id"] for r in replies] == created[:3]
    assert total == 5
    assert has_more is True

    _, replies, _, has_more = await controller.list_replies(
        created[0], limit=3, cursor=replies[-1]["id"]
    )
    assert [r["id"] for r in replies] == created[3:]
    assert has_more is False


# ============================================================================
# Endpoints
# ============================================================================


def test_create_thread_reply_endpoint(client):
    root = post_message(client, text="root")

    response = client.post(
        f"/messages/{root['id']}/thread",
        json={"text": "reply"},
        headers=auth_headers(OTHER_USER_ID, "Bob"),
    )

    assert response.status_code == 201
    data = response.json()
    assert data["threadId"] == root["id"]
    assert data["reply"]["threadId"] == root["id"]
    assert data["reply"]["authorName"] == "Bob"


def test_create_thread_reply_empty_text(client):
    root = post_message(client, text="root")
    response = client.post(f"/messages/{root['id']}/thread", json={"text": ""})
    assert response.status_code == 400


def test_create_thread_reply_parent_not_found(client):
    response = client.post("/messages/missing/thread", json={"text": "reply"})

    assert response.status_code == 404
    assert response.json()["detail"] == "Parent message not found"


def test_get_thread_endpoint(client):
    root = post_message(client, text="root")
    first = client.post(f"/messages/{root['id']}/thread", json={"text": "one"}).json()["reply"]
    client.post(f"/messages/{root['id']}/thread", json={"text": "two"})

    # Any message of the thread resolves to the root
    response = client.get(f"/messages/{first['id']}/thread")

    assert response.status_code == 200
    data = response.json()
    assert data["parentMessage"]["id"] == root["id"]
    assert data["parentMessage"]["threadMessageCount"] == 2
    assert [r["text"] for r in data["replies"]] == ["one", "two"]
    assert data["total"] == 2
    assert data["hasMore"] is False


def test_get_thread_not_found(client):
    assert client.get("/messages/missing/thread").status_code == 404


def test_thread_reply_concurrency_exhausted(client, settings):
    store = RacyStore(forced_conflicts=100)
    configure_services(app, store, settings)
    root = post_message(client, text="root")

    response = client.post(f"/messages/{root['id']}/thread", json={"text": "reply"})

    assert response.status_code == 500
    data = response.json()
    assert data["code"] == "concurrency_exhausted"
    assert data["attempts"] == 3
