from contextlib import asynccontextmanager

import pytest
from unittest.mock import AsyncMock, MagicMock

from chatsync.shared.database import close_db, create_tables, init_db
from chatsync.shared.documents import (
    DocumentConflictError,
    DocumentExistsError,
    DocumentNotFoundError,
    SqlDocumentStore,
    collection_channel,
)

MESSAGES = "messages"


@pytest.fixture
def database_url(tmp_path):
    return f"sqlite+aiosqlite:///{tmp_path}/test.db"


@pytest.fixture
def mock_publisher():
    publisher = MagicMock()
    publisher.publish = AsyncMock()
    return publisher


@asynccontextmanager
async def sql_store(database_url, publisher=None):
    session_factory = init_db(database_url)
    await create_tables()
    try:
        yield SqlDocumentStore(session_factory, database_id="chat", publisher=publisher)
    finally:
        await close_db()


@pytest.mark.asyncio
async def test_create_and_get(database_url):
    async with sql_store(database_url) as store:
        created = await store.create_document(
            MESSAGES, {"scopeId": "c1", "text": "hi", "revision": 7}, document_id="m1"
        )
        fetched = await store.get_document(MESSAGES, "m1")

    assert created["revision"] == 1
    assert fetched == created
    assert fetched["text"] == "hi"
    assert fetched["createdAt"].endswith("+00:00")


@pytest.mark.asyncio
async def test_duplicate_id_raises_exists(database_url):
    async with sql_store(database_url) as store:
        await store.create_document(MESSAGES, {"text": "hi"}, document_id="m1")

        with pytest.raises(DocumentExistsError):
            await store.create_document(MESSAGES, {"text": "again"}, document_id="m1")

        # Same id in another collection is a different document
        await store.create_document("pinned_messages", {"messageId": "m1"}, document_id="m1")


@pytest.mark.asyncio
async def test_get_missing(database_url):
    async with sql_store(database_url) as store:
        with pytest.raises(DocumentNotFoundError):
            await store.get_document(MESSAGES, "missing")


@pytest.mark.asyncio
async def test_list_filters_order_and_cursor(database_url):
    async with sql_store(database_url) as store:
        ids = [f"m{i}" for i in range(5)]
        for message_id in ids:
            await store.create_document(
                MESSAGES, {"scopeId": "c1", "text": message_id}, document_id=message_id
            )
        await store.create_document(
            MESSAGES, {"scopeId": "c1", "threadId": "m0"}, document_id="reply"
        )
        await store.create_document(MESSAGES, {"scopeId": "c2"}, document_id="other")

        top_level = {"scopeId": "c1", "threadId": None}
        newest = await store.list_documents(MESSAGES, filters=top_level, order="desc", limit=2)
        older = await store.list_documents(
            MESSAGES, filters=top_level, order="desc", cursor_after="m3", limit=10
        )
        replies = await store.list_documents(MESSAGES, filters={"threadId": "m0"})

    assert [d["id"] for d in newest.documents] == ["m4", "m3"]
    assert newest.total == 5
    assert [d["id"] for d in older.documents] == ["m2", "m1", "m0"]
    assert [d["id"] for d in replies.documents] == ["reply"]


@pytest.mark.asyncio
async def test_conditional_update(database_url):
    async with sql_store(database_url) as store:
        await store.create_document(MESSAGES, {"count": 0, "text": "root"}, document_id="m1")

        updated = await store.update_document(MESSAGES, "m1", {"count": 1}, expected_revision=1)
        assert updated["revision"] == 2
        assert updated["text"] == "root"

        with pytest.raises(DocumentConflictError):
            await store.update_document(MESSAGES, "m1", {"count": 5}, expected_revision=1)

        current = await store.get_document(MESSAGES, "m1")

    assert current["count"] == 1
    assert current["revision"] == 2


@pytest.mark.asyncio
async def test_update_and_delete_missing(database_url):
    async with sql_store(database_url) as store:
        with pytest.raises(DocumentNotFoundError):
            await store.update_document(MESSAGES, "missing", {"text": "x"})
        with pytest.raises(DocumentNotFoundError):
            await store.delete_document(MESSAGES, "missing")


@pytest.mark.asyncio
async def test_writes_are_published(database_url, mock_publisher):
    channel = collection_channel("chat", MESSAGES)

    async with sql_store(database_url, mock_publisher) as store:
        await store.create_document(MESSAGES, {"text": "hi"}, document_id="m1")
        await store.update_document(MESSAGES, "m1", {"text": "edited"})
        await store.delete_document(MESSAGES, "m1")

    calls = mock_publisher.publish.await_args_list
    assert [c.args[0] for c in calls] == [channel] * 3
    assert [c.args[1]["eventKinds"][0] for c in calls] == [
        f"{channel}.m1.create",
        f"{channel}.m1.update",
        f"{channel}.m1.delete",
    ]
    assert calls[1].args[1]["payload"]["text"] == "edited"


@pytest.mark.asyncio
async def test_failed_write_is_not_published(database_url, mock_publisher):
    async with sql_store(database_url, mock_publisher) as store:
        await store.create_document(MESSAGES, {"count": 0}, document_id="m1")
        mock_publisher.publish.reset_mock()

        with pytest.raises(DocumentConflictError):
            await store.update_document(MESSAGES, "m1", {"count": 1}, expected_revision=3)

    mock_publisher.publish.assert_not_awaited()
