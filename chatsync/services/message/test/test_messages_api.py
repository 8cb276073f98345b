from .conftest import CHANNEL_ID, MOCK_USER_ID, OTHER_USER_ID, auth_headers, post_message

# ============================================================================
# Send
# ============================================================================


def test_send_message_success(client):
    # Execute
    response = client.post("/messages", json={"text": "Hello", "channelId": CHANNEL_ID})

    # Verify
    assert response.status_code == 201
    message = response.json()["message"]
    assert message["text"] == "Hello"
    assert message["scopeId"] == CHANNEL_ID
    assert message["scopeType"] == "channel"
    assert message["authorId"] == MOCK_USER_ID
    assert message["authorName"] == "Alice"
    assert message["threadMessageCount"] == 0
    assert message["id"]
    assert message["createdAt"]


def test_send_message_with_image_only(client):
    message = post_message(client, text="", imageRef="file-123")
    assert message["imageRef"] == "file-123"
    assert message["text"] == ""


def test_send_empty_message_rejected(client):
    response = client.post("/messages", json={"text": "   ", "channelId": CHANNEL_ID})

    assert response.status_code == 400
    assert response.json()["code"] == "validation_error"


def test_send_too_long_message_rejected(client):
    response = client.post("/messages", json={"text": "x" * 2001, "channelId": CHANNEL_ID})

    assert response.status_code == 400
    data = response.json()
    assert data["code"] == "message_too_long"
    assert data["maxLength"] == 2000


def test_send_message_at_max_length(client):
    message = post_message(client, text="x" * 2000)
    assert len(message["text"]) == 2000


def test_send_message_missing_channel(client):
    response = client.post("/messages", json={"text": "Hello"})
    assert response.status_code == 422


def test_send_message_rate_limited(client):
    for i in range(10):
        post_message(client, text=f"message {i}")

    response = client.post("/messages", json={"text": "one too many", "channelId": CHANNEL_ID})

    assert response.status_code == 429
    data = response.json()
    assert data["code"] == "rate_limited"
    assert data["retryAfter"] > 0
    assert int(response.headers["Retry-After"]) >= 1

    # Other users have their own budget
    other = client.post(
        "/messages",
        json={"text": "hi", "channelId": CHANNEL_ID},
        headers=auth_headers(OTHER_USER_ID, "Bob"),
    )
    assert other.status_code == 201


# ============================================================================
# List
# ============================================================================


def test_list_messages_empty(client):
    response = client.get("/messages", params={"channelId": CHANNEL_ID})

    assert response.status_code == 200
    assert response.json() == {"items": [], "hasMore": False}


def test_list_messages_oldest_first_with_has_more(client, store):
    ids = []
    for i in range(5):
        ids.append(post_message(client, text=f"m{i}", headers=auth_headers(f"user-{i}"))["id"])

    response = client.get("/messages", params={"channelId": CHANNEL_ID, "limit": 3})

    assert response.status_code == 200
    data = response.json()
    assert [m["id"] for m in data["items"]] == ids[2:]
    assert data["hasMore"] is True

    # Older page
    response = client.get(
        "/messages",
        params={"channelId": CHANNEL_ID, "limit": 3, "cursor": data["items"][0]["id"]},
    )
    data = response.json()
    assert [m["id"] for m in data["items"]] == ids[:2]
    assert data["hasMore"] is False


def test_list_messages_exact_page_has_no_more(client):
    for i in range(3):
        post_message(client, text=f"m{i}")

    data = client.get("/messages", params={"channelId": CHANNEL_ID, "limit": 3}).json()

    assert len(data["items"]) == 3
    assert data["hasMore"] is False


def test_list_messages_excludes_thread_replies_and_other_scopes(client):
    root = post_message(client, text="root")
    post_message(client, text="elsewhere", channel_id="channel-random")
    client.post(f"/messages/{root['id']}/thread", json={"text": "reply"})

    data = client.get("/messages", params={"channelId": CHANNEL_ID}).json()

    assert [m["id"] for m in data["items"]] == [root["id"]]


def test_list_messages_unknown_cursor(client):
    response = client.get("/messages", params={"channelId": CHANNEL_ID, "cursor": "missing"})
    assert response.status_code == 404


# ============================================================================
# Edit / Remove
# ============================================================================


def test_edit_message_success(client, store):
    message = post_message(client)

    response = client.patch("/messages", params={"id": message["id"]}, json={"text": "Edited"})

    assert response.status_code == 200
    assert response.json() == {}
    data = client.get("/messages", params={"channelId": CHANNEL_ID}).json()
    assert data["items"][0]["text"] == "Edited"
    assert data["items"][0]["editedAt"] is not None


def test_edit_message_not_author(client):
    message = post_message(client)

    response = client.patch(
        "/messages",
        params={"id": message["id"]},
        json={"text": "Hijacked"},
        headers=auth_headers(OTHER_USER_ID, "Bob"),
    )

    assert response.status_code == 403
    assert response.json()["code"] == "forbidden"


def test_edit_message_not_found(client):
    response = client.patch("/messages", params={"id": "missing"}, json={"text": "x"})
    assert response.status_code == 404
    assert response.json()["code"] == "not_found"


def test_edit_message_empty_text_rejected(client):
    message = post_message(client)
    response = client.patch("/messages", params={"id": message["id"]}, json={"text": ""})
    assert response.status_code == 400


def test_remove_message_soft_deletes(client):
    message = post_message(client)

    response = client.delete("/messages", params={"id": message["id"]})

    assert response.status_code == 200
    items = client.get("/messages", params={"channelId": CHANNEL_ID}).json()["items"]
    assert len(items) == 1
    assert items[0]["removedAt"] is not None
    assert items[0]["removedBy"] == MOCK_USER_ID

    # Removing twice is a no-op
    removed_at = items[0]["removedAt"]
    assert client.delete("/messages", params={"id": message["id"]}).status_code == 200
    items = client.get("/messages", params={"channelId": CHANNEL_ID}).json()["items"]
    assert items[0]["removedAt"] == removed_at


def test_remove_message_not_author(client):
    message = post_message(client)

    response = client.delete(
        "/messages",
        params={"id": message["id"]},
        headers=auth_headers(OTHER_USER_ID, "Bob"),
    )

    assert response.status_code == 403


def test_edit_removed_message_rejected(client):
    message = post_message(client)
    client.delete("/messages", params={"id": message["id"]})

    response = client.patch("/messages", params={"id": message["id"]}, json={"text": "back"})

    assert response.status_code == 400
