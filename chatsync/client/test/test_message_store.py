import random

import pytest

from chatsync.client.events import MessageCreated, MessageDeleted, MessageUpdated
from chatsync.client.store import MessageStore, ThreadStore
from chatsync.shared.models import Message

from .conftest import make_message


def expected_order(messages):
    return [m.id for m in sorted(messages, key=lambda m: (m.created_at, m.id))]


def test_create_inserts_in_order():
    store = MessageStore()

    store.apply(MessageCreated(make_message("b", 2)))
    store.apply(MessageCreated(make_message("a", 1)))
    store.apply(MessageCreated(make_message("c", 3)))

    assert store.ids == ["a", "b", "c"]
    assert store.oldest.id == "a"
    assert store.newest.id == "c"


def test_identical_timestamps_ordered_by_id():
    store = MessageStore()

    for message_id in ["m3", "m1", "m2"]:
        store.apply(MessageCreated(make_message(message_id, 5)))

    assert store.ids == ["m1", "m2", "m3"]


def test_create_is_idempotent():
    changes = []
    store = MessageStore(on_change=lambda: changes.append(1))
    message = make_message("a", 1)

    assert store.apply(MessageCreated(message)) is True
    assert store.apply(MessageCreated(message.model_copy(update={"text": "echo"}))) is False

    assert len(store) == 1
    assert store.get("a").text == "a"
    assert len(changes) == 1


def test_update_merges_set_fields():
    store = MessageStore()
    store.add(make_message("a", 1, display_name="Alice"))
    patch = Message.model_validate(
        {
            "id": "a",
            "scopeId": "channel-general",
            "authorId": "user-alice",
            "createdAt": store.get("a").created_at,
            "text": "edited",
            "editedAt": "2024-01-01T00:01:00+00:00",
        }
    )

    assert store.apply(MessageUpdated(patch)) is True

    updated = store.get("a")
    assert updated.text == "edited"
    assert updated.edited_at is not None
    assert updated.display_name == "Alice"


def test_update_absent_is_noop():
    changes = []
    store = MessageStore(on_change=lambda: changes.append(1))

    assert store.apply(MessageUpdated(make_message("ghost", 1))) is False
    assert len(store) == 0
    assert changes == []


def test_update_that_changes_sort_key_reorders():
    store = MessageStore()
    store.extend([make_message("a", 1), make_message("b", 2)])

    store.update(make_message("a", 3))

    assert store.ids == ["b", "a"]


def test_delete_removes_and_absent_is_noop():
    store = MessageStore()
    store.extend([make_message("a", 1), make_message("b", 2)])

    assert store.apply(MessageDeleted(make_message("a", 1))) is True
    assert store.apply(MessageDeleted(make_message("a", 1))) is False
    assert store.ids == ["b"]
    assert "a" not in store


def test_extend_signals_once():
    changes = []
    store = MessageStore(on_change=lambda: changes.append(1))
    store.add(make_message("c", 3))
    changes.clear()

    added = store.extend([make_message("a", 1), make_message("b", 2), make_message("c", 3)])

    assert added == 2
    assert store.ids == ["a", "b", "c"]
    assert changes == [1]


def test_reset_replaces_contents():
    store = MessageStore()
    store.extend([make_message("a", 1)])

    store.reset([make_message("z", 9)])

    assert store.ids == ["z"]
    store.reset()
    assert len(store) == 0


def test_listener_errors_do_not_corrupt_store():
    def broken():
        raise RuntimeError("render failed")

    store = MessageStore(on_change=broken)
    store.add(make_message("a", 1))

    assert store.ids == ["a"]


@pytest.mark.parametrize("seed", range(10))
def test_random_event_sequences_stay_sorted_and_unique(seed):
    rng = random.Random(seed)
    store = MessageStore()
    pool = [make_message(f"m{i:02d}", rng.randint(0, 5)) for i in range(30)]
    live = {}

    for _ in range(200):
        message = rng.choice(pool)
        action = rng.choice(["create", "create", "update", "delete"])
        if action == "create":
            store.apply(MessageCreated(message))
            live.setdefault(message.id, message)
        elif action == "update":
            store.apply(MessageUpdated(message.model_copy(update={"text": "edited"})))
            if message.id in live:
                live[message.id] = live[message.id].model_copy(update={"text": "edited"})
        else:
            store.apply(MessageDeleted(message))
            live.pop(message.id, None)

        assert len(store.ids) == len(set(store.ids))

    assert store.ids == expected_order(live.values())
    assert [m.text for m in store] == [live[i].text for i in store.ids]


def test_thread_store_keeps_one_store_per_root():
    changed = []
    threads = ThreadStore(on_change=changed.append)

    first = threads.open("root-1")
    assert threads.open("root-1") is first
    first.add(make_message("r1", 1, thread_id="root-1"))

    assert changed == ["root-1"]
    assert threads.is_open("root-1")
    assert threads.get("root-2") is None

    threads.close("root-1")
    assert threads.open_roots == []
