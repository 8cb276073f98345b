from chatsync.shared.errors import (
    ChatSyncError,
    ConcurrencyExhaustedError,
    ForbiddenError,
    MessageTooLongError,
    NotFoundError,
    PinLimitReachedError,
    RateLimitedError,
    TransientNetworkError,
    ValidationError,
    error_from_payload,
)
from chatsync.shared.models import Message


def test_error_from_payload_by_code():
    error = error_from_payload(400, "message_too_long", "too long", max_length=2000)

    assert isinstance(error, MessageTooLongError)
    assert isinstance(error, ValidationError)
    assert error.max_length == 2000
    assert error.message == "too long"


def test_error_from_payload_extras():
    pin = error_from_payload(409, "pin_limit_reached", None, limit=50)
    rate = error_from_payload(429, "rate_limited", "slow down", retry_after=3.5)
    exhausted = error_from_payload(500, "concurrency_exhausted", "failed", attempts=3)

    assert isinstance(pin, PinLimitReachedError)
    assert pin.limit == 50
    assert isinstance(rate, RateLimitedError)
    assert rate.retry_after == 3.5
    assert isinstance(exhausted, ConcurrencyExhaustedError)
    assert exhausted.attempts == 3


def test_error_from_payload_falls_back_to_status():
    assert isinstance(error_from_payload(403, None, "nope"), ForbiddenError)
    assert isinstance(error_from_payload(404, "unknown_code", "gone"), NotFoundError)
    assert isinstance(error_from_payload(503, None, None), TransientNetworkError)

    generic = error_from_payload(502, None, None)
    assert type(generic) is ChatSyncError
    assert generic.status_code == 500


def test_error_default_messages():
    assert NotFoundError().message == "Resource not found."
    assert str(MessageTooLongError(2000)) == "Message cannot exceed 2000 characters"


def test_message_round_trips_camel_case():
    message = Message.model_validate(
        {
            "id": "m1",
            "scopeId": "c1",
            "authorId": "u1",
            "text": "hi",
            "createdAt": "2024-01-01T00:00:00.000000+00:00",
            "revision": 3,
        }
    )

    wire = message.to_wire()

    assert wire["scopeId"] == "c1"
    assert wire["threadMessageCount"] == 0
    assert "revision" not in wire
    assert message.is_thread_reply is False


def test_message_sort_key_breaks_ties_by_id():
    created_at = "2024-01-01T00:00:00.000000+00:00"
    a = Message(id="a", scope_id="c1", author_id="u1", created_at=created_at)
    b = Message(id="b", scope_id="c1", author_id="u1", created_at=created_at)

    assert sorted([b, a], key=lambda m: m.sort_key) == [a, b]


def test_message_merged_only_copies_set_fields():
    base = Message(id="m1", scope_id="c1", author_id="u1", text="hi", created_at="t1")
    patch = Message.model_validate(
        {"id": "m1", "scopeId": "c1", "authorId": "u1", "createdAt": "t1", "removedAt": "t2"}
    )

    merged = base.merged(patch)

    assert merged.text == "hi"
    assert merged.removed_at == "t2"
    assert merged.is_removed is True
