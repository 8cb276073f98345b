"""Error taxonomy shared by the message service and the client core.

Every error carries the HTTP status the service answers with and a stable
``code`` string, so the client can map a response back to the same class.
"""

from typing import Dict, Optional, Type


class ChatSyncError(Exception):
    """Base class for all chatsync errors."""

    status_code: int = 500
    code: str = "internal_error"

    def __init__(self, message: Optional[str] = None):
        super().__init__(message or self.__class__.__doc__ or self.code)
        self.message = message or self.__class__.__doc__ or self.code


class ValidationError(ChatSyncError):
    """Invalid input."""

    status_code = 400
    code = "validation_error"


class MessageTooLongError(ValidationError):
    """Message exceeds the maximum length."""

    code = "message_too_long"

    def __init__(self, max_length: int, message: Optional[str] = None):
        super().__init__(message or f"Message cannot exceed {max_length} characters")
        self.max_length = max_length


class RateLimitedError(ChatSyncError):
    """Too many requests, please try again later."""

    status_code = 429
    code = "rate_limited"

    def __init__(self, message: Optional[str] = None, retry_after: Optional[float] = None):
        super().__init__(message)
        self.retry_after = retry_after


class NotFoundError(ChatSyncError):
    """Resource not found."""

    status_code = 404
    code = "not_found"


class ForbiddenError(ChatSyncError):
    """Permission denied."""

    status_code = 403
    code = "forbidden"


class ConflictError(ChatSyncError):
    """Request conflicts with the current state."""

    status_code = 409
    code = "conflict"


class PinLimitReachedError(ConflictError):
    """Pin limit reached for this context."""

    code = "pin_limit_reached"

    def __init__(self, limit: int, message: Optional[str] = None):
        super().__init__(message or f"Pin limit of {limit} reached")
        self.limit = limit


class ConcurrencyExhaustedError(ChatSyncError):
    """Operation failed after retries."""

    status_code = 500
    code = "concurrency_exhausted"

    def __init__(self, message: Optional[str] = None, attempts: int = 0):
        super().__init__(message)
        self.attempts = attempts


class TransientNetworkError(ChatSyncError):
    """Network is temporarily unavailable."""

    status_code = 503
    code = "transient_network"


class InvalidEventError(ChatSyncError):
    """Realtime event could not be parsed."""

    status_code = 400
    code = "invalid_event"


ERRORS_BY_CODE: Dict[str, Type[ChatSyncError]] = {
    cls.code: cls
    for cls in (
        ChatSyncError,
        ValidationError,
        MessageTooLongError,
        RateLimitedError,
        NotFoundError,
        ForbiddenError,
        ConflictError,
        PinLimitReachedError,
        ConcurrencyExhaustedError,
        TransientNetworkError,
        InvalidEventError,
    )
}

ERRORS_BY_STATUS: Dict[int, Type[ChatSyncError]] = {
    400: ValidationError,
    403: ForbiddenError,
    404: NotFoundError,
    409: ConflictError,
    429: RateLimitedError,
    503: TransientNetworkError,
}


def error_from_payload(
    status_code: int,
    code: Optional[str],
    message: Optional[str],
    **extra,
) -> ChatSyncError:
    """Rebuild an error from a service error response."""
    cls = ERRORS_BY_CODE.get(code or "") or ERRORS_BY_STATUS.get(status_code, ChatSyncError)

    if cls is MessageTooLongError:
        return MessageTooLongError(extra.get("max_length") or 0, message)
    if cls is PinLimitReachedError:
        return PinLimitReachedError(extra.get("limit") or 0, message)
    if cls is RateLimitedError:
        return RateLimitedError(message, retry_after=extra.get("retry_after"))
    if cls is ConcurrencyExhaustedError:
        return ConcurrencyExhaustedError(message, attempts=extra.get("attempts") or 0)
    return cls(message)
