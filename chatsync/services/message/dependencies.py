"""Common dependencies for Message Service."""

from dataclasses import dataclass
from typing import Optional

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPBearer

from chatsync.shared.documents import DocumentStore

from .config import Settings
from .services.pins import PinService
from .services.rate_limiter import RateLimiter
from .services.threads import ThreadReplyController

# Security scheme for Swagger UI
security = HTTPBearer(auto_error=False)


@dataclass
class CurrentUser:
    """Caller identity taken from the bearer token."""

    id: str
    name: Optional[str] = None


async def get_current_user_id(request: Request) -> str:
    """Get current user ID from authentication middleware.

    This is set by the AuthMiddleware after decoding the JWT token.
    """
    user_id = getattr(request.state, "user_id", None)
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
        )
    return user_id


async def get_current_user(
    request: Request,
    user_id: str = Depends(get_current_user_id),
) -> CurrentUser:
    return CurrentUser(id=user_id, name=getattr(request.state, "user_name", None))


def get_settings(request: Request) -> Settings:
    return request.app.state.settings


def get_store(request: Request) -> DocumentStore:
    return request.app.state.store


def get_thread_controller(request: Request) -> ThreadReplyController:
    return request.app.state.thread_controller


def get_pin_service(request: Request) -> PinService:
    return request.app.state.pin_service


def get_message_rate_limiter(request: Request) -> RateLimiter:
    return request.app.state.message_rate_limiter


def get_page_limit(
    limit: Optional[int] = None,
    settings: Settings = Depends(get_settings),
) -> int:
    """Clamp the requested page size to ``[1, max_page_size]``."""
    if limit is None:
        return settings.default_page_size
    return max(1, min(limit, settings.max_page_size))
