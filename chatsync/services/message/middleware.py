"""Middleware for Message Service."""

import base64
import json
import logging
from typing import Callable

from fastapi import Request, Response, status
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

logger = logging.getLogger(__name__)


class AuthMiddleware(BaseHTTPMiddleware):
    """Middleware to extract user information from JWT token.

    The token has already been validated upstream, so we only decode the
    payload and keep the ``sub`` (user id) and ``name`` claims.
    """

    # Public paths that don't require authentication
    PUBLIC_PATHS = [
        "/",
        "/health",
        "/health/ready",
        "/metrics",
        "/docs",
        "/redoc",
        "/openapi.json",
    ]

    async def dispatch(self, request: Request, call_next: Callable) -> Response:
        """Process request and extract user info from JWT."""
        # Allow public paths
        if request.url.path in self.PUBLIC_PATHS:
            return await call_next(request)

        # Allow OPTIONS requests (CORS preflight)
        if request.method == "OPTIONS":
            return await call_next(request)

        auth_header = request.headers.get("Authorization")
        if not auth_header:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Missing Authorization header"},
            )

        try:
            scheme, token = auth_header.split()
            if scheme.lower() != "bearer":
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={"detail": "Invalid authentication scheme"},
                )
        except ValueError:
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid Authorization header format"},
            )

        try:
            # JWT structure: header.payload.signature
            parts = token.split(".")
            if len(parts) != 3:
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={"detail": "Invalid token format"},
                )

            payload = parts[1]
            payload += "=" * (-len(payload) % 4)
            payload_data = json.loads(base64.urlsafe_b64decode(payload))

            user_id = payload_data.get("sub")
            if not user_id:
                return JSONResponse(
                    status_code=status.HTTP_401_UNAUTHORIZED,
                    content={"detail": "Missing user ID in token"},
                )

            request.state.user_id = str(user_id)
            request.state.user_name = payload_data.get("name") or payload_data.get(
                "preferred_username"
            )

        except (ValueError, TypeError, AttributeError) as e:
            logger.error(f"Error decoding JWT: {e}")
            return JSONResponse(
                status_code=status.HTTP_401_UNAUTHORIZED,
                content={"detail": "Invalid token"},
            )

        return await call_next(request)
