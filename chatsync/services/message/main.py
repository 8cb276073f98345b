"""Main application for Message Service."""

import logging
import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.openapi.utils import get_openapi
from fastapi.responses import JSONResponse
from prometheus_fastapi_instrumentator import Instrumentator

from chatsync.shared.database import close_db, init_db
from chatsync.shared.documents import (
    DocumentNotFoundError,
    DocumentStore,
    InMemoryDocumentStore,
    SqlDocumentStore,
)
from chatsync.shared.errors import ChatSyncError

from .config import Settings, settings
from .middleware import AuthMiddleware
from .routers import health, messages, pins, presence, reactions, threads
from .services.kafka_producer import kafka_producer
from .services.pins import PinService
from .services.rate_limiter import RateLimiter
from .services.threads import ThreadReplyController

# Configure logging
logging.basicConfig(
    level=logging.DEBUG if settings.debug else logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)


def configure_services(
    app: FastAPI,
    store: DocumentStore,
    app_settings: Optional[Settings] = None,
) -> None:
    """Attach the document store and the services built on it to ``app.state``."""
    app_settings = app_settings or settings

    app.state.settings = app_settings
    app.state.store = store
    app.state.thread_controller = ThreadReplyController(
        store,
        collection=app_settings.messages_collection,
        attempts=app_settings.thread_retry_attempts,
        base_delay=app_settings.thread_retry_base_delay,
    )
    app.state.pin_service = PinService(
        store,
        pins_collection=app_settings.pinned_messages_collection,
        messages_collection=app_settings.messages_collection,
        limit=app_settings.pin_limit,
    )
    app.state.message_rate_limiter = RateLimiter(
        app_settings.message_rate_limit,
        app_settings.message_rate_window,
    )


def reset_services(app: FastAPI) -> None:
    for name in ("store", "thread_controller", "pin_service", "message_rate_limiter"):
        if hasattr(app.state, name):
            delattr(app.state, name)
    app.state.settings = settings


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Lifespan context manager for startup and shutdown events."""
    # Startup
    logger.info("Starting Message Service...")

    # A store injected before startup (tests, embedding) is left alone
    owns_store = getattr(app.state, "store", None) is None

    if owns_store:
        if settings.kafka_enabled:
            await kafka_producer.start()
            if kafka_producer.producer is None:
                logger.warning("Continuing without Kafka - events will not be published")

        if settings.database_url:
            session_factory = init_db(settings.database_url, echo=settings.database_echo)
            store: DocumentStore = SqlDocumentStore(
                session_factory,
                database_id=settings.database_id,
                publisher=kafka_producer if settings.kafka_enabled else None,
            )
            logger.info("Database initialized")
        else:
            store = InMemoryDocumentStore(settings.database_id)
            logger.warning("DATABASE_URL not set - using the in-memory document store")

        configure_services(app, store, settings)

    logger.info("Message Service started successfully")

    yield

    # Shutdown
    logger.info("Shutting down Message Service...")

    if owns_store:
        await app.state.store.close()
        reset_services(app)
        await kafka_producer.stop()
        await close_db()

    logger.info("Message Service shut down successfully")


# Create FastAPI app
app = FastAPI(
    title="Chatsync Message Service",
    description="Messages, threads, pins, reactions and typing indicators",
    version=settings.service_version,
    lifespan=lifespan,
    swagger_ui_parameters={
        "persistAuthorization": True,
    },
)
app.state.settings = settings

# Prometheus metrics
Instrumentator().instrument(app).expose(app)


def custom_openapi():
    """Customize OpenAPI schema to add security."""
    if app.openapi_schema:
        return app.openapi_schema

    openapi_schema = get_openapi(
        title=app.title,
        version=app.version,
        description=app.description,
        routes=app.routes,
    )

    openapi_schema.setdefault("components", {}).setdefault("securitySchemes", {})
    openapi_schema["components"]["securitySchemes"]["HTTPBearer"] = {
        "type": "http",
        "scheme": "bearer",
        "bearerFormat": "JWT",
    }

    # Apply security globally to all endpoints except health and metrics
    for path, path_item in openapi_schema["paths"].items():
        if not path.startswith(("/health", "/metrics")):
            for operation in path_item.values():
                if isinstance(operation, dict):
                    operation["security"] = [{"HTTPBearer": []}]

    app.openapi_schema = openapi_schema
    return app.openapi_schema


app.openapi = custom_openapi  # type: ignore


# ============================================================================
# Error Handlers
# ============================================================================


def error_body(exc: ChatSyncError) -> dict:
    body = {"detail": exc.message, "code": exc.code}
    for attr, key in (
        ("max_length", "maxLength"),
        ("limit", "limit"),
        ("retry_after", "retryAfter"),
        ("attempts", "attempts"),
    ):
        value = getattr(exc, attr, None)
        if value is not None:
            body[key] = value
    return body


@app.exception_handler(ChatSyncError)
async def chatsync_error_handler(request: Request, exc: ChatSyncError):
    if exc.status_code >= 500:
        logger.error(f"{request.method} {request.url.path} failed: {exc}", exc_info=exc)
    headers = None
    retry_after = getattr(exc, "retry_after", None)
    if retry_after is not None:
        headers = {"Retry-After": str(max(1, math.ceil(retry_after)))}
    return JSONResponse(status_code=exc.status_code, content=error_body(exc), headers=headers)


@app.exception_handler(DocumentNotFoundError)
async def document_not_found_handler(request: Request, exc: DocumentNotFoundError):
    return JSONResponse(status_code=404, content={"detail": str(exc), "code": "not_found"})


# Add authentication middleware FIRST (middleware runs in reverse order)
app.add_middleware(AuthMiddleware)

# Add CORS middleware (runs first due to reverse order)
app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.get_cors_origins(),
    allow_credentials=settings.cors_allow_credentials,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Include routers
app.include_router(health.router, tags=["Health"])
app.include_router(messages.router, tags=["Messages"])
app.include_router(threads.router, tags=["Threads"])
app.include_router(pins.router, tags=["Pins"])
app.include_router(reactions.router, tags=["Reactions"])
app.include_router(presence.router, tags=["Typing"])


@app.get("/")
async def root():
    """Root endpoint."""
    return {
        "service": "message",
        "version": settings.service_version,
        "status": "running",
    }


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(
        "chatsync.services.message.main:app",
        host="0.0.0.0",
        port=settings.port,
        reload=settings.debug,
    )
