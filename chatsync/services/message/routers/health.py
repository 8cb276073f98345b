"""Health check endpoints for Message Service."""

from datetime import datetime, timezone

from fastapi import APIRouter, Depends

from chatsync.shared.documents import DocumentStore

from ..config import Settings
from ..dependencies import get_settings, get_store

router = APIRouter()


@router.get("/health")
async def health_check(settings: Settings = Depends(get_settings)):
    """Basic health check endpoint.

    Returns service status without checking dependencies.
    """
    return {
        "status": "healthy",
        "service": settings.service_name,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


@router.get("/health/ready")
async def readiness_check(
    store: DocumentStore = Depends(get_store),
    settings: Settings = Depends(get_settings),
):
    """Readiness check endpoint.

    Checks if service is ready to accept requests by verifying:
    - Document store connectivity
    """
    try:
        await store.list_documents(settings.messages_collection, limit=1)

        return {
            "status": "ready",
            "service": settings.service_name,
            "database": "connected",
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
    except Exception as e:
        return {
            "status": "not_ready",
            "service": settings.service_name,
            "database": "disconnected",
            "error": str(e),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
