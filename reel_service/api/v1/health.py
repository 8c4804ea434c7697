"""Health check endpoint."""

from fastapi import APIRouter
import platform
import sys

from reel_service.jobs.models import utcnow

router = APIRouter()

_store = None


def set_store(store):
    global _store
    _store = store


@router.get("/health")
async def health_check():
    """Service liveness plus job counts by status."""
    by_status = await _store.count_by_status() if _store is not None else {}
    return {
        "status": "healthy",
        "active_jobs": sum(by_status.values()),
        "jobs_by_status": by_status,
        "timestamp": utcnow().isoformat(),
        "python_version": sys.version,
        "platform": platform.platform(),
    }
