"""Job enumeration (debugging aid)."""

from fastapi import APIRouter, HTTPException

router = APIRouter()

# Set by main.py during lifespan (same pattern as convert.py)
_store = None


def set_store(store):
    global _store
    _store = store


@router.get("/jobs")
async def list_jobs():
    if _store is None:
        raise HTTPException(status_code=503, detail="Job store not initialized")

    jobs = sorted(await _store.list(), key=lambda j: j.created_at)
    return {
        "total": len(jobs),
        "jobs": [
            {
                "job_id": job.id,
                "status": job.status.value,
                "progress": job.progress,
                "created_at": job.created_at.isoformat(),
            }
            for job in jobs
        ],
    }
