"""Conversion API - submit a two-image reel job, poll status, download the video.

  POST /convert              - validate, queue, return immediately
  GET  /status/{job_id}      - full job projection
  GET  /download/{job_id}    - stream the finished MP4
"""

from typing import Any, Optional

from fastapi import APIRouter, HTTPException
from fastapi.responses import FileResponse
from pydantic import BaseModel

from reel_service.jobs.coordinator import status_url_for
from reel_service.jobs.errors import NotFoundError, ValidationError
from reel_service.jobs.models import JobRecord, JobStatus

router = APIRouter()

# These will be set by main.py during lifespan
_coordinator = None
_store = None
_artifacts = None


def set_coordinator(coordinator):
    global _coordinator
    _coordinator = coordinator


def set_store(store):
    global _store
    _store = store


def set_artifacts(artifacts):
    global _artifacts
    _artifacts = artifacts


class ConvertRequest(BaseModel):
    image1_url: Optional[str] = None
    image2_url: Optional[str] = None
    # Validated by the coordinator so every bad value maps to a 400
    duration: Any = None


class ConvertResponse(BaseModel):
    job_id: str
    status: str
    estimated_time_seconds: float
    status_url: str
    message: str


def _isoformat(value) -> Optional[str]:
    return value.isoformat() if value else None


def job_projection(job: JobRecord) -> dict:
    return {
        "job_id": job.id,
        "status": job.status.value,
        "progress": job.progress,
        "created_at": _isoformat(job.created_at),
        "started_at": _isoformat(job.started_at),
        "completed_at": _isoformat(job.completed_at),
        "duration": job.duration,
        "estimated_time_seconds": job.estimated_time_seconds,
        "remaining_time_seconds": job.remaining_time_seconds,
        "download_url": job.download_url,
        "file_size_mb": job.file_size_mb,
        "error": job.error,
    }


async def _load_job(job_id: str) -> JobRecord:
    if _store is None:
        raise HTTPException(status_code=503, detail="Job store not initialized")
    job = await _store.get(job_id)
    if job is None:
        raise NotFoundError(f"Job {job_id} not found")
    return job


@router.post("/convert", response_model=ConvertResponse, status_code=202)
async def create_conversion(request: ConvertRequest):
    """Queue a conversion. Returns before any image is fetched."""
    if _coordinator is None:
        raise HTTPException(status_code=503, detail="Job coordinator not initialized")

    try:
        job = await _coordinator.submit(request.image1_url, request.image2_url, request.duration)
    except ValidationError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    return ConvertResponse(
        job_id=job.id,
        status=job.status.value,
        estimated_time_seconds=job.estimated_time_seconds,
        status_url=status_url_for(job.id),
        message="Job created successfully. Use status_url to check progress.",
    )


@router.get("/status/{job_id}")
async def get_status(job_id: str):
    try:
        job = await _load_job(job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return job_projection(job)


@router.get("/download/{job_id}")
async def download_video(job_id: str):
    """Stream the finished video.

    400 while the job is not completed; 404 once the file has been reclaimed.
    """
    if _artifacts is None:
        raise HTTPException(status_code=503, detail="Artifact store not initialized")

    try:
        job = await _load_job(job_id)
        if job.status != JobStatus.COMPLETED:
            raise HTTPException(
                status_code=400,
                detail={"error": "Video not ready yet", "status": job.status.value, "progress": job.progress},
            )
        path = _artifacts.require_output(job_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))

    return FileResponse(path, media_type="video/mp4", filename="video.mp4")
