"""Aggregate all v1 API routers."""

from fastapi import APIRouter
from reel_service.api.v1.health import router as health_router
from reel_service.api.v1.convert import router as convert_router
from reel_service.api.v1.jobs import router as jobs_router

# Mounted at root: /convert, /status/{id}, /download/{id}, /health, /jobs
v1_router = APIRouter()
v1_router.include_router(health_router, tags=["health"])
v1_router.include_router(convert_router, tags=["convert"])
v1_router.include_router(jobs_router, tags=["jobs"])
