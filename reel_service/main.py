"""Image-to-Reel Conversion Service - FastAPI application."""

import logging
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from reel_service.config import settings
from reel_service.api.v1.router import v1_router
from reel_service.api.v1 import convert as convert_api
from reel_service.api.v1 import health as health_api
from reel_service.api.v1 import jobs as jobs_api
from reel_service.io.fetcher import HttpAssetFetcher
from reel_service.jobs.coordinator import JobCoordinator
from reel_service.jobs.store import InProcessJobStore
from reel_service.jobs.sweeper import ExpirySweeper
from reel_service.storage.artifacts import ArtifactStore

logger = logging.getLogger(__name__)


def wire_services(store, coordinator, artifacts) -> None:
    """Point every API module at the given collaborators."""
    convert_api.set_coordinator(coordinator)
    convert_api.set_store(store)
    convert_api.set_artifacts(artifacts)
    jobs_api.set_store(store)
    health_api.set_store(store)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown logic."""
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    logger.info("Starting Image-to-Reel service on port %d", settings.port)
    logger.info("Temp dir: %s, output dir: %s", settings.temp_dir, settings.output_dir)

    artifacts = ArtifactStore()
    artifacts.ensure_dirs()
    store = InProcessJobStore()
    coordinator = JobCoordinator(store, artifacts, HttpAssetFetcher())
    sweeper = ExpirySweeper(store, artifacts, is_active=coordinator.is_active)

    await sweeper.start()
    logger.info(
        "Expiry sweeper started (every %gs, retention %gh)",
        settings.sweep_interval_seconds,
        settings.retention_hours,
    )
    wire_services(store, coordinator, artifacts)

    yield

    logger.info("Shutting down Image-to-Reel service")
    await sweeper.stop()
    await coordinator.stop()


app = FastAPI(
    title="Image-to-Reel Service",
    description="Turns two images into a short vertical video with a text overlay",
    version="0.1.0",
    lifespan=lifespan,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(RequestValidationError)
async def request_validation_handler(request: Request, exc: RequestValidationError):
    # Malformed bodies are client errors like any other validation failure
    return JSONResponse(status_code=400, content={"detail": jsonable_encoder(exc.errors())})


app.include_router(v1_router)


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=settings.host, port=settings.port)
