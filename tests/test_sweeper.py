import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from conftest import TransformRecorder
from reel_service.jobs.models import JobRecord, JobStatus
from reel_service.jobs.sweeper import ExpirySweeper

NOW = datetime(2026, 6, 1, 12, 0, tzinfo=timezone.utc)


async def _add(store, artifacts, age: timedelta, status: JobStatus = JobStatus.QUEUED) -> str:
    job = JobRecord(
        image1_url="https://example.com/a.jpg",
        image2_url="https://example.com/b.jpg",
        duration=5,
        estimated_time_seconds=17.5,
        created_at=NOW - age,
    )
    if status != JobStatus.QUEUED:
        job.mark_processing(job.created_at)
    if status == JobStatus.COMPLETED:
        job.mark_completed(f"/download/{job.id}", 0.1)
        artifacts.output_path(job.id).write_bytes(b"video")
    elif status == JobStatus.FAILED:
        job.mark_failed("boom")
    return await store.create(job)


@pytest.mark.asyncio
async def test_sweep_removes_only_expired_jobs(job_store, artifacts):
    sweeper = ExpirySweeper(job_store, artifacts, retention_hours=24)
    old_done = await _add(job_store, artifacts, timedelta(hours=25), JobStatus.COMPLETED)
    old_failed = await _add(job_store, artifacts, timedelta(hours=30), JobStatus.FAILED)
    old_running = await _add(job_store, artifacts, timedelta(hours=24, seconds=1), JobStatus.PROCESSING)
    fresh_done = await _add(job_store, artifacts, timedelta(hours=23), JobStatus.COMPLETED)
    at_boundary = await _add(job_store, artifacts, timedelta(hours=24))

    removed = await sweeper.sweep(now=NOW)

    assert removed == 3
    remaining = {job.id for job in await job_store.list()}
    assert remaining == {fresh_done, at_boundary}
    assert not artifacts.output_exists(old_done)
    assert artifacts.output_exists(fresh_done)
    for job_id in (old_failed, old_running):
        assert await job_store.get(job_id) is None


@pytest.mark.asyncio
async def test_sweep_removes_leftover_inputs(job_store, artifacts):
    sweeper = ExpirySweeper(job_store, artifacts, retention_hours=1)
    job_id = await _add(job_store, artifacts, timedelta(hours=2))
    for path in artifacts.input_paths(job_id):
        path.write_bytes(b"img")

    await sweeper.sweep(now=NOW)

    assert not any(p.exists() for p in artifacts.input_paths(job_id))


@pytest.mark.asyncio
async def test_periodic_loop_sweeps_and_stops(job_store, artifacts):
    sweeper = ExpirySweeper(
        job_store, artifacts, retention_hours=1, interval_seconds=0.01, clock=lambda: NOW
    )
    job_id = await _add(job_store, artifacts, timedelta(hours=2))

    await sweeper.start()
    for _ in range(50):
        if await job_store.get(job_id) is None:
            break
        await asyncio.sleep(0.01)
    await sweeper.stop()

    assert await job_store.get(job_id) is None


@pytest.mark.asyncio
async def test_sweep_skips_jobs_with_running_pipeline(make_coordinator, job_store, artifacts):
    coordinator = make_coordinator(transform_factory=TransformRecorder(hang=True))
    job = await coordinator.submit("https://example.com/a.jpg", "https://example.com/b.jpg", 5)
    sweeper = ExpirySweeper(job_store, artifacts, retention_hours=1, is_active=coordinator.is_active)
    later = job.created_at + timedelta(hours=2)

    assert await sweeper.sweep(now=later) == 0
    assert await job_store.get(job.id) is not None

    await coordinator.stop()
    assert not coordinator.is_active(job.id)
    assert await sweeper.sweep(now=later) == 1
    assert await job_store.get(job.id) is None
    assert not artifacts.output_exists(job.id)
