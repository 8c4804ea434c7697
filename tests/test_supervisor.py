import asyncio

import pytest

from conftest import FakeTransform
from reel_service.jobs.errors import (
    InvalidTransitionError,
    TranscodeError,
    TranscodeTimeoutError,
)
from reel_service.transcode.base import ProgressSignal
from reel_service.transcode.supervisor import SupervisorState, TranscodeSupervisor


def _supervisor(**kwargs) -> TranscodeSupervisor:
    params = dict(deadline_seconds=5.0, keepalive_interval=5.0)
    params.update(kwargs)
    return TranscodeSupervisor("job-1", 10, **params)


def _assert_timers_disarmed_once(supervisor: TranscodeSupervisor) -> None:
    assert supervisor.keepalive.disarm_count == 1
    assert supervisor.deadline.disarm_count == 1
    # Further disarms are no-ops
    assert supervisor.keepalive.disarm() is False
    assert supervisor.deadline.disarm() is False
    assert supervisor.keepalive.disarm_count == 1
    assert supervisor.deadline.disarm_count == 1


@pytest.mark.asyncio
async def test_success_forwards_progress_and_disarms_timers():
    supervisor = _supervisor()
    transform = FakeTransform(signals=[
        ProgressSignal(elapsed_seconds=2),
        ProgressSignal(elapsed_seconds=5),
        ProgressSignal(elapsed_seconds=10),
    ])
    started, snapshots = [], []

    async def on_start(ts):
        started.append(ts)

    async def on_progress(snapshot):
        snapshots.append(snapshot.progress)

    outcome = await supervisor.run(transform, on_start=on_start, on_progress=on_progress)

    assert outcome.succeeded
    assert outcome.error is None
    assert supervisor.state == SupervisorState.SUCCEEDED
    assert started == [supervisor.started_at]
    assert snapshots == [20, 50, 99]
    _assert_timers_disarmed_once(supervisor)


@pytest.mark.asyncio
async def test_transform_failure_is_reported():
    supervisor = _supervisor()
    transform = FakeTransform(
        signals=[ProgressSignal(percent=30)],
        error=TranscodeError("ffmpeg failed (code 1): bad input"),
    )

    outcome = await supervisor.run(transform)

    assert supervisor.state == SupervisorState.FAILED
    assert isinstance(outcome.error, TranscodeError)
    assert "bad input" in outcome.message
    _assert_timers_disarmed_once(supervisor)


@pytest.mark.asyncio
async def test_unexpected_transform_exception_becomes_transcode_error():
    supervisor = _supervisor()
    outcome = await supervisor.run(FakeTransform(error=RuntimeError("kaput")))

    assert supervisor.state == SupervisorState.FAILED
    assert isinstance(outcome.error, TranscodeError)
    assert "RuntimeError: kaput" in outcome.message


@pytest.mark.asyncio
async def test_deadline_terminates_stuck_transform():
    supervisor = _supervisor(deadline_seconds=0.05, keepalive_interval=0.01)
    transform = FakeTransform(signals=[ProgressSignal(elapsed_seconds=1)], hang=True)

    outcome = await asyncio.wait_for(supervisor.run(transform), timeout=2)

    assert supervisor.state == SupervisorState.TIMED_OUT
    assert isinstance(outcome.error, TranscodeTimeoutError)
    assert "deadline" in outcome.message
    assert transform.cancelled
    assert supervisor.deadline.fired
    assert supervisor.keepalive_count >= 1
    _assert_timers_disarmed_once(supervisor)


@pytest.mark.asyncio
async def test_keepalive_does_not_change_state():
    supervisor = _supervisor(keepalive_interval=0.01)
    ticks = []
    transform = FakeTransform(signals=[ProgressSignal(percent=p) for p in (10, 20, 30)], step=0.02)

    outcome = await supervisor.run(transform, on_keepalive=lambda: ticks.append(supervisor.state))

    assert outcome.succeeded
    assert ticks
    assert set(ticks) == {SupervisorState.RUNNING}


@pytest.mark.asyncio
async def test_supervisor_runs_only_once():
    supervisor = _supervisor()
    await supervisor.run(FakeTransform())
    with pytest.raises(InvalidTransitionError):
        await supervisor.run(FakeTransform())


@pytest.mark.asyncio
async def test_progress_callback_error_fails_run_and_stops_transform():
    supervisor = _supervisor()
    transform = FakeTransform(signals=[ProgressSignal(elapsed_seconds=1)], hang=True)

    async def broken_progress(snapshot):
        raise RuntimeError("store unavailable")

    outcome = await asyncio.wait_for(supervisor.run(transform, on_progress=broken_progress), timeout=2)

    assert supervisor.state == SupervisorState.FAILED
    assert isinstance(outcome.error, TranscodeError)
    assert "RuntimeError: store unavailable" in outcome.message
    assert transform.cancelled
    _assert_timers_disarmed_once(supervisor)
