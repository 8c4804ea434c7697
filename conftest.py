import asyncio
import io
from pathlib import Path

import pytest
from PIL import Image

from reel_service.io.fetcher import AssetFetcher
from reel_service.jobs.coordinator import JobCoordinator
from reel_service.jobs.errors import FetchError
from reel_service.jobs.store import InProcessJobStore
from reel_service.storage.artifacts import ArtifactStore
from reel_service.transcode.base import ProgressSignal, Transform
from reel_service.transcode.supervisor import TranscodeSupervisor


def make_image_bytes(color=(255, 0, 0), size=(64, 64), fmt="PNG") -> bytes:
    buf = io.BytesIO()
    Image.new("RGB", size, color).save(buf, format=fmt)
    return buf.getvalue()


class FakeFetcher(AssetFetcher):
    """Writes canned bytes for known URLs; raises FetchError for listed failures."""

    def __init__(self, failing=(), delay: float = 0.0):
        self.failing = set(failing)
        self.delay = delay
        self.calls = []

    async def fetch(self, url: str, destination: Path) -> Path:
        self.calls.append(url)
        if self.delay:
            await asyncio.sleep(self.delay)
        if url in self.failing:
            # Leave a partial file behind, like an interrupted download would
            destination.parent.mkdir(parents=True, exist_ok=True)
            destination.write_bytes(b"partial")
            raise FetchError(url, "HTTP 404")
        destination.parent.mkdir(parents=True, exist_ok=True)
        destination.write_bytes(make_image_bytes())
        return destination


class FakeTransform(Transform):
    """Scripted transform: emits signals, then succeeds, fails, or hangs."""

    def __init__(self, output: Path = None, signals=(), error: Exception = None,
                 hang: bool = False, step: float = 0.0, output_bytes: bytes = b"\x00" * 2048,
                 write_partial: bool = False):
        self.output = output
        self.signals = list(signals)
        self.error = error
        self.hang = hang
        self.step = step
        self.output_bytes = output_bytes
        self.write_partial = write_partial
        self.started = False
        self.cancelled = False

    async def run(self, queue: "asyncio.Queue[ProgressSignal]") -> None:
        self.started = True
        try:
            if self.write_partial and self.output is not None:
                self.output.parent.mkdir(parents=True, exist_ok=True)
                self.output.write_bytes(b"partial")
            for signal in self.signals:
                await queue.put(signal)
                await asyncio.sleep(self.step)
            if self.hang:
                await asyncio.Event().wait()
            if self.error is not None:
                raise self.error
            if self.output is not None and self.output_bytes is not None:
                self.output.parent.mkdir(parents=True, exist_ok=True)
                self.output.write_bytes(self.output_bytes)
        except asyncio.CancelledError:
            self.cancelled = True
            raise


class TransformRecorder:
    """Transform factory that records every transform it builds."""

    def __init__(self, **kwargs):
        self.kwargs = kwargs
        self.built = []

    def __call__(self, image1: Path, image2: Path, output: Path, duration: float) -> FakeTransform:
        transform = FakeTransform(output=output, **self.kwargs)
        transform.inputs = (image1, image2)
        transform.duration = duration
        self.built.append(transform)
        return transform


@pytest.fixture()
def artifacts(tmp_path):
    store = ArtifactStore(temp_dir=str(tmp_path / "temp"), output_dir=str(tmp_path / "output"))
    store.ensure_dirs()
    return store


@pytest.fixture()
def job_store():
    return InProcessJobStore()


@pytest.fixture()
def make_coordinator(job_store, artifacts):
    """Build a coordinator around fakes. Supervisor timings are short by default."""

    def _make(fetcher=None, transform_factory=None, deadline=5.0, keepalive=5.0):
        return JobCoordinator(
            job_store,
            artifacts,
            fetcher or FakeFetcher(),
            transform_factory=transform_factory or TransformRecorder(),
            supervisor_factory=lambda job: TranscodeSupervisor(
                job.id, job.duration, deadline_seconds=deadline, keepalive_interval=keepalive
            ),
        )

    return _make


