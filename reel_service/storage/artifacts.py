"""Job-namespaced input/output file locations with best-effort cleanup."""

import logging
import os
from pathlib import Path
from typing import Iterable, List, Optional

from reel_service.config import settings
from reel_service.jobs.errors import CleanupError, NotFoundError

logger = logging.getLogger(__name__)

_BYTES_PER_MB = 1024 * 1024


class ArtifactStore:
    """Builds per-job paths under a temp-input and an output directory.

    Inputs:  <temp_dir>/<job_id>_img1, <temp_dir>/<job_id>_img2
    Output:  <output_dir>/<job_id>.mp4
    """

    def __init__(self, temp_dir: Optional[str] = None, output_dir: Optional[str] = None):
        self._temp_dir = Path(temp_dir or settings.temp_dir)
        self._output_dir = Path(output_dir or settings.output_dir)

    @property
    def temp_dir(self) -> Path:
        return self._temp_dir

    @property
    def output_dir(self) -> Path:
        return self._output_dir

    def ensure_dirs(self) -> None:
        self._temp_dir.mkdir(parents=True, exist_ok=True)
        self._output_dir.mkdir(parents=True, exist_ok=True)

    def input_path(self, job_id: str, index: int) -> Path:
        return self._temp_dir / f"{job_id}_img{index}"

    def input_paths(self, job_id: str) -> List[Path]:
        return [self.input_path(job_id, 1), self.input_path(job_id, 2)]

    def output_path(self, job_id: str) -> Path:
        return self._output_dir / f"{job_id}.mp4"

    def output_exists(self, job_id: str) -> bool:
        return self.output_path(job_id).is_file()

    def require_output(self, job_id: str) -> Path:
        path = self.output_path(job_id)
        if not path.is_file():
            raise NotFoundError(f"Video for job {job_id} not found")
        return path

    def output_size_mb(self, job_id: str) -> float:
        return round(os.path.getsize(self.output_path(job_id)) / _BYTES_PER_MB, 2)

    def remove(self, path: Path) -> None:
        """Delete a single file. Missing files are fine; anything else is a CleanupError."""
        try:
            path.unlink(missing_ok=True)
        except OSError as exc:
            raise CleanupError(f"Failed to delete {path}: {exc}") from exc

    def remove_quietly(self, paths: Iterable[Path]) -> int:
        """Best-effort delete. Failures are logged, never raised. Returns count of errors."""
        errors = 0
        for path in paths:
            try:
                self.remove(path)
            except CleanupError as exc:
                errors += 1
                logger.warning("%s", exc)
        return errors

    def remove_inputs(self, job_id: str) -> int:
        return self.remove_quietly(self.input_paths(job_id))

    def remove_all(self, job_id: str) -> int:
        return self.remove_quietly([*self.input_paths(job_id), self.output_path(job_id)])
