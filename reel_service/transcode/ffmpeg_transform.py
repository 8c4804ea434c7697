"""ffmpeg-backed two-image reel render.

Builds the filter graph with ffmpeg-python, then runs the compiled command
as an asyncio subprocess so progress can be streamed and the process can be
killed from the supervisor's deadline.

Output: 9:16 H.264 MP4. Each image is letterboxed to the frame and held for
half of the requested duration; a text overlay is drawn over the final
few seconds.
"""

import asyncio
import logging
from pathlib import Path
from typing import List, Optional

import ffmpeg

from reel_service.config import settings
from reel_service.jobs.errors import TranscodeError
from reel_service.transcode.base import ProgressSignal, Transform

logger = logging.getLogger(__name__)


def build_reel_command(
    image1: Path,
    image2: Path,
    output: Path,
    duration: float,
    ffmpeg_bin: Optional[str] = None,
    width: Optional[int] = None,
    height: Optional[int] = None,
    fps: Optional[int] = None,
    overlay_text: Optional[str] = None,
    overlay_seconds: Optional[float] = None,
) -> List[str]:
    """Compile the ffmpeg argv for a two-image concat with a closing text overlay."""
    width = width or settings.video_width
    height = height or settings.video_height
    fps = fps or settings.video_fps
    overlay_text = overlay_text if overlay_text is not None else settings.overlay_text
    overlay_seconds = overlay_seconds if overlay_seconds is not None else settings.overlay_seconds

    half = duration / 2
    text_start = max(duration - overlay_seconds, 0)

    clips = [
        ffmpeg.input(str(path), loop=1, t=half, framerate=fps)
        .filter("scale", width, height, force_original_aspect_ratio="decrease")
        .filter("pad", width, height, "(ow-iw)/2", "(oh-ih)/2", color="black")
        .filter("setsar", 1)
        .filter("fps", fps=fps)
        for path in (image1, image2)
    ]
    video = ffmpeg.concat(*clips, v=1, a=0).drawtext(
        text=overlay_text,
        fontsize=60,
        fontcolor="white",
        x="(w-text_w)/2",
        y="h-150",
        borderw=3,
        bordercolor="black",
        enable=f"gte(t,{text_start:g})",
    )
    stream = (
        ffmpeg.output(
            video,
            str(output),
            vcodec="libx264",
            preset="medium",
            crf=23,
            pix_fmt="yuv420p",
            movflags="+faststart",
        )
        .global_args("-nostdin", "-hide_banner", "-loglevel", "error", "-nostats", "-progress", "pipe:1")
        .overwrite_output()
    )
    return stream.compile(cmd=ffmpeg_bin or settings.ffmpeg_bin)


def parse_progress_line(line: str) -> Optional[ProgressSignal]:
    """Parse one `-progress` key=value line into a signal.

    ffmpeg reports out_time_ms in microseconds despite the name.
    """
    key, sep, value = line.strip().partition("=")
    if not sep or key != "out_time_ms":
        return None
    try:
        micros = int(value)
    except ValueError:
        # "N/A" before the first frame
        return None
    return ProgressSignal(elapsed_seconds=max(micros, 0) / 1_000_000)


class FfmpegReelTransform(Transform):
    """Render a reel from two local images."""

    def __init__(self, image1: Path, image2: Path, output: Path, duration: float, ffmpeg_bin: Optional[str] = None):
        self.output = output
        self.command = build_reel_command(image1, image2, output, duration, ffmpeg_bin=ffmpeg_bin)

    def describe(self) -> str:
        return f"ffmpeg -> {self.output.name}"

    async def run(self, signals: "asyncio.Queue[ProgressSignal]") -> None:
        self.output.parent.mkdir(parents=True, exist_ok=True)
        logger.debug("ffmpeg command: %s", " ".join(self.command))
        try:
            proc = await asyncio.create_subprocess_exec(
                *self.command,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except OSError as exc:
            raise TranscodeError(f"Could not launch ffmpeg: {exc}") from exc

        stderr_task = asyncio.create_task(proc.stderr.read())
        try:
            async for raw in proc.stdout:
                signal = parse_progress_line(raw.decode("utf-8", errors="ignore"))
                if signal is not None:
                    await signals.put(signal)
            returncode = await proc.wait()
            stderr = await stderr_task
        except asyncio.CancelledError:
            if proc.returncode is None:
                try:
                    proc.kill()
                except ProcessLookupError:
                    pass
                await proc.wait()
            stderr_task.cancel()
            logger.info("ffmpeg (pid %s) terminated", proc.pid)
            raise

        if returncode != 0:
            tail = stderr.decode("utf-8", errors="ignore")[-2000:].strip()
            raise TranscodeError(f"ffmpeg failed (code {returncode}): {tail}")
