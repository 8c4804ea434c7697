"""Application configuration via environment variables."""

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    # Server
    host: str = "0.0.0.0"
    port: int = 3000
    log_level: str = "INFO"

    # Storage (both namespaced by job id)
    temp_dir: str = "temp"
    output_dir: str = "output"

    # Request validation: accepted output length is a closed range
    min_duration_seconds: int = 1
    max_duration_seconds: int = 300
    default_duration_seconds: int = 30

    # Processing time estimate: duration * factor + overhead
    estimate_factor: float = 2.5
    estimate_overhead_seconds: float = 5.0

    # Transcode supervision
    transcode_timeout_seconds: float = 300.0  # fixed ceiling, not scaled by duration
    keepalive_interval_seconds: float = 30.0
    progress_queue_size: int = 64

    # Expiry
    retention_hours: float = 24.0
    sweep_interval_seconds: float = 3600.0

    # Asset fetching
    fetch_timeout_seconds: float = 30.0
    fetch_max_redirects: int = 5
    max_asset_bytes: int = 50 * 1024 * 1024

    # Rendering
    ffmpeg_bin: str = "ffmpeg"
    video_width: int = 1080
    video_height: int = 1920
    video_fps: int = 30
    overlay_text: str = "Free Download Link in Bio"
    overlay_seconds: float = 3.0

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


settings = Settings()
