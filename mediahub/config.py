"""
Runtime configuration objects for the MediaHub ingestion service.
These helpers centralise environment-derived settings (paths, canonical format, timeouts).
"""

from __future__ import annotations

import os
import re
from dataclasses import dataclass, field
from pathlib import Path

_BITRATE_PATTERN = re.compile(r"^\s*(\d+(?:\.\d+)?)\s*([kKmM]?)(?:bps|b)?\s*$")


def parse_bitrate(value: str | int | float | None) -> int | None:
    """Normalise ``"2000k"``, ``"2M"`` or ``2000000`` to integer bits per second."""
    if value is None:
        return None
    if isinstance(value, (int, float)):
        return int(value)

    match = _BITRATE_PATTERN.match(value)
    if not match:
        raise ValueError(f"Unrecognised bitrate: {value!r}")

    number, unit = float(match.group(1)), match.group(2).lower()
    multiplier = {"": 1, "k": 1_000, "m": 1_000_000}[unit]
    return int(number * multiplier)


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name)
    if raw is None:
        return default
    return raw.strip().lower() in {"1", "true", "yes", "on"}


@dataclass
class PathsConfig:
    """Centralised filesystem locations."""

    project_root: Path = field(default_factory=lambda: Path(__file__).resolve().parents[1])
    data_root: Path | None = None
    media_dir: Path = field(init=False)
    thumbnails_dir: Path = field(init=False)
    temp_dir: Path = field(init=False)

    def __post_init__(self) -> None:
        if self.data_root is None:
            data_root_env = os.getenv("MEDIAHUB_DATA_ROOT")
            self.data_root = Path(data_root_env) if data_root_env else self.project_root / "storage"
        self.media_dir = self.data_root / "media"
        self.thumbnails_dir = self.data_root / "thumbnails"
        self.temp_dir = self.data_root / "temp"

    def ensure(self) -> None:
        """Create required directories if they are missing."""
        for path in (self.media_dir, self.thumbnails_dir, self.temp_dir):
            path.mkdir(parents=True, exist_ok=True)


@dataclass
class CanonicalFormatConfig:
    """The platform's delivery format; anything else gets re-encoded."""

    container: str = os.getenv("MEDIAHUB_CONTAINER", "mp4")
    video_codec: str = os.getenv("MEDIAHUB_VIDEO_CODEC", "h264")
    video_encoder: str = os.getenv("MEDIAHUB_VIDEO_ENCODER", "libx264")
    audio_codec: str = os.getenv("MEDIAHUB_AUDIO_CODEC", "aac")
    video_bitrate_ceiling: int = field(
        default_factory=lambda: parse_bitrate(os.getenv("MEDIAHUB_VIDEO_BITRATE", "2000k"))
    )
    audio_bitrate: int = field(
        default_factory=lambda: parse_bitrate(os.getenv("MEDIAHUB_AUDIO_BITRATE", "192k"))
    )
    resolution: str = os.getenv("MEDIAHUB_RESOLUTION", "1920x1080")
    preset: str = os.getenv("MEDIAHUB_PRESET", "fast")


@dataclass
class PipelineConfig:
    """Timeouts and retry policy for the ingestion pipeline."""

    probe_timeout: float = float(os.getenv("MEDIAHUB_PROBE_TIMEOUT", "30"))
    transcode_timeout: float = float(os.getenv("MEDIAHUB_TRANSCODE_TIMEOUT", "3600"))
    thumbnail_timeout: float = float(os.getenv("MEDIAHUB_THUMBNAIL_TIMEOUT", "30"))
    publish_retries: int = int(os.getenv("MEDIAHUB_PUBLISH_RETRIES", "3"))
    publish_backoff: float = float(os.getenv("MEDIAHUB_PUBLISH_BACKOFF", "0.5"))
    thumbnail_size: str = os.getenv("MEDIAHUB_THUMBNAIL_SIZE", "400x225")
    thumbnail_fraction: float = 0.10
    max_workers: int = int(os.getenv("MEDIAHUB_MAX_WORKERS", "2"))
    stuck_after_seconds: float = float(os.getenv("MEDIAHUB_STUCK_AFTER", "7200"))


@dataclass
class DatabaseConfig:
    """Settings for SQLite catalog persistence."""

    url: str = field(default_factory=lambda: os.getenv("MEDIAHUB_DB_URL", "sqlite:///storage/catalog.db"))
    busy_timeout: float = float(os.getenv("MEDIAHUB_DB_TIMEOUT", "15"))


@dataclass
class AnalyticsConfig:
    """Settings for the best-effort analytics event log."""

    enabled: bool = field(default_factory=lambda: _env_bool("MEDIAHUB_ENABLE_ANALYTICS", True))
    retention_days: int = int(os.getenv("MEDIAHUB_ANALYTICS_RETENTION_DAYS", "90"))
    playback_window_days: int = 7


@dataclass
class NotifierConfig:
    """Settings for realtime pipeline event fan-out."""

    webhook_url: str | None = field(default_factory=lambda: os.getenv("MEDIAHUB_WEBHOOK_URL") or None)
    queue_size: int = int(os.getenv("MEDIAHUB_NOTIFY_QUEUE_SIZE", "256"))
    http_timeout: float = 5.0


@dataclass
class WatchConfig:
    """Playback completion policy."""

    completion_threshold: float = 0.90


@dataclass
class AppConfig:
    """Aggregate configuration accessor."""

    paths: PathsConfig = field(default_factory=PathsConfig)
    canonical: CanonicalFormatConfig = field(default_factory=CanonicalFormatConfig)
    pipeline: PipelineConfig = field(default_factory=PipelineConfig)
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    analytics: AnalyticsConfig = field(default_factory=AnalyticsConfig)
    notifier: NotifierConfig = field(default_factory=NotifierConfig)
    watch: WatchConfig = field(default_factory=WatchConfig)

    def initialise(self) -> None:
        """Perform bootstrap steps such as ensuring directories."""
        self.paths.ensure()
        prefix = "sqlite:///"
        if self.database.url.startswith(prefix) and ":memory:" not in self.database.url:
            Path(self.database.url[len(prefix):]).parent.mkdir(parents=True, exist_ok=True)


def load_config() -> AppConfig:
    """Factory returning the configured AppConfig instance."""
    config = AppConfig()
    config.initialise()
    return config
