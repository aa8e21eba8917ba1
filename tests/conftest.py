from __future__ import annotations

import itertools
import threading
from datetime import datetime, timedelta
from pathlib import Path

import pytest

from mediahub.config import AnalyticsConfig, AppConfig, DatabaseConfig, PathsConfig, PipelineConfig
from mediahub.errors import ProbeError, ThumbnailError, TranscodeError
from mediahub.library import MediaLibrary
from mediahub.services.media.probe import ProbeResult
from mediahub.services.media.transcoder import Transcoder
from mediahub.storage import models
from mediahub.storage.catalog import CatalogStore
from mediahub.storage.database import configure_engine

CANONICAL_FACTS = ProbeResult(
    duration_seconds=120.0,
    file_size_bytes=22_500_000,
    bitrate=1_500_000,
    container="mov,mp4,m4a,3gp,3g2,mj2",
    video_codec="h264",
    audio_codec="aac",
    resolution="1920x1080",
    frame_rate=30.0,
)

UHD_HEVC_FACTS = ProbeResult(
    duration_seconds=60.0,
    file_size_bytes=120_000_000,
    bitrate=16_000_000,
    container="matroska,webm",
    video_codec="hevc",
    audio_codec="opus",
    resolution="3840x2160",
    frame_rate=60.0,
)

ENCODED_FACTS = ProbeResult(
    duration_seconds=60.0,
    file_size_bytes=15_000_000,
    bitrate=1_950_000,
    container="mov,mp4,m4a,3gp,3g2,mj2",
    video_codec="h264",
    audio_codec="aac",
    resolution="1920x1080",
    frame_rate=60.0,
)


class FakeProbe:
    """Returns canned facts; files whose bytes start with ``corrupt`` fail."""

    def __init__(self, source_facts: ProbeResult = CANONICAL_FACTS, output_facts: ProbeResult | None = None) -> None:
        self.source_facts = source_facts
        self.output_facts = output_facts
        self.calls: list[Path] = []
        self._lock = threading.Lock()

    def probe(self, path: Path) -> ProbeResult:
        path = Path(path)
        with self._lock:
            self.calls.append(path)
        if not path.exists():
            raise ProbeError(f"missing: {path}")
        if path.read_bytes().startswith(b"corrupt"):
            raise ProbeError(f"no decodable stream in {path.name}")
        if path.parent.name == "media":
            return self.output_facts or self.source_facts
        return self.source_facts


class FakeTranscoder(Transcoder):
    """Writes a stand-in output file; ``fail_reason`` leaves a partial file behind and raises."""

    def __init__(self, fail_reason: str | None = None) -> None:
        self.fail_reason = fail_reason
        self.calls: list[dict] = []
        self._lock = threading.Lock()

    def transcode(self, input_path, output_path, options, progress=None, cancel_event=None, duration_seconds=None):
        with self._lock:
            self.calls.append({"input": Path(input_path), "output": Path(output_path), "options": options})
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"partial-encode")
        if cancel_event is not None and cancel_event.is_set():
            raise TranscodeError("cancelled")
        if self.fail_reason:
            raise TranscodeError(self.fail_reason, "simulated engine failure")
        if progress:
            for fraction in (0.25, 0.5, 1.0):
                progress(fraction)
        Path(output_path).write_bytes(b"encoded-video")
        return Path(output_path)


class FakeThumbnailer:
    def __init__(self, fail: bool = False) -> None:
        self.fail = fail
        self.calls: list[dict] = []

    def generate_thumbnail(self, input_path, output_path, at_fraction=0.10, duration_seconds=None):
        self.calls.append({"input": Path(input_path), "output": Path(output_path), "at_fraction": at_fraction})
        if self.fail:
            raise ThumbnailError("no frame could be decoded")
        Path(output_path).parent.mkdir(parents=True, exist_ok=True)
        Path(output_path).write_bytes(b"\xff\xd8jpeg")
        return Path(output_path)


@pytest.fixture
def app_config(tmp_path) -> AppConfig:
    config = AppConfig(
        paths=PathsConfig(data_root=tmp_path / "data"),
        database=DatabaseConfig(url=f"sqlite:///{tmp_path / 'catalog.db'}", busy_timeout=15),
        pipeline=PipelineConfig(publish_retries=3, publish_backoff=0.0, max_workers=4),
        analytics=AnalyticsConfig(enabled=True, retention_days=90),
    )
    config.initialise()
    return config


@pytest.fixture
def catalog(app_config) -> CatalogStore:
    configure_engine(app_config.database.url, app_config.database.busy_timeout)
    return CatalogStore()


@pytest.fixture
def fake_probe() -> FakeProbe:
    return FakeProbe()


@pytest.fixture
def fake_transcoder() -> FakeTranscoder:
    return FakeTranscoder()


@pytest.fixture
def fake_thumbnailer() -> FakeThumbnailer:
    return FakeThumbnailer()


@pytest.fixture
def library(app_config, fake_probe, fake_transcoder, fake_thumbnailer):
    media_library = MediaLibrary(
        config=app_config,
        probe=fake_probe,
        transcoder=fake_transcoder,
        thumbnailer=fake_thumbnailer,
    )
    yield media_library
    media_library.close()


@pytest.fixture
def make_upload(app_config):
    counter = itertools.count(1)

    def _make(content: bytes = b"raw-video-bytes", name: str | None = None) -> Path:
        path = app_config.paths.temp_dir / (name or f"upload-{next(counter)}.bin")
        path.write_bytes(content)
        return path

    return _make


_seed_counter = itertools.count(1)


def seed_asset(catalog: CatalogStore, status: str = models.STATUS_COMPLETED, **fields) -> models.MediaAsset:
    """Insert an asset row directly, bypassing the pipeline."""
    index = next(_seed_counter)
    asset_id = fields.pop("id", f"seed{index:028d}")
    uploaded_at = fields.pop("uploaded_at", datetime(2026, 1, 1) + timedelta(minutes=index))
    catalog.insert_pending(
        models.MediaAsset(
            id=asset_id,
            title=fields.pop("title", f"Asset {index}"),
            description=fields.pop("description", ""),
            category=fields.pop("category", "General"),
            tags=fields.pop("tags", []),
            owner_user_id=fields.pop("owner_user_id", "owner"),
            uploaded_at=uploaded_at,
        )
    )
    fields.setdefault("duration_seconds", 100.0)
    return catalog.update_status(asset_id, status, **fields)


@pytest.fixture
def seed(catalog):
    def _seed(status: str = models.STATUS_COMPLETED, **fields) -> models.MediaAsset:
        return seed_asset(catalog, status=status, **fields)

    return _seed
