"""Pipeline coordinator taking an uploaded file to a published catalog asset."""

from __future__ import annotations

import logging
import threading
import time
import uuid
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable, List, Mapping

from mediahub.config import AppConfig, load_config
from mediahub.errors import MediaHubError, NotFoundError, StoreError, ThumbnailError, TranscodeError, ValidationError
from mediahub.services.analytics.recorder import EVENT_UPLOAD_COMPLETE, EVENT_UPLOAD_ERROR, AnalyticsRecorder
from mediahub.services.media.probe import MetadataProbe, ProbeResult
from mediahub.services.media.thumbnail import ThumbnailGenerator
from mediahub.services.media.transcoder import FFmpegTranscoder, TranscodeOptions, Transcoder, transcode_reasons
from mediahub.services.notify.realtime import UPLOAD_COMPLETE, UPLOAD_ERROR, UPLOAD_PROGRESS, RealtimeNotifier
from mediahub.storage import models
from mediahub.storage.catalog import CatalogStore
from mediahub.utils.filesystem import clean_temp_files, copy_verbatim, is_readable_file, remove_file

_LOGGER = logging.getLogger(__name__)

DEFAULT_CATEGORY = "General"


@dataclass
class IngestMetadata:
    """User-supplied fields accompanying an upload."""

    title: str = ""
    description: str = ""
    category: str = DEFAULT_CATEGORY
    tags: List[str] = field(default_factory=list)
    owner_user_id: str | None = None

    @classmethod
    def from_mapping(cls, data: Mapping[str, Any] | None) -> "IngestMetadata":
        data = dict(data or {})
        tags = data.get("tags") or []
        if isinstance(tags, str):
            tags = [tag.strip() for tag in tags.split(",") if tag.strip()]
        owner = data.get("owner_user_id", data.get("user_id"))
        return cls(
            title=(data.get("title") or "").strip(),
            description=data.get("description") or "",
            category=data.get("category") or DEFAULT_CATEGORY,
            tags=list(tags),
            owner_user_id=str(owner) if owner is not None else None,
        )


class MediaIngestPipeline:
    """Probe → transcode/copy → thumbnail → re-probe → publish, one asset per call."""

    def __init__(
        self,
        config: AppConfig | None = None,
        catalog: CatalogStore | None = None,
        probe: MetadataProbe | None = None,
        transcoder: Transcoder | None = None,
        thumbnailer: ThumbnailGenerator | None = None,
        notifier: RealtimeNotifier | None = None,
        analytics: AnalyticsRecorder | None = None,
    ) -> None:
        self._config = config or load_config()
        self._catalog = catalog or CatalogStore()
        self._probe = probe
        self._transcoder = transcoder
        self._thumbnailer = thumbnailer
        self._notifier = notifier
        self._analytics = analytics

    @property
    def config(self) -> AppConfig:
        return self._config

    @property
    def catalog(self) -> CatalogStore:
        return self._catalog

    def media_path_for(self, asset_id: str) -> Path:
        return self._config.paths.media_dir / f"{asset_id}.{self._config.canonical.container}"

    def thumbnail_path_for(self, asset_id: str) -> Path:
        return self._config.paths.thumbnails_dir / f"{asset_id}.jpg"

    def process(
        self,
        source_path: Path | str,
        metadata: IngestMetadata | Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> models.MediaAsset:
        """Ingest one uploaded file. Returns the ``completed`` asset or raises the failing phase's error."""
        source = Path(source_path)
        meta = metadata if isinstance(metadata, IngestMetadata) else IngestMetadata.from_mapping(metadata)
        self._validate(source, meta)

        asset_id = uuid.uuid4().hex
        media_path = self.media_path_for(asset_id)
        thumbnail_path = self.thumbnail_path_for(asset_id)

        try:
            self._catalog.insert_pending(
                models.MediaAsset(
                    id=asset_id,
                    title=meta.title or source.stem,
                    description=meta.description,
                    category=meta.category,
                    tags=meta.tags,
                    source_path=str(source),
                    owner_user_id=meta.owner_user_id,
                )
            )
            _LOGGER.info("Asset %s pending for %s", asset_id, source.name)
            return self._run(asset_id, source, media_path, thumbnail_path, cancel_event)
        finally:
            clean_temp_files([source])

    def _run(
        self,
        asset_id: str,
        source: Path,
        media_path: Path,
        thumbnail_path: Path,
        cancel_event: threading.Event | None,
    ) -> models.MediaAsset:
        artifacts = [media_path, thumbnail_path]
        try:
            source_facts = self._get_probe().probe(source)
            reasons = transcode_reasons(source_facts, self._config.canonical)

            self._catalog.update_status(
                asset_id,
                models.STATUS_PROCESSING,
                **self._fact_fields(source_facts),
            )
            self._notify(UPLOAD_PROGRESS, asset_id, {"phase": "processing", "progress": 0.0})

            if reasons:
                _LOGGER.info("Asset %s needs transcoding: %s", asset_id, "; ".join(reasons))
                self._get_transcoder().transcode(
                    source,
                    media_path,
                    TranscodeOptions.from_canonical(self._config.canonical),
                    progress=self._progress_reporter(asset_id),
                    cancel_event=cancel_event,
                    duration_seconds=source_facts.duration_seconds,
                )
            else:
                _LOGGER.info("Asset %s already canonical; copying verbatim", asset_id)
                self._raise_if_cancelled(cancel_event)
                copy_verbatim(source, media_path)
                self._raise_if_cancelled(cancel_event)
            clean_temp_files([source])

            final_thumbnail = self._make_thumbnail(asset_id, media_path, thumbnail_path, source_facts.duration_seconds)
            final_facts = self._get_probe().probe(media_path)
        except BaseException as exc:
            # probe, transcode, store and interrupt all end the asset as failed
            self._fail(asset_id, exc, artifacts)
            raise

        asset = self._publish(
            asset_id,
            file_path=str(media_path),
            thumbnail_path=str(final_thumbnail) if final_thumbnail else None,
            source_path=None,
            error_message=None,
            **self._fact_fields(final_facts),
        )
        _LOGGER.info("Asset %s completed (%s, %s)", asset_id, asset.resolution, asset.codec)

        self._notify(UPLOAD_COMPLETE, asset_id, {"title": asset.title, "thumbnail_path": asset.thumbnail_path})
        self._track(EVENT_UPLOAD_COMPLETE, media_id=asset_id, user_id=asset.owner_user_id)
        return asset

    def _make_thumbnail(self, asset_id: str, media_path: Path, thumbnail_path: Path, duration: float | None) -> Path | None:
        try:
            return self._get_thumbnailer().generate_thumbnail(
                media_path,
                thumbnail_path,
                at_fraction=self._config.pipeline.thumbnail_fraction,
                duration_seconds=duration,
            )
        except ThumbnailError as exc:
            _LOGGER.warning("Thumbnail skipped for asset %s: %s", asset_id, exc)
            clean_temp_files([thumbnail_path])
            return None

    def _publish(self, asset_id: str, **fields: Any) -> models.MediaAsset:
        """Single completing write, retried; the row stays ``processing`` if every attempt fails."""
        attempts = max(1, self._config.pipeline.publish_retries)
        for attempt in range(1, attempts + 1):
            try:
                return self._catalog.update_status(asset_id, models.STATUS_COMPLETED, **fields)
            except StoreError as exc:
                if attempt == attempts:
                    _LOGGER.error("Publish of asset %s failed after %d attempts: %s", asset_id, attempts, exc)
                    self._notify(UPLOAD_ERROR, asset_id, {"phase": exc.phase, "error": str(exc)})
                    raise
                _LOGGER.warning("Publish attempt %d for asset %s failed: %s", attempt, asset_id, exc)
                time.sleep(self._config.pipeline.publish_backoff * attempt)
        raise StoreError(f"Publish of asset {asset_id} was not attempted")

    def _fail(self, asset_id: str, exc: BaseException, artifacts: Iterable[Path]) -> None:
        phase = getattr(exc, "phase", "internal")
        _LOGGER.error("Asset %s failed during %s: %s", asset_id, phase, exc)
        clean_temp_files(artifacts)
        try:
            self._catalog.update_status(
                asset_id,
                models.STATUS_FAILED,
                error_message=f"{phase}: {exc}"[:1000],
                source_path=None,
                file_path=None,
                thumbnail_path=None,
            )
        except MediaHubError as store_exc:
            _LOGGER.error("Could not mark asset %s failed: %s", asset_id, store_exc)
        self._notify(UPLOAD_ERROR, asset_id, {"phase": phase, "error": str(exc)})
        self._track(EVENT_UPLOAD_ERROR, payload={"phase": phase, "error": str(exc)}, media_id=asset_id)

    def delete_media(self, asset_id: str) -> None:
        """Remove media file, thumbnail, row and watch records. Safe to retry."""
        asset = self._catalog.get_by_id(asset_id)
        if asset is None:
            raise NotFoundError(asset_id)
        if asset.status not in models.TERMINAL_STATUSES:
            raise ValidationError(f"Asset {asset_id} is still {asset.status}")

        for path in (asset.file_path, asset.thumbnail_path, self.media_path_for(asset_id), self.thumbnail_path_for(asset_id)):
            remove_file(path)
        if not self._catalog.delete(asset_id):
            raise NotFoundError(asset_id)
        _LOGGER.info("Asset %s deleted", asset_id)

    def reprobe(self, path: Path) -> ProbeResult:
        return self._get_probe().probe(path)

    def _validate(self, source: Path, meta: IngestMetadata) -> None:
        if not is_readable_file(source):
            raise ValidationError(f"Upload is missing or unreadable: {source}")
        if source.stat().st_size == 0:
            raise ValidationError(f"Upload is empty: {source}")
        if not isinstance(meta.tags, list) or not all(isinstance(tag, str) for tag in meta.tags):
            raise ValidationError("Tags must be a list of strings")
        if not meta.category:
            raise ValidationError("Category must not be empty")

    @staticmethod
    def _fact_fields(facts: ProbeResult) -> dict[str, Any]:
        return {
            "file_size_bytes": facts.file_size_bytes,
            "duration_seconds": facts.duration_seconds,
            "resolution": facts.resolution,
            "bitrate": facts.bitrate,
            "codec": facts.video_codec,
            "container": facts.container,
            "probe_metadata": facts.as_dict(),
        }

    @staticmethod
    def _raise_if_cancelled(cancel_event: threading.Event | None) -> None:
        if cancel_event is not None and cancel_event.is_set():
            raise TranscodeError("cancelled", "ingestion cancelled by caller")

    def _progress_reporter(self, asset_id: str):
        last = {"value": -1.0}

        def report(fraction: float) -> None:
            if fraction < 1.0 and fraction - last["value"] < 0.01:
                return
            last["value"] = fraction
            self._notify(UPLOAD_PROGRESS, asset_id, {"phase": "transcode", "progress": round(fraction, 4)})

        return report

    def _notify(self, event_type: str, asset_id: str, data: dict[str, Any]) -> None:
        if self._notifier is None:
            return
        try:
            self._notifier.publish(event_type, asset_id, data)
        except Exception:  # noqa: BLE001
            _LOGGER.warning("Notifier rejected %s for asset %s", event_type, asset_id, exc_info=True)

    def _track(self, event_type: str, payload: dict[str, Any] | None = None, **ids: Any) -> None:
        if self._analytics is None:
            return
        try:
            self._analytics.record(event_type, payload, **ids)
        except Exception:  # noqa: BLE001
            _LOGGER.warning("Analytics rejected %s", event_type, exc_info=True)

    def _get_probe(self) -> MetadataProbe:
        if not self._probe:
            self._probe = MetadataProbe(timeout=self._config.pipeline.probe_timeout)
        return self._probe

    def _get_transcoder(self) -> Transcoder:
        if not self._transcoder:
            self._transcoder = FFmpegTranscoder(timeout=self._config.pipeline.transcode_timeout)
        return self._transcoder

    def _get_thumbnailer(self) -> ThumbnailGenerator:
        if not self._thumbnailer:
            self._thumbnailer = ThumbnailGenerator(
                size=self._config.pipeline.thumbnail_size,
                timeout=self._config.pipeline.thumbnail_timeout,
            )
        return self._thumbnailer
