"""Entry points used by the serving layer: ingestion, catalog, playback and analytics."""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor
from dataclasses import dataclass
from pathlib import Path
from typing import Any, List, Mapping

from mediahub.config import AppConfig, load_config
from mediahub.errors import NotFoundError, ValidationError
from mediahub.maintenance import RecoveryReport, purge_old_events, recover_stuck_assets
from mediahub.pipeline import IngestMetadata, MediaIngestPipeline
from mediahub.services.analytics import recorder as events
from mediahub.services.analytics.recorder import AnalyticsRecorder, PlaybackDay, PopularMedia, SystemHealth, UserEngagement
from mediahub.services.media.probe import MetadataProbe
from mediahub.services.media.thumbnail import ThumbnailGenerator
from mediahub.services.media.transcoder import Transcoder
from mediahub.services.notify.realtime import RealtimeNotifier
from mediahub.services.playback.progress import WatchHistoryEntry, WatchProgress, WatchProgressTracker, is_watch_complete
from mediahub.storage import models
from mediahub.storage.catalog import CatalogFilters, CatalogStore
from mediahub.storage.database import configure_engine

_LOGGER = logging.getLogger(__name__)


@dataclass
class IngestJob:
    """Handle on a background ingestion."""

    future: Future
    cancel_event: threading.Event

    def cancel(self) -> None:
        self.cancel_event.set()

    def result(self, timeout: float | None = None) -> models.MediaAsset:
        return self.future.result(timeout=timeout)


class MediaLibrary:
    """Facade wiring the pipeline, catalog, watch tracking and analytics together."""

    def __init__(
        self,
        config: AppConfig | None = None,
        probe: MetadataProbe | None = None,
        transcoder: Transcoder | None = None,
        thumbnailer: ThumbnailGenerator | None = None,
        notifier: RealtimeNotifier | None = None,
    ) -> None:
        self._config = config or load_config()
        configure_engine(self._config.database.url, self._config.database.busy_timeout)

        self._catalog = CatalogStore()
        self._analytics = AnalyticsRecorder(self._catalog, self._config.analytics)
        self._notifier = notifier or RealtimeNotifier(self._config.notifier)
        self._tracker = WatchProgressTracker(self._catalog)
        self._pipeline = MediaIngestPipeline(
            config=self._config,
            catalog=self._catalog,
            probe=probe,
            transcoder=transcoder,
            thumbnailer=thumbnailer,
            notifier=self._notifier,
            analytics=self._analytics,
        )
        self._executor: ThreadPoolExecutor | None = None
        self._executor_lock = threading.Lock()

    @property
    def notifier(self) -> RealtimeNotifier:
        return self._notifier

    @property
    def pipeline(self) -> MediaIngestPipeline:
        return self._pipeline

    # Ingestion -------------------------------------------------------------

    def ingest(
        self,
        source_path: Path | str,
        metadata: IngestMetadata | Mapping[str, Any] | None = None,
        cancel_event: threading.Event | None = None,
    ) -> models.MediaAsset:
        """Run the pipeline synchronously and return the completed asset."""
        meta = metadata if isinstance(metadata, IngestMetadata) else IngestMetadata.from_mapping(metadata)
        source = Path(source_path)
        self._analytics.record(
            events.EVENT_UPLOAD_START,
            {"file_name": source.name, "file_size": source.stat().st_size if source.exists() else None},
            user_id=meta.owner_user_id,
        )
        try:
            return self._pipeline.process(source, meta, cancel_event=cancel_event)
        except ValidationError as exc:
            self._analytics.record(events.EVENT_UPLOAD_ERROR, {"phase": exc.phase, "error": str(exc)}, user_id=meta.owner_user_id)
            raise

    def submit_ingest(
        self,
        source_path: Path | str,
        metadata: IngestMetadata | Mapping[str, Any] | None = None,
    ) -> IngestJob:
        """Queue an ingestion on the worker pool; progress arrives through the notifier."""
        cancel_event = threading.Event()
        future = self._get_executor().submit(self.ingest, source_path, metadata, cancel_event)
        return IngestJob(future=future, cancel_event=cancel_event)

    # Catalog ---------------------------------------------------------------

    def list(
        self,
        category: str | None = None,
        search: str | None = None,
        limit: int | None = None,
        page: int = 1,
        user_id: str | None = None,
    ) -> List[models.MediaAsset]:
        """Completed assets, newest first."""
        if limit is not None and limit <= 0:
            raise ValidationError("limit must be positive")
        offset = (max(page, 1) - 1) * limit if limit else 0
        assets = self._catalog.query(CatalogFilters(category=category, search=search, limit=limit, offset=offset))
        if search:
            self._analytics.record(events.EVENT_SEARCH, {"query": search, "results": len(assets)}, user_id=user_id)
        return assets

    def list_with_progress(self, user_id: str, **filters: Any) -> List[tuple[models.MediaAsset, WatchProgress | None]]:
        assets = self.list(user_id=user_id, **filters)
        progress = self._tracker.progress_for(user_id, [asset.id for asset in assets])
        return [(asset, progress.get(asset.id)) for asset in assets]

    def list_in_progress(self, limit: int | None = 50) -> List[models.MediaAsset]:
        """Admin view: assets that are not (yet) playable."""
        return self._catalog.query(
            CatalogFilters(
                limit=limit,
                statuses=(models.STATUS_PENDING, models.STATUS_PROCESSING, models.STATUS_FAILED),
            )
        )

    def get_by_id(self, asset_id: str, user_id: str | None = None) -> models.MediaAsset:
        asset = self._catalog.get_by_id(asset_id)
        if asset is None or asset.status != models.STATUS_COMPLETED:
            raise NotFoundError(asset_id)
        if user_id is not None:
            self._analytics.record(events.EVENT_VIEW, media_id=asset_id, user_id=user_id)
        return asset

    def delete(self, asset_id: str, user_id: str | None = None) -> bool:
        """Returns False when the asset is already gone."""
        try:
            self._pipeline.delete_media(asset_id)
        except NotFoundError:
            return False
        self._analytics.record(events.EVENT_DELETE, media_id=asset_id, user_id=user_id)
        return True

    # Playback --------------------------------------------------------------

    def record_play(self, asset_id: str, user_id: str | None = None, session_id: str | None = None) -> None:
        self.get_by_id(asset_id)
        self._analytics.record(events.EVENT_PLAY, media_id=asset_id, user_id=user_id, session_id=session_id)

    def record_watch_progress(
        self,
        asset_id: str,
        user_id: str,
        position: float,
        completed: bool | None = None,
    ) -> None:
        """Upsert progress; ``completed=None`` applies the platform threshold."""
        if completed is None:
            asset = self._catalog.get_by_id(asset_id)
            if asset is None:
                raise NotFoundError(asset_id)
            completed = is_watch_complete(position, asset.duration_seconds, self._config.watch.completion_threshold)

        self._tracker.upsert(asset_id, user_id, position, completed)
        if completed:
            self._analytics.record(events.EVENT_WATCH_COMPLETE, {"duration": position}, media_id=asset_id, user_id=user_id)

    def get_watch_history(self, user_id: str) -> List[WatchHistoryEntry]:
        return self._tracker.get_for_user(user_id)

    # Analytics -------------------------------------------------------------

    def get_popular(self, limit: int = 10) -> List[PopularMedia]:
        return self._analytics.get_popular(limit)

    def get_engagement(self, user_id: str) -> UserEngagement:
        return self._analytics.get_engagement(user_id)

    def get_playback_stats(self, days: int | None = None) -> List[PlaybackDay]:
        return self._analytics.get_playback_stats(days)

    def get_system_health(self) -> SystemHealth:
        return self._analytics.get_system_health()

    # Maintenance -----------------------------------------------------------

    def run_maintenance(self) -> tuple[RecoveryReport, int]:
        report = recover_stuck_assets(self._pipeline)
        purged = purge_old_events(self._analytics)
        return report, purged

    def close(self) -> None:
        with self._executor_lock:
            if self._executor is not None:
                self._executor.shutdown(wait=True)
                self._executor = None
        self._notifier.close()

    def _get_executor(self) -> ThreadPoolExecutor:
        with self._executor_lock:
            if self._executor is None:
                self._executor = ThreadPoolExecutor(
                    max_workers=self._config.pipeline.max_workers,
                    thread_name_prefix="mediahub-ingest",
                )
            return self._executor
