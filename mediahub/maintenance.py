"""Batch sweeps: stuck-asset recovery and analytics retention."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import List

from mediahub.errors import MediaHubError
from mediahub.pipeline import MediaIngestPipeline
from mediahub.services.analytics.recorder import AnalyticsRecorder
from mediahub.storage import models
from mediahub.utils.filesystem import clean_temp_files

_LOGGER = logging.getLogger(__name__)


@dataclass
class RecoveryReport:
    published: List[str] = field(default_factory=list)
    failed: List[str] = field(default_factory=list)


def recover_stuck_assets(
    pipeline: MediaIngestPipeline,
    older_than_seconds: float | None = None,
    now: datetime | None = None,
) -> RecoveryReport:
    """Reconcile assets left ``pending``/``processing`` past the horizon.

    A finished media file (the transcoder only renames complete output into
    place) that still probes cleanly gets published; anything else is
    marked ``failed`` and its leftovers removed.
    """
    horizon = older_than_seconds if older_than_seconds is not None else pipeline.config.pipeline.stuck_after_seconds
    cutoff = (now or datetime.utcnow()) - timedelta(seconds=horizon)
    report = RecoveryReport()

    for asset in pipeline.catalog.list_stale((models.STATUS_PENDING, models.STATUS_PROCESSING), cutoff):
        media_path = pipeline.media_path_for(asset.id)
        thumbnail_path = pipeline.thumbnail_path_for(asset.id)
        partial_path = media_path.with_name(f"{media_path.name}.part")

        if asset.status == models.STATUS_PROCESSING and media_path.exists():
            try:
                facts = pipeline.reprobe(media_path)
                pipeline.catalog.update_status(
                    asset.id,
                    models.STATUS_COMPLETED,
                    file_path=str(media_path),
                    thumbnail_path=str(thumbnail_path) if thumbnail_path.exists() else None,
                    source_path=None,
                    file_size_bytes=facts.file_size_bytes,
                    duration_seconds=facts.duration_seconds,
                    resolution=facts.resolution,
                    bitrate=facts.bitrate,
                    codec=facts.video_codec,
                    container=facts.container,
                    probe_metadata=facts.as_dict(),
                )
                clean_temp_files([partial_path, asset.source_path])
                report.published.append(asset.id)
                _LOGGER.info("Recovery sweep published stuck asset %s", asset.id)
                continue
            except MediaHubError as exc:
                _LOGGER.warning("Recovery sweep could not publish %s: %s", asset.id, exc)

        clean_temp_files([media_path, thumbnail_path, partial_path, asset.source_path])
        pipeline.catalog.update_status(
            asset.id,
            models.STATUS_FAILED,
            source_path=None,
            file_path=None,
            thumbnail_path=None,
            error_message=f"recovery: stuck in {asset.status} since {asset.updated_at.isoformat()}",
        )
        report.failed.append(asset.id)
        _LOGGER.warning("Recovery sweep marked asset %s failed", asset.id)

    return report


def purge_old_events(analytics: AnalyticsRecorder, retention_days: int | None = None) -> int:
    return analytics.purge_old_events(retention_days=retention_days)
