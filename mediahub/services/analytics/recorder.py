"""Best-effort usage event log and its read-side aggregates."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Dict, List

from mediahub.config import AnalyticsConfig
from mediahub.storage import models
from mediahub.storage.catalog import CatalogStore
from mediahub.storage.repositories import AnalyticsRepository, MediaAssetRepository

_LOGGER = logging.getLogger(__name__)

EVENT_UPLOAD_START = "upload_start"
EVENT_UPLOAD_COMPLETE = "upload_complete"
EVENT_UPLOAD_ERROR = "upload_error"
EVENT_PLAY = "play"
EVENT_VIEW = "view"
EVENT_WATCH_COMPLETE = "watch_complete"
EVENT_SEARCH = "search"
EVENT_DELETE = "delete"


@dataclass
class PlaybackDay:
    date: str
    plays: int
    unique_users: int
    unique_media: int


@dataclass
class PopularMedia:
    media_id: str
    title: str
    thumbnail_path: str | None
    play_count: int
    unique_viewers: int


@dataclass
class UserEngagement:
    total_plays: int
    total_watch_time: float
    favorite_categories: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class SystemHealth:
    total_media_files: int
    total_users: int
    storage_used: int
    daily_activity: int
    assets_by_status: Dict[str, int] = field(default_factory=dict)


class AnalyticsRecorder:
    """Append-only event recording. ``record`` never raises."""

    def __init__(self, catalog: CatalogStore, config: AnalyticsConfig | None = None) -> None:
        self._catalog = catalog
        self._config = config or AnalyticsConfig()

    @property
    def enabled(self) -> bool:
        return self._config.enabled

    def record(
        self,
        event_type: str,
        payload: Dict[str, Any] | None = None,
        media_id: str | None = None,
        user_id: str | None = None,
        session_id: str | None = None,
    ) -> bool:
        """Append one event; returns False when disabled or when the write failed."""
        if not self._config.enabled:
            return False

        payload = dict(payload or {})
        event = models.AnalyticsEvent(
            event_type=event_type,
            media_id=media_id or payload.get("media_id"),
            user_id=self._as_str(user_id or payload.get("user_id")),
            session_id=session_id or payload.get("session_id"),
            payload=payload,
            occurred_at=datetime.utcnow(),
        )
        try:
            with self._catalog.session_scope() as session:
                AnalyticsRepository(session).add(event)
        except Exception as exc:  # noqa: BLE001
            _LOGGER.warning("Analytics tracking error for %s: %s", event_type, exc)
            return False
        return True

    def get_playback_stats(self, days: int | None = None, now: datetime | None = None) -> List[PlaybackDay]:
        window = days if days is not None else self._config.playback_window_days
        since = (now or datetime.utcnow()) - timedelta(days=window)
        with self._catalog.session_scope() as session:
            rows = AnalyticsRepository(session).daily_counts(EVENT_PLAY, since)
        return [PlaybackDay(date=day, plays=plays, unique_users=users, unique_media=media) for day, plays, users, media in rows]

    def get_popular(self, limit: int = 10) -> List[PopularMedia]:
        with self._catalog.session_scope() as session:
            rows = AnalyticsRepository(session).popular(EVENT_PLAY, limit)
            return [
                PopularMedia(
                    media_id=asset.id,
                    title=asset.title,
                    thumbnail_path=asset.thumbnail_path,
                    play_count=plays,
                    unique_viewers=viewers,
                )
                for asset, plays, viewers in rows
            ]

    def get_engagement(self, user_id: str) -> UserEngagement:
        user_id = str(user_id)
        with self._catalog.session_scope() as session:
            repo = AnalyticsRepository(session)
            total_plays = repo.count(EVENT_PLAY, user_id=user_id)
            watch_time = sum(self._as_float(p.get("duration")) for p in repo.payloads(EVENT_WATCH_COMPLETE, user_id))
            categories = repo.top_categories(EVENT_PLAY, user_id)
        return UserEngagement(
            total_plays=total_plays,
            total_watch_time=watch_time,
            favorite_categories=[{"category": category, "plays": plays} for category, plays in categories],
        )

    def get_system_health(self, now: datetime | None = None) -> SystemHealth:
        since = (now or datetime.utcnow()) - timedelta(hours=24)
        with self._catalog.session_scope() as session:
            assets = MediaAssetRepository(session)
            events = AnalyticsRepository(session)
            total_media, storage_used = assets.totals()
            return SystemHealth(
                total_media_files=total_media,
                total_users=events.distinct_users(),
                storage_used=storage_used,
                daily_activity=events.count(since=since),
                assets_by_status=assets.status_counts(),
            )

    def purge_old_events(self, retention_days: int | None = None, now: datetime | None = None) -> int:
        """Retention sweep; safe to run alongside ingestion."""
        days = retention_days if retention_days is not None else self._config.retention_days
        cutoff = (now or datetime.utcnow()) - timedelta(days=days)
        with self._catalog.session_scope() as session:
            removed = AnalyticsRepository(session).purge_before(cutoff)
        _LOGGER.info("Purged %d analytics events older than %s", removed, cutoff.isoformat())
        return removed

    @staticmethod
    def _as_str(value: Any) -> str | None:
        return None if value is None else str(value)

    @staticmethod
    def _as_float(value: Any) -> float:
        try:
            return float(value) if value is not None else 0.0
        except (TypeError, ValueError):
            return 0.0
