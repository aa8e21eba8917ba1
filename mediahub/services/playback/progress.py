"""Per-user watch progress on top of the catalog."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import List

from sqlalchemy.exc import IntegrityError

from mediahub.errors import NotFoundError, StoreError, ValidationError
from mediahub.storage.catalog import CatalogStore
from mediahub.storage.repositories import MediaAssetRepository, WatchRecordRepository

_LOGGER = logging.getLogger(__name__)


@dataclass
class WatchProgress:
    position: float
    completed: bool
    watched_at: datetime


@dataclass
class WatchHistoryEntry:
    media_id: str
    title: str
    thumbnail_path: str | None
    duration_seconds: float | None
    position: float
    completed: bool
    watched_at: datetime


def is_watch_complete(position: float, duration_seconds: float | None, threshold: float = 0.90) -> bool:
    """Completion policy offered to callers: at least ``threshold`` of the duration watched."""
    if not duration_seconds or duration_seconds <= 0:
        return False
    return position >= duration_seconds * threshold


class WatchProgressTracker:
    """Idempotent upsert of playback position per (asset, user)."""

    def __init__(self, catalog: CatalogStore) -> None:
        self._catalog = catalog

    def upsert(
        self,
        asset_id: str,
        user_id: str,
        position: float,
        completed: bool,
        watched_at: datetime | None = None,
    ) -> None:
        if position is None or position < 0:
            raise ValidationError(f"Watch position must be a non-negative number, got {position!r}")
        if not user_id:
            raise ValidationError("A user id is required to record watch progress")

        watched_at = watched_at or datetime.utcnow()
        # Two first reports for the same pair can race on the unique constraint; the loser retries as an update.
        for attempt in (1, 2):
            try:
                with self._catalog.session_scope() as session:
                    if MediaAssetRepository(session).get(asset_id) is None:
                        raise NotFoundError(asset_id)
                    WatchRecordRepository(session).upsert(asset_id, str(user_id), float(position), bool(completed), watched_at)
                return
            except StoreError as exc:
                if attempt == 2 or not isinstance(exc.__cause__, IntegrityError):
                    raise
                _LOGGER.debug("Concurrent first write for %s/%s; retrying as update", asset_id, user_id)

    def get_for_user(self, user_id: str) -> List[WatchHistoryEntry]:
        with self._catalog.session_scope() as session:
            rows = WatchRecordRepository(session).list_for_user(str(user_id))
            return [
                WatchHistoryEntry(
                    media_id=asset.id,
                    title=asset.title,
                    thumbnail_path=asset.thumbnail_path,
                    duration_seconds=asset.duration_seconds,
                    position=record.position,
                    completed=record.completed,
                    watched_at=record.watched_at,
                )
                for record, asset in rows
            ]

    def progress_for(self, user_id: str, asset_ids: list[str]) -> dict[str, WatchProgress]:
        with self._catalog.session_scope() as session:
            records = WatchRecordRepository(session).progress_map(str(user_id), asset_ids)
            return {
                media_id: WatchProgress(position=record.position, completed=record.completed, watched_at=record.watched_at)
                for media_id, record in records.items()
            }
