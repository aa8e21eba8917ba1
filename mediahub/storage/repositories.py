"""Repository helpers for database persistence."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Iterable, List, Sequence

from sqlalchemy import Select, delete, distinct, func, or_, select, union
from sqlalchemy.orm import Session

from mediahub.storage import models


class MediaAssetRepository:
    """CRUD helpers for `MediaAsset` rows."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, asset: models.MediaAsset) -> models.MediaAsset:
        now = datetime.utcnow()
        asset.status = models.STATUS_PENDING
        asset.uploaded_at = asset.uploaded_at or now
        asset.updated_at = now
        self._session.add(asset)
        self._session.flush()
        return asset

    def get(self, asset_id: str) -> models.MediaAsset | None:
        stmt: Select = select(models.MediaAsset).where(models.MediaAsset.id == asset_id)
        return self._session.execute(stmt).scalars().first()

    def update(self, asset_id: str, status: str, fields: dict[str, Any]) -> models.MediaAsset | None:
        asset = self.get(asset_id)
        if asset is None:
            return None
        for name, value in fields.items():
            setattr(asset, name, value)
        asset.status = status
        asset.updated_at = datetime.utcnow()
        self._session.flush()
        return asset

    def query(
        self,
        category: str | None = None,
        search: str | None = None,
        limit: int | None = None,
        offset: int = 0,
        statuses: Sequence[str] = (models.STATUS_COMPLETED,),
    ) -> list[models.MediaAsset]:
        stmt: Select = select(models.MediaAsset).where(models.MediaAsset.status.in_(statuses))
        if category:
            stmt = stmt.where(models.MediaAsset.category == category)
        if search:
            # literal substring match: LIKE wildcards in user input are escaped
            escaped = search.replace("\\", "\\\\").replace("%", "\\%").replace("_", "\\_")
            pattern = f"%{escaped}%"
            stmt = stmt.where(
                or_(
                    models.MediaAsset.title.ilike(pattern, escape="\\"),
                    models.MediaAsset.description.ilike(pattern, escape="\\"),
                )
            )
        stmt = stmt.order_by(models.MediaAsset.uploaded_at.desc(), models.MediaAsset.id.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        return list(self._session.execute(stmt).scalars().all())

    def delete(self, asset_id: str) -> bool:
        self._session.execute(delete(models.WatchRecord).where(models.WatchRecord.media_id == asset_id))
        result = self._session.execute(delete(models.MediaAsset).where(models.MediaAsset.id == asset_id))
        return result.rowcount > 0

    def list_stale(self, statuses: Iterable[str], updated_before: datetime) -> list[models.MediaAsset]:
        stmt: Select = (
            select(models.MediaAsset)
            .where(models.MediaAsset.status.in_(list(statuses)))
            .where(models.MediaAsset.updated_at < updated_before)
            .order_by(models.MediaAsset.updated_at)
        )
        return list(self._session.execute(stmt).scalars().all())

    def status_counts(self) -> dict[str, int]:
        stmt = select(models.MediaAsset.status, func.count()).group_by(models.MediaAsset.status)
        return {status: count for status, count in self._session.execute(stmt).all()}

    def totals(self) -> tuple[int, int]:
        """Return (asset count, bytes stored)."""
        stmt = select(func.count(models.MediaAsset.id), func.coalesce(func.sum(models.MediaAsset.file_size_bytes), 0))
        count, size = self._session.execute(stmt).one()
        return int(count), int(size)


class WatchRecordRepository:
    """Persist and query per-user playback progress."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get(self, media_id: str, user_id: str) -> models.WatchRecord | None:
        stmt: Select = select(models.WatchRecord).where(
            models.WatchRecord.media_id == media_id,
            models.WatchRecord.user_id == user_id,
        )
        return self._session.execute(stmt).scalar_one_or_none()

    def upsert(
        self,
        media_id: str,
        user_id: str,
        position: float,
        completed: bool,
        watched_at: datetime,
    ) -> models.WatchRecord:
        record = self.get(media_id, user_id)
        if record is None:
            record = models.WatchRecord(
                media_id=media_id,
                user_id=user_id,
                position=position,
                completed=completed,
                watched_at=watched_at,
            )
            self._session.add(record)
        elif record.watched_at <= watched_at:
            record.position = position
            record.completed = completed
            record.watched_at = watched_at
        self._session.flush()
        return record

    def list_for_user(self, user_id: str) -> List[tuple[models.WatchRecord, models.MediaAsset]]:
        stmt = (
            select(models.WatchRecord, models.MediaAsset)
            .join(models.MediaAsset, models.WatchRecord.media_id == models.MediaAsset.id)
            .where(models.WatchRecord.user_id == user_id)
            .order_by(models.WatchRecord.watched_at.desc(), models.WatchRecord.id.desc())
        )
        return [(record, asset) for record, asset in self._session.execute(stmt).all()]

    def progress_map(self, user_id: str, media_ids: Iterable[str]) -> dict[str, models.WatchRecord]:
        ids = list(media_ids)
        if not ids:
            return {}
        stmt: Select = select(models.WatchRecord).where(
            models.WatchRecord.user_id == user_id,
            models.WatchRecord.media_id.in_(ids),
        )
        return {record.media_id: record for record in self._session.execute(stmt).scalars().all()}


class AnalyticsRepository:
    """Append events and run read-side aggregates over the event log."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def add(self, event: models.AnalyticsEvent) -> models.AnalyticsEvent:
        self._session.add(event)
        self._session.flush()
        return event

    def count(self, event_type: str | None = None, since: datetime | None = None, user_id: str | None = None) -> int:
        stmt = select(func.count()).select_from(models.AnalyticsEvent)
        if event_type:
            stmt = stmt.where(models.AnalyticsEvent.event_type == event_type)
        if user_id is not None:
            stmt = stmt.where(models.AnalyticsEvent.user_id == user_id)
        if since is not None:
            stmt = stmt.where(models.AnalyticsEvent.occurred_at >= since)
        return int(self._session.execute(stmt).scalar_one())

    def daily_counts(self, event_type: str, since: datetime) -> list[tuple[str, int, int, int]]:
        """Return (date, events, unique users, unique media) per day, newest first."""
        day = func.date(models.AnalyticsEvent.occurred_at)
        stmt = (
            select(
                day.label("day"),
                func.count(models.AnalyticsEvent.id),
                func.count(distinct(models.AnalyticsEvent.user_id)),
                func.count(distinct(models.AnalyticsEvent.media_id)),
            )
            .where(models.AnalyticsEvent.event_type == event_type)
            .where(models.AnalyticsEvent.occurred_at >= since)
            .group_by(day)
            .order_by(day.desc())
        )
        return [(str(row[0]), int(row[1]), int(row[2]), int(row[3])) for row in self._session.execute(stmt).all()]

    def popular(self, event_type: str, limit: int) -> list[tuple[models.MediaAsset, int, int]]:
        """Completed assets ranked by event count, including assets with none."""
        plays = func.count(models.AnalyticsEvent.id)
        stmt = (
            select(models.MediaAsset, plays, func.count(distinct(models.AnalyticsEvent.user_id)))
            .outerjoin(
                models.AnalyticsEvent,
                (models.AnalyticsEvent.media_id == models.MediaAsset.id)
                & (models.AnalyticsEvent.event_type == event_type),
            )
            .where(models.MediaAsset.status == models.STATUS_COMPLETED)
            .group_by(models.MediaAsset.id)
            .order_by(plays.desc(), models.MediaAsset.uploaded_at.desc())
            .limit(limit)
        )
        return [(asset, int(count), int(viewers)) for asset, count, viewers in self._session.execute(stmt).all()]

    def payloads(self, event_type: str, user_id: str) -> list[dict[str, Any]]:
        stmt = select(models.AnalyticsEvent.payload).where(
            models.AnalyticsEvent.event_type == event_type,
            models.AnalyticsEvent.user_id == user_id,
        )
        return [payload or {} for payload in self._session.execute(stmt).scalars().all()]

    def top_categories(self, event_type: str, user_id: str, limit: int = 5) -> list[tuple[str, int]]:
        plays = func.count(models.AnalyticsEvent.id)
        stmt = (
            select(models.MediaAsset.category, plays)
            .join(models.MediaAsset, models.AnalyticsEvent.media_id == models.MediaAsset.id)
            .where(models.AnalyticsEvent.user_id == user_id, models.AnalyticsEvent.event_type == event_type)
            .group_by(models.MediaAsset.category)
            .order_by(plays.desc(), models.MediaAsset.category)
            .limit(limit)
        )
        return [(category, int(count)) for category, count in self._session.execute(stmt).all()]

    def distinct_users(self) -> int:
        users = union(
            select(models.MediaAsset.owner_user_id.label("user_id")).where(models.MediaAsset.owner_user_id.is_not(None)),
            select(models.WatchRecord.user_id.label("user_id")),
            select(models.AnalyticsEvent.user_id.label("user_id")).where(models.AnalyticsEvent.user_id.is_not(None)),
        ).subquery()
        return int(self._session.execute(select(func.count()).select_from(users)).scalar_one())

    def purge_before(self, cutoff: datetime) -> int:
        result = self._session.execute(delete(models.AnalyticsEvent).where(models.AnalyticsEvent.occurred_at < cutoff))
        return int(result.rowcount or 0)
