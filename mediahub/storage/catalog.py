"""Row-atomic catalog access used by the pipeline and the playback side."""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime
from typing import Iterator, Sequence

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from mediahub.errors import NotFoundError, StoreError
from mediahub.storage import models
from mediahub.storage.database import get_session, init_db
from mediahub.storage.repositories import MediaAssetRepository

_LOGGER = logging.getLogger(__name__)


@dataclass
class CatalogFilters:
    category: str | None = None
    search: str | None = None
    limit: int | None = None
    offset: int = 0
    statuses: Sequence[str] = (models.STATUS_COMPLETED,)


class CatalogStore:
    """Each public method is one transaction touching one asset row."""

    def __init__(self, create_schema: bool = True) -> None:
        if create_schema:
            try:
                init_db()
            except SQLAlchemyError as exc:
                raise StoreError(f"Could not initialise catalog schema: {exc}") from exc

    @contextmanager
    def session_scope(self) -> Iterator[Session]:
        """Transactional scope translating driver failures into ``StoreError``."""
        try:
            with get_session() as session:
                yield session
        except SQLAlchemyError as exc:
            _LOGGER.error("Catalog operation failed: %s", exc)
            raise StoreError(str(exc)) from exc

    def insert_pending(self, asset: models.MediaAsset) -> str:
        with self.session_scope() as session:
            created = MediaAssetRepository(session).create(asset)
            return created.id

    def update_status(self, asset_id: str, status: str, **fields) -> models.MediaAsset:
        if status not in models.ASSET_STATUSES:
            raise ValueError(f"Unknown asset status: {status}")
        with self.session_scope() as session:
            asset = MediaAssetRepository(session).update(asset_id, status, fields)
            if asset is None:
                raise NotFoundError(asset_id)
            return asset

    def get_by_id(self, asset_id: str) -> models.MediaAsset | None:
        with self.session_scope() as session:
            return MediaAssetRepository(session).get(asset_id)

    def query(self, filters: CatalogFilters | None = None) -> list[models.MediaAsset]:
        filters = filters or CatalogFilters()
        with self.session_scope() as session:
            return MediaAssetRepository(session).query(
                category=filters.category,
                search=filters.search,
                limit=filters.limit,
                offset=filters.offset,
                statuses=filters.statuses,
            )

    def delete(self, asset_id: str) -> bool:
        with self.session_scope() as session:
            return MediaAssetRepository(session).delete(asset_id)

    def list_stale(self, statuses: Sequence[str], updated_before: datetime) -> list[models.MediaAsset]:
        with self.session_scope() as session:
            return MediaAssetRepository(session).list_stale(statuses, updated_before)
