"""Database session factory for SQLite catalog persistence."""

from __future__ import annotations

from contextlib import contextmanager
from typing import Iterator

from sqlalchemy import Engine, create_engine, event
from sqlalchemy.orm import Session, sessionmaker

from mediahub.config import DatabaseConfig

_ENGINE: Engine | None = None
_SessionFactory: sessionmaker | None = None


def configure_engine(url: str | None = None, busy_timeout: float | None = None) -> Engine:
    """(Re)bind the process-wide engine. Tests point this at a temporary database."""
    global _ENGINE, _SessionFactory

    defaults = DatabaseConfig()
    url = url or defaults.url
    timeout = busy_timeout if busy_timeout is not None else defaults.busy_timeout

    connect_args: dict = {}
    if url.startswith("sqlite"):
        # Pipeline workers share the engine across threads.
        connect_args = {"check_same_thread": False, "timeout": timeout}

    if _ENGINE is not None:
        _ENGINE.dispose()
    _ENGINE = create_engine(url, echo=False, future=True, connect_args=connect_args)
    if url.startswith("sqlite"):
        event.listen(_ENGINE, "connect", _enable_sqlite_foreign_keys)
    _SessionFactory = sessionmaker(
        bind=_ENGINE,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
        future=True,
    )
    return _ENGINE


def _enable_sqlite_foreign_keys(dbapi_connection, _record) -> None:
    cursor = dbapi_connection.cursor()
    cursor.execute("PRAGMA foreign_keys=ON")
    cursor.close()


def get_engine() -> Engine:
    if _ENGINE is None:
        configure_engine()
    return _ENGINE


def init_db() -> None:
    """Create database tables if they do not exist."""
    from mediahub.storage import models  # Local import to avoid circular import

    models.Base.metadata.create_all(get_engine())


@contextmanager
def get_session() -> Iterator[Session]:
    """Provide a transactional session scope."""
    get_engine()
    session = _SessionFactory()
    try:
        yield session
        session.commit()
    except Exception:
        session.rollback()
        raise
    finally:
        session.close()
