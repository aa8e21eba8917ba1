from __future__ import annotations

from datetime import datetime, timedelta

import pytest

from mediahub.errors import NotFoundError, ValidationError
from mediahub.services.playback.progress import WatchProgressTracker, is_watch_complete


def test_repeated_reports_keep_one_record(library, seed):
    asset = seed(duration_seconds=600.0)

    library.record_watch_progress(asset.id, "u1", 30.0)
    library.record_watch_progress(asset.id, "u1", 95.5)

    history = library.get_watch_history("u1")
    assert len(history) == 1
    assert history[0].position == pytest.approx(95.5)
    assert history[0].completed is False
    assert history[0].title == asset.title


def test_threshold_marks_completion(library, seed):
    asset = seed(duration_seconds=100.0)

    library.record_watch_progress(asset.id, "u1", 90.0)

    assert library.get_watch_history("u1")[0].completed is True


def test_explicit_completion_flag_wins(library, seed):
    asset = seed(duration_seconds=100.0)
    library.record_watch_progress(asset.id, "u1", 10.0, completed=True)
    assert library.get_watch_history("u1")[0].completed is True


def test_unknown_asset_is_rejected(library):
    with pytest.raises(NotFoundError):
        library.record_watch_progress("f" * 32, "u1", 5.0)


def test_negative_position_is_rejected(catalog, seed):
    asset = seed()
    with pytest.raises(ValidationError):
        WatchProgressTracker(catalog).upsert(asset.id, "u1", -1.0, False)


def test_older_report_does_not_overwrite_newer(catalog, seed):
    asset = seed()
    tracker = WatchProgressTracker(catalog)
    now = datetime(2026, 3, 1, 12, 0, 0)

    tracker.upsert(asset.id, "u1", 300.0, False, watched_at=now)
    tracker.upsert(asset.id, "u1", 12.0, False, watched_at=now - timedelta(seconds=30))

    assert tracker.get_for_user("u1")[0].position == pytest.approx(300.0)


def test_history_is_most_recent_first(catalog, seed):
    first, second = seed(), seed()
    tracker = WatchProgressTracker(catalog)
    tracker.upsert(first.id, "u1", 1.0, False, watched_at=datetime(2026, 3, 1))
    tracker.upsert(second.id, "u1", 1.0, False, watched_at=datetime(2026, 3, 2))

    assert [entry.media_id for entry in tracker.get_for_user("u1")] == [second.id, first.id]


def test_listing_overlays_progress(library, seed):
    watched, unwatched = seed(duration_seconds=200.0), seed()
    library.record_watch_progress(watched.id, "u1", 50.0)

    overlay = dict((asset.id, progress) for asset, progress in library.list_with_progress("u1"))

    assert overlay[watched.id].position == pytest.approx(50.0)
    assert overlay[unwatched.id] is None


@pytest.mark.parametrize(
    ("position", "duration", "expected"),
    [(89.9, 100.0, False), (90.0, 100.0, True), (10.0, None, False), (5.0, 0.0, False)],
)
def test_is_watch_complete(position, duration, expected):
    assert is_watch_complete(position, duration) is expected
