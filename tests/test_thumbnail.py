from __future__ import annotations

import subprocess
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from mediahub.errors import ThumbnailError
from mediahub.services.media.thumbnail import ThumbnailGenerator


@pytest.fixture
def media(tmp_path) -> Path:
    path = tmp_path / "asset.mp4"
    path.write_bytes(b"video")
    return path


def _writes_frame(command, **_kwargs):
    Path(command[-1]).write_bytes(b"\xff\xd8jpeg")
    return MagicMock(returncode=0, stderr="")


def test_seek_is_ten_percent_of_duration(tmp_path, media):
    output = tmp_path / "thumbs" / "asset.jpg"

    with patch("mediahub.services.media.thumbnail.subprocess.run", side_effect=_writes_frame) as run:
        result = ThumbnailGenerator(size="320x180").generate_thumbnail(media, output, duration_seconds=120.0)

    command = run.call_args.args[0]
    assert result == output and output.exists()
    assert command[command.index("-ss") + 1] == "12.000"
    assert command[command.index("-vf") + 1] == "scale=320:180"
    assert command[command.index("-frames:v") + 1] == "1"


def test_unknown_duration_uses_first_frame(tmp_path, media):
    with patch("mediahub.services.media.thumbnail.subprocess.run", side_effect=_writes_frame) as run:
        ThumbnailGenerator().generate_thumbnail(media, tmp_path / "asset.jpg", duration_seconds=None)

    assert "-ss" not in run.call_args.args[0]


def test_failed_extraction_raises_and_leaves_no_file(tmp_path, media):
    output = tmp_path / "asset.jpg"
    failed = MagicMock(returncode=1, stderr="Output file is empty, nothing was encoded")

    with patch("mediahub.services.media.thumbnail.subprocess.run", return_value=failed):
        with pytest.raises(ThumbnailError):
            ThumbnailGenerator().generate_thumbnail(media, output, duration_seconds=30.0)

    assert not output.exists()


def test_timeout_raises(tmp_path, media):
    with patch(
        "mediahub.services.media.thumbnail.subprocess.run",
        side_effect=subprocess.TimeoutExpired(cmd="ffmpeg", timeout=30),
    ):
        with pytest.raises(ThumbnailError, match="timed out"):
            ThumbnailGenerator().generate_thumbnail(media, tmp_path / "asset.jpg", duration_seconds=30.0)


def test_missing_source_raises(tmp_path):
    with pytest.raises(ThumbnailError):
        ThumbnailGenerator().generate_thumbnail(tmp_path / "missing.mp4", tmp_path / "asset.jpg")
