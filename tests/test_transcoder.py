from __future__ import annotations

import io
import subprocess
import threading
from dataclasses import replace
from pathlib import Path
from unittest.mock import patch

import pytest

from conftest import CANONICAL_FACTS, UHD_HEVC_FACTS
from mediahub.config import CanonicalFormatConfig
from mediahub.errors import TranscodeError
from mediahub.services.media.transcoder import FFmpegTranscoder, TranscodeOptions, needs_transcode, transcode_reasons

CANONICAL = CanonicalFormatConfig(
    container="mp4",
    video_codec="h264",
    video_encoder="libx264",
    audio_codec="aac",
    video_bitrate_ceiling=2_000_000,
    audio_bitrate=192_000,
    resolution="1920x1080",
    preset="fast",
)


class FakeProcess:
    """Stands in for ``subprocess.Popen``; writes the output file named last on the command line."""

    def __init__(self, command, returncode=0, hang=False, progress_lines=(), **_kwargs):
        Path(command[-1]).write_bytes(b"encoded")
        self.stdout = io.StringIO("".join(progress_lines))
        self.pid = 4242
        self.killed = False
        self._returncode = returncode
        self._hang = hang

    def wait(self, timeout=None):
        if self._hang and not self.killed:
            raise subprocess.TimeoutExpired(cmd="ffmpeg", timeout=timeout)
        return -9 if self.killed else self._returncode

    def poll(self):
        if self._hang and not self.killed:
            return None
        return self.wait()

    def kill(self):
        self.killed = True


def _popen(**behaviour):
    processes = []

    def factory(command, **kwargs):
        process = FakeProcess(command, **behaviour)
        processes.append(process)
        return process

    return factory, processes


@pytest.fixture
def source(tmp_path) -> Path:
    path = tmp_path / "input.mkv"
    path.write_bytes(b"source")
    return path


def test_canonical_input_needs_no_transcode():
    assert transcode_reasons(CANONICAL_FACTS, CANONICAL) == []
    assert needs_transcode(CANONICAL_FACTS, CANONICAL) is False


def test_uhd_hevc_input_needs_transcode():
    reasons = transcode_reasons(UHD_HEVC_FACTS, CANONICAL)
    assert needs_transcode(UHD_HEVC_FACTS, CANONICAL) is True
    assert len(reasons) == 4


def test_unknown_bitrate_forces_transcode():
    assert needs_transcode(replace(CANONICAL_FACTS, bitrate=None), CANONICAL) is True


def test_bitrate_at_ceiling_is_accepted():
    assert needs_transcode(replace(CANONICAL_FACTS, bitrate=2_000_000), CANONICAL) is False
    assert needs_transcode(replace(CANONICAL_FACTS, bitrate=2_000_001), CANONICAL) is True


def test_decision_is_deterministic():
    results = {needs_transcode(UHD_HEVC_FACTS, CANONICAL) for _ in range(5)}
    assert results == {True}


def test_build_command_targets_canonical_format(tmp_path):
    command = FFmpegTranscoder().build_command(
        tmp_path / "in.mkv", tmp_path / "out.mp4.part", TranscodeOptions.from_canonical(CANONICAL)
    )

    assert command[command.index("-c:v") + 1] == "libx264"
    assert command[command.index("-maxrate") + 1] == "2000000"
    assert "scale=1920:1080" in command[command.index("-vf") + 1]
    assert command[command.index("-f") + 1] == "mp4"
    assert command[-1] == str(tmp_path / "out.mp4.part")


def test_transcode_success_reports_progress_and_renames(tmp_path, source):
    output = tmp_path / "media" / "asset.mp4"
    factory, _ = _popen(progress_lines=["out_time_us=5000000\n", "progress=continue\n", "progress=end\n"])
    seen = []

    with patch("mediahub.services.media.transcoder.subprocess.Popen", side_effect=factory):
        result = FFmpegTranscoder(poll_interval=0.01).transcode(
            source, output, TranscodeOptions(), progress=seen.append, duration_seconds=10.0
        )

    assert result == output
    assert output.read_bytes() == b"encoded"
    assert not output.with_name("asset.mp4.part").exists()
    assert seen == [0.5, 1.0]


def test_transcode_nonzero_exit_cleans_partial(tmp_path, source):
    output = tmp_path / "asset.mp4"
    factory, _ = _popen(returncode=1)

    with patch("mediahub.services.media.transcoder.subprocess.Popen", side_effect=factory):
        with pytest.raises(TranscodeError) as excinfo:
            FFmpegTranscoder(poll_interval=0.01).transcode(source, output, TranscodeOptions())

    assert excinfo.value.reason == "engine_exit"
    assert not output.exists()
    assert not output.with_name("asset.mp4.part").exists()


def test_transcode_timeout_kills_process(tmp_path, source):
    output = tmp_path / "asset.mp4"
    factory, processes = _popen(hang=True)

    with patch("mediahub.services.media.transcoder.subprocess.Popen", side_effect=factory):
        with pytest.raises(TranscodeError) as excinfo:
            FFmpegTranscoder(timeout=0.05, poll_interval=0.01).transcode(source, output, TranscodeOptions())

    assert excinfo.value.reason == "timeout"
    assert processes[0].killed
    assert list(tmp_path.glob("asset.mp4*")) == []


def test_transcode_cancel_kills_process(tmp_path, source):
    output = tmp_path / "asset.mp4"
    factory, processes = _popen(hang=True)
    cancel = threading.Event()
    cancel.set()

    with patch("mediahub.services.media.transcoder.subprocess.Popen", side_effect=factory):
        with pytest.raises(TranscodeError) as excinfo:
            FFmpegTranscoder(poll_interval=0.01).transcode(source, output, TranscodeOptions(), cancel_event=cancel)

    assert excinfo.value.reason == "cancelled"
    assert processes[0].killed
    assert list(tmp_path.glob("asset.mp4*")) == []


def test_missing_engine_is_reported(tmp_path, source):
    with patch("mediahub.services.media.transcoder.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")):
        with pytest.raises(TranscodeError) as excinfo:
            FFmpegTranscoder().transcode(source, tmp_path / "asset.mp4", TranscodeOptions())

    assert excinfo.value.reason == "engine_unavailable"


def test_unreadable_input_is_rejected(tmp_path):
    with pytest.raises(TranscodeError) as excinfo:
        FFmpegTranscoder().transcode(tmp_path / "nope.mkv", tmp_path / "asset.mp4", TranscodeOptions())

    assert excinfo.value.reason == "unreadable_input"
