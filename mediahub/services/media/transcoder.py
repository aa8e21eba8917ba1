"""Re-encoding into the canonical delivery format, driven by FFmpeg."""

from __future__ import annotations

import logging
import os
import subprocess
import tempfile
import threading
import time
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, Callable, List

from mediahub.config import CanonicalFormatConfig
from mediahub.errors import TranscodeError
from mediahub.services.media.probe import ProbeResult
from mediahub.utils.filesystem import clean_temp_files, ensure_parents, is_readable_file

_LOGGER = logging.getLogger(__name__)

ProgressCallback = Callable[[float], None]


@dataclass(frozen=True)
class TranscodeOptions:
    """Encoder settings for one transcode. Bitrates are bits per second."""

    video_codec: str = "libx264"
    audio_codec: str = "aac"
    video_bitrate_ceiling: int = 2_000_000
    audio_bitrate: int = 192_000
    target_resolution: str | None = "1920x1080"
    container_format: str = "mp4"
    preset: str = "fast"

    @classmethod
    def from_canonical(cls, canonical: CanonicalFormatConfig) -> "TranscodeOptions":
        return cls(
            video_codec=canonical.video_encoder,
            audio_codec=canonical.audio_codec,
            video_bitrate_ceiling=canonical.video_bitrate_ceiling,
            audio_bitrate=canonical.audio_bitrate,
            target_resolution=canonical.resolution,
            container_format=canonical.container,
            preset=canonical.preset,
        )


def transcode_reasons(facts: ProbeResult, canonical: CanonicalFormatConfig) -> List[str]:
    """List every way ``facts`` deviate from the canonical format. Empty means deliverable as-is."""
    reasons: List[str] = []
    if canonical.container not in facts.container_names:
        reasons.append(f"container {facts.container!r} is not {canonical.container!r}")
    if facts.video_codec != canonical.video_codec:
        reasons.append(f"video codec {facts.video_codec!r} is not {canonical.video_codec!r}")
    if facts.bitrate is None:
        reasons.append("bitrate unknown")
    elif facts.bitrate > canonical.video_bitrate_ceiling:
        reasons.append(f"bitrate {facts.bitrate} exceeds {canonical.video_bitrate_ceiling}")
    if facts.resolution != canonical.resolution:
        reasons.append(f"resolution {facts.resolution!r} is not {canonical.resolution!r}")
    return reasons


def needs_transcode(facts: ProbeResult, canonical: CanonicalFormatConfig) -> bool:
    """Pure re-encode decision over probed facts."""
    return bool(transcode_reasons(facts, canonical))


class Transcoder(ABC):
    """Adapter interface for the external encoding engine."""

    @abstractmethod
    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: TranscodeOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        duration_seconds: float | None = None,
    ) -> Path:
        """Encode ``input_path`` into ``output_path``; raise ``TranscodeError`` on failure."""
        raise NotImplementedError


class FFmpegTranscoder(Transcoder):
    """Run one ffmpeg process per call, killable on timeout or cancellation."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", timeout: float = 3600.0, poll_interval: float = 0.25) -> None:
        self._ffmpeg = ffmpeg_binary
        self._timeout = timeout
        self._poll_interval = poll_interval

    def build_command(self, input_path: Path, output_path: Path, options: TranscodeOptions) -> list[str]:
        command = [
            self._ffmpeg,
            "-hide_banner",
            "-nostdin",
            "-y",
            "-i",
            str(input_path),
            "-c:v",
            options.video_codec,
            "-preset",
            options.preset,
            "-b:v",
            str(options.video_bitrate_ceiling),
            "-maxrate",
            str(options.video_bitrate_ceiling),
            "-bufsize",
            str(options.video_bitrate_ceiling * 2),
        ]
        if options.target_resolution:
            width, _, height = options.target_resolution.partition("x")
            command += [
                "-vf",
                (
                    f"scale={width}:{height}:force_original_aspect_ratio=decrease,"
                    f"pad={width}:{height}:(ow-iw)/2:(oh-ih)/2,setsar=1"
                ),
            ]
        command += [
            "-c:a",
            options.audio_codec,
            "-b:a",
            str(options.audio_bitrate),
        ]
        if options.container_format == "mp4":
            command += ["-movflags", "+faststart"]
        command += [
            "-f",
            options.container_format,
            "-progress",
            "pipe:1",
            "-nostats",
            str(output_path),
        ]
        return command

    def transcode(
        self,
        input_path: Path,
        output_path: Path,
        options: TranscodeOptions,
        progress: ProgressCallback | None = None,
        cancel_event: threading.Event | None = None,
        duration_seconds: float | None = None,
    ) -> Path:
        """Encode via ffmpeg; partial output never survives a failure."""
        input_path, output_path = Path(input_path), Path(output_path)
        if not is_readable_file(input_path):
            raise TranscodeError("unreadable_input", str(input_path))

        ensure_parents(output_path)
        partial_path = output_path.with_name(f"{output_path.name}.part")
        command = self.build_command(input_path, partial_path, options)
        _LOGGER.info("Transcoding started: %s", " ".join(command))

        try:
            with tempfile.TemporaryFile(mode="w+") as stderr_log:
                returncode = self._run(command, stderr_log, progress, cancel_event, duration_seconds)
                if returncode != 0:
                    stderr_log.seek(0)
                    tail = stderr_log.read()[-500:].strip()
                    raise TranscodeError("engine_exit", f"ffmpeg exited with {returncode}: {tail}")

            if not partial_path.exists() or partial_path.stat().st_size == 0:
                raise TranscodeError("no_output", f"ffmpeg produced no output for {input_path.name}")
            os.replace(partial_path, output_path)
        except BaseException:
            clean_temp_files([partial_path, output_path])
            raise

        _LOGGER.info("Transcoding completed: %s", output_path)
        return output_path

    def _run(
        self,
        command: list[str],
        stderr_log: IO[str],
        progress: ProgressCallback | None,
        cancel_event: threading.Event | None,
        duration_seconds: float | None,
    ) -> int:
        try:
            process = subprocess.Popen(command, stdout=subprocess.PIPE, stderr=stderr_log, text=True)
        except OSError as exc:
            raise TranscodeError("engine_unavailable", str(exc)) from exc

        reader = threading.Thread(
            target=self._pump_progress,
            args=(process.stdout, progress, duration_seconds),
            daemon=True,
        )
        reader.start()
        deadline = time.monotonic() + self._timeout
        try:
            while True:
                try:
                    return process.wait(timeout=self._poll_interval)
                except subprocess.TimeoutExpired:
                    pass
                if cancel_event is not None and cancel_event.is_set():
                    self._kill(process)
                    raise TranscodeError("cancelled", "transcode cancelled by caller")
                if time.monotonic() > deadline:
                    self._kill(process)
                    raise TranscodeError("timeout", f"exceeded {self._timeout}s")
        finally:
            if process.poll() is None:
                self._kill(process)
            reader.join(timeout=5)

    @staticmethod
    def _kill(process: subprocess.Popen) -> None:
        try:
            process.kill()
        except OSError as exc:
            _LOGGER.warning("Could not kill ffmpeg (pid %s): %s", process.pid, exc)
        process.wait()

    @staticmethod
    def _pump_progress(stream: IO[str] | None, progress: ProgressCallback | None, duration: float | None) -> None:
        """Translate ``-progress pipe:1`` key=value lines into fractions."""
        if stream is None:
            return
        for line in stream:
            if progress is None:
                continue
            key, _, value = line.strip().partition("=")
            fraction: float | None = None
            if key == "progress" and value == "end":
                fraction = 1.0
            elif key in ("out_time_us", "out_time_ms") and duration:
                # both keys carry microseconds in current ffmpeg releases
                try:
                    fraction = min(max(int(value) / (duration * 1_000_000), 0.0), 1.0)
                except ValueError:
                    continue
            if fraction is None:
                continue
            try:
                progress(fraction)
            except Exception:  # noqa: BLE001
                _LOGGER.warning("Progress callback raised; ignoring", exc_info=True)
