"""Technical metadata extraction leveraging ffprobe."""

from __future__ import annotations

import json
import logging
import subprocess
from dataclasses import asdict, dataclass
from pathlib import Path
from typing import Any

from mediahub.errors import ProbeError
from mediahub.utils.filesystem import is_readable_file

_LOGGER = logging.getLogger(__name__)


@dataclass(frozen=True)
class ProbeResult:
    """Container/codec facts of a media file. Bitrate is bits per second."""

    duration_seconds: float | None
    file_size_bytes: int
    bitrate: int | None
    container: str | None
    video_codec: str | None
    audio_codec: str | None
    resolution: str | None
    frame_rate: float | None = None

    @property
    def container_names(self) -> list[str]:
        # ffprobe reports demuxer aliases, e.g. "mov,mp4,m4a,3gp,3g2,mj2"
        if not self.container:
            return []
        return [name.strip() for name in self.container.split(",") if name.strip()]

    def as_dict(self) -> dict[str, Any]:
        return asdict(self)


class MetadataProbe:
    """Inspect a media file with ffprobe without touching its contents."""

    def __init__(self, ffprobe_binary: str = "ffprobe", timeout: float = 30.0) -> None:
        self._ffprobe = ffprobe_binary
        self._timeout = timeout

    def probe(self, path: Path) -> ProbeResult:
        """Run ffprobe and return the parsed facts, raising ``ProbeError`` on any failure."""
        path = Path(path)
        if not is_readable_file(path):
            raise ProbeError(f"Media file is missing or unreadable: {path}")

        command = [
            self._ffprobe,
            "-v",
            "error",
            "-print_format",
            "json",
            "-show_format",
            "-show_streams",
            str(path),
        ]
        try:
            process = subprocess.run(command, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            raise ProbeError(f"ffprobe timed out after {self._timeout}s on {path.name}") from exc
        except OSError as exc:
            raise ProbeError(f"ffprobe could not be started: {exc}") from exc

        if process.returncode != 0:
            raise ProbeError(f"ffprobe failed on {path.name}: {process.stderr.strip()}")

        try:
            payload = json.loads(process.stdout or "{}")
        except json.JSONDecodeError as exc:
            raise ProbeError(f"ffprobe returned invalid JSON for {path.name}") from exc

        result = self.parse(payload, fallback_size=path.stat().st_size)
        _LOGGER.debug("Probed %s: %s", path.name, result)
        return result

    @classmethod
    def parse(cls, payload: dict[str, Any], fallback_size: int = 0) -> ProbeResult:
        """Convert ffprobe's ``-show_format -show_streams`` JSON into a ``ProbeResult``."""
        streams = payload.get("streams") or []
        fmt = payload.get("format") or {}

        video = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video is None and audio is None:
            raise ProbeError("No decodable audio or video stream found")

        resolution = None
        if video is not None and video.get("width") and video.get("height"):
            resolution = f"{int(video['width'])}x{int(video['height'])}"

        bitrate = cls._safe_int(fmt.get("bit_rate"))
        if bitrate is None and video is not None:
            bitrate = cls._safe_int(video.get("bit_rate"))

        return ProbeResult(
            duration_seconds=cls._safe_float(fmt.get("duration")),
            file_size_bytes=cls._safe_int(fmt.get("size")) or fallback_size,
            bitrate=bitrate,
            container=fmt.get("format_name"),
            video_codec=video.get("codec_name") if video else None,
            audio_codec=audio.get("codec_name") if audio else None,
            resolution=resolution,
            frame_rate=cls._parse_frame_rate(video.get("r_frame_rate")) if video else None,
        )

    @staticmethod
    def _parse_frame_rate(value: str | None) -> float | None:
        # r_frame_rate is a rational such as "30000/1001"
        if not value:
            return None
        numerator, _, denominator = value.partition("/")
        try:
            if denominator:
                return round(float(numerator) / float(denominator), 3)
            return float(numerator)
        except (ValueError, ZeroDivisionError):
            return None

    @staticmethod
    def _safe_float(value: Any) -> float | None:
        try:
            return float(value) if value is not None else None
        except (TypeError, ValueError):
            return None

    @staticmethod
    def _safe_int(value: Any) -> int | None:
        try:
            return int(float(value)) if value is not None else None
        except (TypeError, ValueError):
            return None
