"""Single-frame thumbnail extraction using FFmpeg."""

from __future__ import annotations

import logging
import subprocess
from pathlib import Path

from mediahub.errors import ThumbnailError
from mediahub.utils.filesystem import clean_temp_files, ensure_parents, is_readable_file

_LOGGER = logging.getLogger(__name__)


class ThumbnailGenerator:
    """Grab one representative frame and downscale it to a fixed size."""

    def __init__(self, ffmpeg_binary: str = "ffmpeg", size: str = "400x225", timeout: float = 30.0) -> None:
        self._ffmpeg = ffmpeg_binary
        self._size = size
        self._timeout = timeout

    def generate_thumbnail(
        self,
        input_path: Path,
        output_path: Path,
        at_fraction: float = 0.10,
        duration_seconds: float | None = None,
    ) -> Path:
        """Write a thumbnail taken at ``at_fraction`` of the duration (first frame when unknown)."""
        input_path, output_path = Path(input_path), Path(output_path)
        if not is_readable_file(input_path):
            raise ThumbnailError(f"Thumbnail source is missing: {input_path}")
        if not 0.0 <= at_fraction <= 1.0:
            raise ThumbnailError(f"Seek fraction out of range: {at_fraction}")

        ensure_parents(output_path)
        command = self.build_command(input_path, output_path, self.seek_seconds(duration_seconds, at_fraction))

        try:
            process = subprocess.run(command, capture_output=True, text=True, timeout=self._timeout)
        except subprocess.TimeoutExpired as exc:
            clean_temp_files([output_path])
            raise ThumbnailError(f"Thumbnail extraction timed out for {input_path.name}") from exc
        except OSError as exc:
            raise ThumbnailError(f"ffmpeg could not be started: {exc}") from exc

        if process.returncode != 0 or not output_path.exists() or output_path.stat().st_size == 0:
            clean_temp_files([output_path])
            raise ThumbnailError(f"Thumbnail extraction failed for {input_path.name}: {process.stderr.strip()[-300:]}")

        _LOGGER.debug("Thumbnail written to %s", output_path)
        return output_path

    @staticmethod
    def seek_seconds(duration_seconds: float | None, at_fraction: float) -> float:
        if not duration_seconds or duration_seconds <= 0:
            return 0.0
        return duration_seconds * at_fraction

    def build_command(self, input_path: Path, output_path: Path, seek: float) -> list[str]:
        width, _, height = self._size.partition("x")
        command = [self._ffmpeg, "-hide_banner", "-nostdin", "-y"]
        if seek > 0:
            command += ["-ss", f"{seek:.3f}"]
        command += [
            "-i",
            str(input_path),
            "-frames:v",
            "1",
            "-vf",
            f"scale={width}:{height}",
            "-q:v",
            "2",
            str(output_path),
        ]
        return command
