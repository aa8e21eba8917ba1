"""Error taxonomy shared by the ingestion pipeline and the catalog."""

from __future__ import annotations


class MediaHubError(Exception):
    """Base class for every error raised by the media core."""

    phase: str = "unknown"


class ValidationError(MediaHubError):
    """Bad or missing input, rejected before a catalog row exists."""

    phase = "validation"


class ProbeError(MediaHubError):
    """The media file could not be inspected."""

    phase = "probe"


class TranscodeError(MediaHubError):
    """Re-encoding failed, timed out or was cancelled."""

    phase = "transcode"

    def __init__(self, reason: str, detail: str = "") -> None:
        self.reason = reason
        self.detail = detail
        message = f"Transcode failed ({reason})"
        if detail:
            message = f"{message}: {detail}"
        super().__init__(message)


class ThumbnailError(MediaHubError):
    """Frame extraction failed. Never fatal to an asset."""

    phase = "thumbnail"


class StoreError(MediaHubError):
    """Catalog read or write failure."""

    phase = "store"


class NotFoundError(MediaHubError):
    """Unknown asset id."""

    phase = "lookup"

    def __init__(self, asset_id: str) -> None:
        self.asset_id = asset_id
        super().__init__(f"Media asset {asset_id} not found")
