"""Row shaping for the operator console, kept free of Streamlit imports."""

from __future__ import annotations

from typing import Any, Dict, Iterable, List

from mediahub.services.analytics.recorder import SystemHealth
from mediahub.storage import models


def format_bytes(size: int | None) -> str:
    if not size:
        return "0 B"
    value = float(size)
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if value < 1024 or unit == "TB":
            return f"{value:.0f} {unit}" if unit == "B" else f"{value:.1f} {unit}"
        value /= 1024
    return f"{value:.1f} TB"


def format_duration(seconds: float | None) -> str:
    if seconds is None:
        return "-"
    total = int(round(seconds))
    hours, remainder = divmod(total, 3600)
    minutes, secs = divmod(remainder, 60)
    if hours:
        return f"{hours}:{minutes:02d}:{secs:02d}"
    return f"{minutes}:{secs:02d}"


def format_bitrate(bits_per_second: int | None) -> str:
    if not bits_per_second:
        return "-"
    return f"{bits_per_second / 1000:.0f} kbps"


def asset_rows(assets: Iterable[models.MediaAsset]) -> List[Dict[str, Any]]:
    """Table rows for the catalog and in-progress listings."""
    return [
        {
            "id": asset.id,
            "title": asset.title,
            "category": asset.category,
            "status": asset.status,
            "duration": format_duration(asset.duration_seconds),
            "resolution": asset.resolution or "-",
            "bitrate": format_bitrate(asset.bitrate),
            "size": format_bytes(asset.file_size_bytes),
            "thumbnail": "yes" if asset.thumbnail_path else "placeholder",
            "uploaded": asset.uploaded_at.strftime("%Y-%m-%d %H:%M") if asset.uploaded_at else "",
            "error": asset.error_message or "",
        }
        for asset in assets
    ]


def health_metrics(health: SystemHealth) -> List[tuple[str, str]]:
    return [
        ("Media files", str(health.total_media_files)),
        ("Users", str(health.total_users)),
        ("Storage used", format_bytes(health.storage_used)),
        ("Events (24h)", str(health.daily_activity)),
    ]
