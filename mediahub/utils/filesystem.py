"""Filesystem helper utilities."""

from __future__ import annotations

import logging
import os
import shutil
from pathlib import Path
from typing import Iterable

_LOGGER = logging.getLogger(__name__)


def ensure_parents(path: Path) -> None:
    """Ensure parent directories exist for provided path."""
    path.parent.mkdir(parents=True, exist_ok=True)


def is_readable_file(path: Path) -> bool:
    return path.is_file() and os.access(path, os.R_OK)


def remove_file(path: Path | str | None) -> bool:
    """Delete a file if present. A missing file is not an error."""
    if not path:
        return False
    target = Path(path)
    try:
        target.unlink()
    except FileNotFoundError:
        return False
    return True


def clean_temp_files(paths: Iterable[Path | str | None]) -> None:
    """Best-effort cleanup for temporary files."""
    for item in paths:
        try:
            remove_file(item)
        except OSError as exc:
            _LOGGER.warning("Could not remove temporary file %s: %s", item, exc)


def copy_verbatim(source: Path, destination: Path) -> Path:
    """Copy ``source`` to ``destination`` through a sibling partial file."""
    ensure_parents(destination)
    partial = destination.with_name(f"{destination.name}.part")
    try:
        shutil.copy2(source, partial)
        os.replace(partial, destination)
    except BaseException:
        clean_temp_files([partial])
        raise
    return destination
