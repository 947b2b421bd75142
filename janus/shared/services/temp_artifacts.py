"""Request-scoped temp files for the media adapters.

Every request writes under its own unique name, so concurrent requests
never collide and a request may delete its own files without looking
at anyone else's.
"""
from __future__ import annotations

import logging
import os
import secrets
import time
from pathlib import Path

logger = logging.getLogger(__name__)


def unique_artifact_path(directory: str | Path, prefix: str, suffix: str) -> Path:
    """Return ``<directory>/<prefix>_<ns timestamp>_<random><suffix>``."""
    name = f"{prefix}_{time.time_ns()}_{secrets.token_hex(4)}{suffix}"
    return Path(directory) / name


def ensure_dir(directory: str | Path) -> Path:
    path = Path(directory)
    path.mkdir(parents=True, exist_ok=True)
    return path


def remove_quietly(*paths: str | Path | None) -> None:
    """Delete files that may or may not exist; log anything unexpected."""
    for path in paths:
        if path is None:
            continue
        try:
            os.remove(path)
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to remove temp file %s: %s", path, exc)


def sweep_stale_artifacts(
    directory: str | Path,
    max_age_seconds: float,
    now: float | None = None,
) -> int:
    """Delete regular files in ``directory`` older than ``max_age_seconds``.

    ``max_age_seconds`` must exceed the longest in-flight request so a
    slow request never loses a file it is still reading.
    """
    directory = Path(directory)
    if not directory.is_dir():
        return 0
    current = time.time() if now is None else now
    removed = 0
    with os.scandir(directory) as entries:
        files = [entry for entry in entries if entry.is_file(follow_symlinks=False)]
    for entry in files:
        try:
            age = current - entry.stat(follow_symlinks=False).st_mtime
        except FileNotFoundError:
            continue
        if age <= max_age_seconds:
            continue
        try:
            os.remove(entry.path)
            removed += 1
        except FileNotFoundError:
            continue
        except OSError as exc:
            logger.warning("Failed to remove old temp file %s: %s", entry.path, exc)
    return removed
