"""Periodic eviction of inactive sessions.

Runs as an asyncio task next to the HTTP server. Each tick evicts
sessions idle past the threshold and sweeps orphaned media temp files
that a crashed request failed to delete.
"""
from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from pathlib import Path

from janus.shared.services.temp_artifacts import sweep_stale_artifacts

from .config import EventCallback, fire_event
from .session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_CLEANUP_INTERVAL_SECONDS = 60.0


class CleanupScheduler:
    """Stopped -> Running on start(); Running -> Stopped on stop()."""

    def __init__(
        self,
        store: SessionStore,
        idle_threshold_seconds: float,
        interval_seconds: float = DEFAULT_CLEANUP_INTERVAL_SECONDS,
        *,
        artifact_dirs: Iterable[str | Path] = (),
        artifact_max_age_seconds: float | None = None,
        event_callback: EventCallback | None = None,
    ) -> None:
        self._store = store
        self._idle_threshold = idle_threshold_seconds
        self._interval = interval_seconds
        self._artifact_dirs = [Path(d) for d in artifact_dirs]
        self._artifact_max_age = artifact_max_age_seconds
        self._event_callback = event_callback
        self._task: asyncio.Task | None = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        """Start the background loop. Must be called from a running loop."""
        if self.running:
            return
        logger.info(
            "Starting cleanup service (checking every %.0fs, timeout %.0fs)",
            self._interval, self._idle_threshold,
        )
        self._task = asyncio.get_running_loop().create_task(
            self._run(), name="janus-session-cleanup",
        )

    async def stop(self) -> None:
        """Stop the loop and wait for it to exit. Safe to call repeatedly."""
        task, self._task = self._task, None
        if task is None:
            return
        logger.info("Stopping cleanup service...")
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass

    async def _run(self) -> None:
        try:
            while True:
                await asyncio.sleep(self._interval)
                try:
                    await self.run_once()
                except Exception:
                    logger.warning("Cleanup tick failed", exc_info=True)
        finally:
            logger.info("Cleanup service stopped")

    async def run_once(self) -> int:
        """Run a single cleanup pass and return the number of evicted sessions."""
        removed = self._store.evict_inactive(self._idle_threshold)
        if removed:
            remaining = self._store.count()
            logger.info(
                "Cleanup: removed %d inactive session(s), %d active session(s) remaining",
                removed, remaining,
            )
            await fire_event(self._event_callback, {
                "event": "sessions_evicted",
                "count": removed,
                "remaining": remaining,
            })

        if self._artifact_dirs and self._artifact_max_age is not None:
            for directory in self._artifact_dirs:
                swept = await asyncio.to_thread(
                    sweep_stale_artifacts, directory, self._artifact_max_age,
                )
                if swept:
                    logger.debug(
                        "Cleaned up %d stale temp file(s) in %s", swept, directory,
                    )
        return removed
