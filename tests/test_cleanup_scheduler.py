from __future__ import annotations

import asyncio
import os
import time
from datetime import datetime, timedelta, timezone
from pathlib import Path
from unittest.mock import AsyncMock

import pytest

from janus.engine.cleanup import CleanupScheduler
from janus.engine.errors import SessionNotFoundError
from janus.engine.models import AgentReply
from janus.engine.orchestrator import SessionOrchestrator
from janus.engine.session_store import SessionStore


class _Clock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += timedelta(seconds=seconds)


@pytest.mark.asyncio
async def test_start_and_stop_are_idempotent() -> None:
    scheduler = CleanupScheduler(SessionStore(), idle_threshold_seconds=600, interval_seconds=3600)
    assert not scheduler.running

    scheduler.start()
    first_task = scheduler._task
    scheduler.start()
    assert scheduler._task is first_task
    assert scheduler.running

    await scheduler.stop()
    assert not scheduler.running
    assert first_task.done()
    await scheduler.stop()


@pytest.mark.asyncio
async def test_stop_without_start_is_a_no_op() -> None:
    scheduler = CleanupScheduler(SessionStore(), idle_threshold_seconds=600)
    await scheduler.stop()
    assert not scheduler.running


@pytest.mark.asyncio
async def test_run_once_evicts_idle_sessions_and_fires_event() -> None:
    clock = _Clock()
    store = SessionStore(clock=clock)
    stale = store.create().id
    clock.advance(700)
    fresh = store.create().id
    callback = AsyncMock()

    scheduler = CleanupScheduler(store, idle_threshold_seconds=600, event_callback=callback)
    assert await scheduler.run_once() == 1
    assert not store.exists(stale)
    assert store.exists(fresh)
    callback.assert_awaited_once_with({"event": "sessions_evicted", "count": 1, "remaining": 1})

    callback.reset_mock()
    assert await scheduler.run_once() == 0
    callback.assert_not_awaited()


@pytest.mark.asyncio
async def test_background_loop_evicts_sessions() -> None:
    clock = _Clock()
    store = SessionStore(clock=clock)
    store.create()
    clock.advance(601)

    scheduler = CleanupScheduler(store, idle_threshold_seconds=600, interval_seconds=0.01)
    scheduler.start()
    try:
        for _ in range(100):
            if store.count() == 0:
                break
            await asyncio.sleep(0.01)
    finally:
        await scheduler.stop()
    assert store.count() == 0


@pytest.mark.asyncio
async def test_evicted_session_rejects_heartbeat_and_ask() -> None:
    clock = _Clock()
    store = SessionStore(clock=clock)
    provider = AsyncMock()
    provider.ask.return_value = AgentReply("unused")
    orch = SessionOrchestrator(store, provider)
    session_id = orch.start_session()
    clock.advance(601)

    await CleanupScheduler(store, idle_threshold_seconds=600).run_once()
    with pytest.raises(SessionNotFoundError):
        orch.heartbeat(session_id)
    with pytest.raises(SessionNotFoundError):
        await orch.ask(session_id, "hello")
    provider.ask.assert_not_awaited()


@pytest.mark.asyncio
async def test_run_once_sweeps_stale_artifacts(tmp_path: Path) -> None:
    old_file = tmp_path / "audio_old.webm"
    new_file = tmp_path / "audio_new.webm"
    old_file.write_bytes(b"old")
    new_file.write_bytes(b"new")
    two_hours_ago = time.time() - 7200
    os.utime(old_file, (two_hours_ago, two_hours_ago))

    scheduler = CleanupScheduler(
        SessionStore(),
        idle_threshold_seconds=600,
        artifact_dirs=[tmp_path, tmp_path / "missing"],
        artifact_max_age_seconds=3600,
    )
    await scheduler.run_once()
    assert not old_file.exists()
    assert new_file.exists()
