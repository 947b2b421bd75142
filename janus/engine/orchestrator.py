"""Request orchestrator — the operations the HTTP layer calls.

Composes the SessionStore with an agent Provider:

    start_session()            -> new session id, no agent call yet
    ask(id, question, timeout) -> answer text (agent call, with retry)
    heartbeat(id)              -> refresh activity only
    end_session(id)            -> remove the session, return its final state

The first ask lazily starts the agent-side conversation; later asks
resume it with the handle the CLI returned.
"""
from __future__ import annotations

import asyncio
import logging
import weakref
from collections.abc import Awaitable, Callable
from datetime import datetime, timezone
from typing import Any

from .config import EventCallback, JanusConfig, fire_event
from .errors import (
    AgentInvocationError,
    AgentTimeoutError,
    InvalidInputError,
    JanusError,
)
from .models import AgentReply, ConversationMessage, MessageRole, Session
from .providers.base import Provider
from .retry import RetryPolicy, TRANSIENT_KINDS, classify_failure
from .session_store import SessionStore

logger = logging.getLogger(__name__)

DEFAULT_REQUEST_TIMEOUT_SECONDS = 60.0


class SessionOrchestrator:
    """Session lifecycle plus agent question routing."""

    def __init__(
        self,
        store: SessionStore,
        provider: Provider,
        *,
        workspace_dir: str = ".",
        request_timeout_seconds: float = DEFAULT_REQUEST_TIMEOUT_SECONDS,
        retry_policy: RetryPolicy | None = None,
        serialize_session_asks: bool = True,
        event_callback: EventCallback | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._store = store
        self._provider = provider
        self._workspace_dir = workspace_dir
        self._request_timeout = request_timeout_seconds
        self._retry = retry_policy or RetryPolicy.disabled()
        self._serialize_asks = serialize_session_asks
        self._event_callback = event_callback
        self._sleep = sleep
        # Entries vanish once no ask holds the lock, so ended or evicted
        # sessions leave nothing behind.
        self._ask_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )

    @classmethod
    def from_config(
        cls,
        config: JanusConfig,
        store: SessionStore,
        provider: Provider,
    ) -> SessionOrchestrator:
        return cls(
            store,
            provider,
            workspace_dir=config.workspace_dir,
            request_timeout_seconds=config.request_timeout_seconds,
            retry_policy=RetryPolicy(
                enabled=config.retry_enabled,
                max_attempts=config.retry_max_attempts,
                initial_delay_seconds=config.retry_initial_delay_seconds,
                multiplier=config.retry_multiplier,
                max_delay_seconds=config.retry_max_delay_seconds,
            ),
            serialize_session_asks=config.serialize_session_asks,
            event_callback=config.event_callback,
        )

    @property
    def store(self) -> SessionStore:
        return self._store

    @property
    def provider(self) -> Provider:
        return self._provider

    # ── Lifecycle ──

    def start_session(self) -> str:
        session = self._store.create()
        logger.info("Session %s started", session.id)
        return session.id

    def heartbeat(self, session_id: str) -> None:
        self._store.update_activity(session_id)

    def end_session(self, session_id: str) -> Session:
        session = self._store.delete(session_id)
        logger.info(
            "Session %s ended (%d messages)",
            session_id, len(session.conversation_log),
        )
        return session

    def get_session(self, session_id: str) -> Session:
        return self._store.get(session_id)

    def list_sessions(self) -> list[Session]:
        return self._store.list_sessions()

    # ── Questions ──

    async def ask(
        self,
        session_id: str,
        question: str,
        timeout: float | None = None,
    ) -> str:
        """Forward ``question`` to the agent and return its answer.

        ``timeout`` bounds the whole call including retries and defaults
        to the configured request timeout. The conversation log is only
        written when the agent answers.
        """
        self._store.get(session_id)
        if not question or not question.strip():
            raise InvalidInputError("question must not be empty")
        if timeout is None:
            timeout = self._request_timeout

        asked_at = datetime.now(timezone.utc)
        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout
        lock = self._lock_for(session_id)
        if lock is not None:
            # Time spent queued behind another ask counts against the deadline.
            try:
                await asyncio.wait_for(lock.acquire(), timeout)
            except asyncio.TimeoutError as exc:
                logger.warning(
                    "Session %s ask timed out after %.1fs waiting for a previous ask",
                    session_id, timeout,
                )
                await fire_event(self._event_callback, {
                    "event": "ask_failed",
                    "session_id": session_id,
                    "kind": "timeout",
                    "attempts": 0,
                })
                raise AgentTimeoutError(timeout) from exc
        try:
            # Re-read under the lock: a previous ask may have just set
            # the agent handle.
            session = self._store.get(session_id)
            previous_handle = session.agent_conversation_handle
            reply = await self._invoke_with_retry(
                session_id, previous_handle, question, timeout, deadline,
            )
            self._record_answer(session_id, previous_handle, question, asked_at, reply)
        finally:
            if lock is not None:
                lock.release()
        return reply.answer

    def _lock_for(self, session_id: str) -> asyncio.Lock | None:
        if not self._serialize_asks:
            return None
        lock = self._ask_locks.get(session_id)
        if lock is None:
            lock = asyncio.Lock()
            self._ask_locks[session_id] = lock
        return lock

    async def _invoke_with_retry(
        self,
        session_id: str,
        handle: str,
        question: str,
        timeout: float,
        deadline: float,
    ) -> AgentReply:
        loop = asyncio.get_running_loop()
        max_attempts = self._retry.attempts
        attempt = 0

        while True:
            attempt += 1
            try:
                return await self._provider.ask(
                    question,
                    conversation_handle=handle,
                    cwd=self._workspace_dir,
                    timeout=deadline - loop.time(),
                )
            except AgentTimeoutError as exc:
                logger.warning(
                    "Session %s ask timed out after %.1fs (attempt %d)",
                    session_id, timeout, attempt,
                )
                await fire_event(self._event_callback, {
                    "event": "ask_failed",
                    "session_id": session_id,
                    "kind": "timeout",
                    "attempts": attempt,
                })
                raise AgentTimeoutError(timeout) from exc
            except AgentInvocationError as exc:
                kind = classify_failure(exc)
                delay = self._retry.delay_for(attempt)
                retriable = (
                    kind in TRANSIENT_KINDS
                    and attempt < max_attempts
                    and loop.time() + delay < deadline
                )
                if retriable:
                    logger.warning(
                        "Session %s transient %s failure on attempt %d/%d; "
                        "retrying in %.2fs: %s",
                        session_id, kind.value, attempt, max_attempts, delay, exc,
                    )
                    await fire_event(self._event_callback, {
                        "event": "ask_retry",
                        "session_id": session_id,
                        "kind": kind.value,
                        "attempt": attempt,
                        "delay_seconds": delay,
                    })
                    await self._sleep(delay)
                    continue

                logger.error(
                    "Session %s ask failed (%s, attempt %d/%d): %s",
                    session_id, kind.value, attempt, max_attempts, exc,
                )
                await fire_event(self._event_callback, {
                    "event": "ask_failed",
                    "session_id": session_id,
                    "kind": kind.value,
                    "attempts": attempt,
                })
                raise

    def _record_answer(
        self,
        session_id: str,
        previous_handle: str,
        question: str,
        asked_at: datetime,
        reply: AgentReply,
    ) -> None:
        """Persist the answer. Each step is best-effort: the session may
        have been ended or evicted while the agent was thinking."""
        if reply.conversation_handle and reply.conversation_handle != previous_handle:
            self._best_effort(
                "store agent handle", session_id,
                self._store.set_agent_handle, session_id, reply.conversation_handle,
            )
        self._best_effort(
            "append conversation log", session_id,
            self._store.append_log, session_id, [
                ConversationMessage(MessageRole.USER, question, asked_at),
                ConversationMessage(
                    MessageRole.ASSISTANT, reply.answer, datetime.now(timezone.utc),
                ),
            ],
        )
        self._best_effort(
            "refresh activity", session_id,
            self._store.update_activity, session_id,
        )

    @staticmethod
    def _best_effort(
        action: str,
        session_id: str,
        func: Callable[..., Any],
        *args: Any,
    ) -> None:
        try:
            func(*args)
        except JanusError as exc:
            logger.warning(
                "Warning: failed to %s for session %s: %s",
                action, session_id, exc,
            )
