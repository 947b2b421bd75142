"""HTTP server for the Janus voice bridge.

Exposes the session REST API (start, ask, heartbeat, end) plus the
local speech endpoints used by the browser client. Handlers are thin:
all session state lives in SessionOrchestrator / SessionStore.

Usage:
    janus [--host HOST] [--port PORT] [--config janus.yaml]
"""
from __future__ import annotations

import asyncio
import logging
import os
import time
import uuid
from datetime import datetime, timezone
from typing import Any

from aiohttp import web

from janus.engine.cleanup import CleanupScheduler
from janus.engine.config import JanusConfig
from janus.engine.errors import (
    AgentInvocationError,
    AgentReportedError,
    AgentTimeoutError,
    InvalidInputError,
    JanusError,
    MediaProcessError,
    MediaTimeoutError,
    SessionNotFoundError,
)
from janus.engine.orchestrator import SessionOrchestrator
from janus.engine.providers import build_provider
from janus.engine.retry import FailureKind, classify_failure
from janus.engine.session_store import SessionStore
from janus.shared.services.speech_synthesis import TextToSpeech
from janus.shared.services.temp_artifacts import remove_quietly
from janus.shared.services.transcription import SpeechToText

logger = logging.getLogger(__name__)

SERVER_VERSION = "1.0.0"
REQUEST_ID_HEADER = "X-Request-ID"

ERR_SESSION_NOT_FOUND = "SESSION_NOT_FOUND"
ERR_INVALID_REQUEST = "INVALID_REQUEST"
ERR_TIMEOUT = "REQUEST_TIMEOUT"
ERR_RATE_LIMITED = "AGENT_RATE_LIMITED"
ERR_AUTH_FAILED = "AGENT_AUTH_FAILED"
ERR_AGENT_ERROR = "AGENT_ERROR"
ERR_PROCESS_FAILED = "PROCESS_FAILED"
ERR_INTERNAL = "INTERNAL_SERVER_ERROR"

_CORS_ALLOW_METHODS = "GET, POST, PUT, DELETE, OPTIONS"
_CORS_ALLOW_HEADERS = "Origin, Content-Type, Accept, Authorization, X-Request-ID"
_CORS_MAX_AGE = str(12 * 3600)


def _request_id(request: Any) -> str:
    return request.get("req_id", "") or ""


def error_response(
    request: Any,
    code: str,
    details: str,
    status: int,
) -> web.Response:
    """Build the ``{error, details, request_id, timestamp}`` error body."""
    return web.json_response(
        {
            "error": code,
            "details": details,
            "request_id": _request_id(request),
            "timestamp": datetime.now(timezone.utc).isoformat(),
        },
        status=status,
    )


def map_error(exc: JanusError) -> tuple[str, int]:
    """Map an engine exception to ``(error code, HTTP status)``."""
    if isinstance(exc, SessionNotFoundError):
        return ERR_SESSION_NOT_FOUND, 404
    if isinstance(exc, InvalidInputError):
        return ERR_INVALID_REQUEST, 400
    if isinstance(exc, (AgentTimeoutError, MediaTimeoutError)):
        return ERR_TIMEOUT, 504
    if isinstance(exc, AgentInvocationError):
        kind = classify_failure(exc)
        if kind is FailureKind.RATE_LIMIT:
            return ERR_RATE_LIMITED, 429
        if kind is FailureKind.AUTH:
            return ERR_AUTH_FAILED, 502
        if isinstance(exc, AgentReportedError):
            return ERR_AGENT_ERROR, 502
        return ERR_PROCESS_FAILED, 502
    if isinstance(exc, MediaProcessError):
        return ERR_PROCESS_FAILED, 502
    return ERR_INTERNAL, 500


class JanusServer:
    """HTTP server wrapping a SessionOrchestrator and the media adapters."""

    def __init__(
        self,
        config: JanusConfig,
        orchestrator: SessionOrchestrator | None = None,
        stt: SpeechToText | None = None,
        tts: TextToSpeech | None = None,
    ) -> None:
        self._config = config
        if orchestrator is None:
            provider = build_provider(
                config.agent_provider,
                command=config.agent_command,
                api_key_env=config.agent_api_key_env,
            )
            orchestrator = SessionOrchestrator.from_config(
                config, SessionStore(), provider,
            )
        self._orchestrator = orchestrator
        self._stt = stt or SpeechToText.from_config(config)
        self._tts = tts or TextToSpeech.from_config(config)
        self._cleanup = CleanupScheduler(
            orchestrator.store,
            idle_threshold_seconds=config.session_idle_seconds,
            interval_seconds=config.cleanup_interval_seconds,
            artifact_dirs=(self._stt.temp_dir, self._tts.temp_dir),
            artifact_max_age_seconds=config.artifact_max_age_seconds,
            event_callback=config.event_callback,
        )
        self._allowed_origins = self._parse_origins(config.cors_allowed_origins)
        self._started_at = time.time()
        self._port = config.port
        self._app = web.Application(
            middlewares=[self._request_logging_middleware, self._cors_middleware],
        )
        self._setup_routes()

    @property
    def app(self) -> web.Application:
        return self._app

    @property
    def orchestrator(self) -> SessionOrchestrator:
        return self._orchestrator

    @property
    def cleanup(self) -> CleanupScheduler:
        return self._cleanup

    @property
    def port(self) -> int:
        return self._port

    @staticmethod
    def _parse_origins(raw: str) -> list[str] | None:
        """``None`` means any origin is allowed."""
        if raw.strip() == "*":
            return None
        return [origin.strip() for origin in raw.split(",") if origin.strip()]

    # ── Middleware ──

    @web.middleware
    async def _request_logging_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        req_id = request.headers.get(REQUEST_ID_HEADER) or str(uuid.uuid4())
        request["req_id"] = req_id
        start = time.monotonic()
        try:
            response = await handler(request)
        except web.HTTPException as exc:
            exc.headers[REQUEST_ID_HEADER] = req_id
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.info(
                "HTTP %s %s req=%s status=%s duration_ms=%.1f",
                request.method, request.path_qs, req_id, exc.status, elapsed_ms,
            )
            raise
        except Exception:
            elapsed_ms = (time.monotonic() - start) * 1000
            logger.exception(
                "HTTP %s %s req=%s failed duration_ms=%.1f",
                request.method, request.path_qs, req_id, elapsed_ms,
            )
            response = error_response(
                request, ERR_INTERNAL, "An unexpected error occurred", 500,
            )
        response.headers[REQUEST_ID_HEADER] = req_id
        elapsed_ms = (time.monotonic() - start) * 1000
        logger.info(
            "HTTP %s %s req=%s status=%s duration_ms=%.1f from=%s",
            request.method, request.path_qs, req_id,
            response.status, elapsed_ms, request.remote,
        )
        return response

    @web.middleware
    async def _cors_middleware(self, request: web.Request, handler) -> web.StreamResponse:
        origin = request.headers.get("Origin")
        if request.method == "OPTIONS" and origin:
            response: web.StreamResponse = web.Response(status=204)
        else:
            response = await handler(request)
        if origin:
            self._apply_cors_headers(origin, response)
        return response

    def _apply_cors_headers(self, origin: str, response: web.StreamResponse) -> None:
        if self._allowed_origins is None:
            response.headers["Access-Control-Allow-Origin"] = "*"
        elif origin in self._allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
        else:
            return
        response.headers["Access-Control-Allow-Methods"] = _CORS_ALLOW_METHODS
        response.headers["Access-Control-Allow-Headers"] = _CORS_ALLOW_HEADERS
        response.headers["Access-Control-Expose-Headers"] = "Content-Length, X-Request-ID"
        response.headers["Access-Control-Max-Age"] = _CORS_MAX_AGE

    # ── Route setup ──

    def _setup_routes(self) -> None:
        r = self._app.router
        r.add_get("/api/health", self._handle_health)
        # Session lifecycle
        r.add_post("/api/session/start", self._handle_start_session)
        r.add_post("/api/ask", self._handle_ask)
        r.add_post("/api/heartbeat", self._handle_heartbeat)
        r.add_post("/api/session/end", self._handle_end_session)
        r.add_get("/api/sessions", self._handle_list_sessions)
        # Speech
        r.add_post("/api/transcribe", self._handle_transcribe)
        r.add_post("/api/tts", self._handle_tts)
        r.add_get("/api/tts/health", self._handle_tts_health)

    # ── Lifecycle ──

    async def start(self) -> None:
        """Serve until cancelled, then stop the cleanup loop and the runner."""
        runner = web.AppRunner(self._app)
        await runner.setup()
        site = web.TCPSite(runner, self._config.host, self._config.port)
        await site.start()
        self._port = self._resolve_port(runner) or self._config.port
        logger.info("Janus server listening on %s:%d", self._config.host, self._port)

        self._cleanup.start()
        try:
            await asyncio.Event().wait()
        except (KeyboardInterrupt, asyncio.CancelledError):
            logger.info("Server shutting down")
        finally:
            await self._cleanup.stop()
            await runner.cleanup()
            logger.info("Server stopped")

    @staticmethod
    def _resolve_port(runner: web.AppRunner) -> int | None:
        for addr in runner.addresses:
            if isinstance(addr, tuple) and len(addr) >= 2:
                return int(addr[1])
        return None

    # ── Helpers ──

    @staticmethod
    def _session_id_param(request: Any) -> str:
        session_id = (request.query.get("session_id") or "").strip()
        if not session_id:
            raise InvalidInputError("session_id query parameter is required")
        return session_id

    @staticmethod
    async def _read_json(request: Any) -> dict[str, Any]:
        try:
            body = await request.json()
        except ValueError as exc:
            raise InvalidInputError("request body must be valid JSON") from exc
        if not isinstance(body, dict):
            raise InvalidInputError("request body must be a JSON object")
        return body

    def _fail(self, request: Any, exc: JanusError) -> web.Response:
        code, status = map_error(exc)
        if status >= 500:
            logger.error("req=%s %s: %s", _request_id(request), code, exc)
        else:
            logger.info("req=%s %s: %s", _request_id(request), code, exc)
        return error_response(request, code, str(exc), status)

    # ── HTTP handlers ──

    async def _handle_health(self, request: web.Request) -> web.Response:
        return web.json_response({
            "status": "healthy",
            "version": SERVER_VERSION,
            "pid": os.getpid(),
            "uptime_seconds": round(max(0.0, time.time() - self._started_at), 3),
            "active_sessions": self._orchestrator.store.count(),
            "agent_provider": self._orchestrator.provider.name,
            "heartbeat_interval_seconds": self._config.heartbeat_interval_seconds,
            "session_timeout_seconds": self._config.session_idle_seconds,
        })

    async def _handle_start_session(self, request: web.Request) -> web.Response:
        try:
            session_id = self._orchestrator.start_session()
        except JanusError as exc:
            return self._fail(request, exc)
        return web.json_response({
            "session_id": session_id,
            "message": "Session started successfully",
        })

    async def _handle_ask(self, request: web.Request) -> web.Response:
        try:
            session_id = self._session_id_param(request)
            body = await self._read_json(request)
            question = body.get("question")
            if not isinstance(question, str):
                raise InvalidInputError("question is required")
            answer = await self._orchestrator.ask(session_id, question)
        except JanusError as exc:
            return self._fail(request, exc)
        return web.json_response({"answer": answer})

    async def _handle_heartbeat(self, request: web.Request) -> web.Response:
        try:
            self._orchestrator.heartbeat(self._session_id_param(request))
        except JanusError as exc:
            return self._fail(request, exc)
        return web.json_response({"success": True, "message": "Heartbeat received"})

    async def _handle_end_session(self, request: web.Request) -> web.Response:
        try:
            self._orchestrator.end_session(self._session_id_param(request))
        except JanusError as exc:
            return self._fail(request, exc)
        return web.json_response({"success": True, "message": "Session ended successfully"})

    async def _handle_list_sessions(self, request: web.Request) -> web.Response:
        sessions = [s.to_dict() for s in self._orchestrator.list_sessions()]
        return web.json_response({"sessions": sessions})

    async def _handle_transcribe(self, request: web.Request) -> web.Response:
        try:
            form = await request.post()
            upload = form.get("audio")
            if upload is None or not hasattr(upload, "file"):
                raise InvalidInputError("No audio file provided")
            audio = await asyncio.to_thread(upload.file.read)
            text = await self._stt.transcribe(audio, upload.filename or "")
        except JanusError as exc:
            return self._fail(request, exc)
        return web.json_response({"text": text})

    async def _handle_tts(self, request: web.Request) -> web.Response:
        try:
            body = await self._read_json(request)
            text = body.get("text")
            if not isinstance(text, str):
                raise InvalidInputError("text is required")
            audio_path = await self._tts.synthesize(text)
        except JanusError as exc:
            return self._fail(request, exc)

        try:
            audio = await asyncio.to_thread(audio_path.read_bytes)
        except OSError as exc:
            logger.error("Failed to read TTS output %s: %s", audio_path, exc)
            return error_response(request, ERR_INTERNAL, "Failed to read generated audio", 500)
        finally:
            remove_quietly(audio_path)
        return web.Response(body=audio, content_type="audio/wav")

    async def _handle_tts_health(self, request: web.Request) -> web.Response:
        health = await asyncio.to_thread(self._tts.health)
        return web.json_response(health)
