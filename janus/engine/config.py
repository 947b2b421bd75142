"""Configuration loaded from environment variables.

All settings have sensible defaults. Override via JANUS_* env vars or
a YAML file (see yaml_config.py).
"""
from __future__ import annotations

import logging
import os
import tempfile
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

from .errors import ConfigError

logger = logging.getLogger(__name__)


# Optional async callback for real-time event observation.
# Signature: async def callback(event: dict[str, Any]) -> None
EventCallback = Callable[[dict[str, Any]], Awaitable[None]]


async def fire_event(
    callback: EventCallback | None,
    event: dict[str, Any],
) -> None:
    """Fire an event callback if set, logging and swallowing errors."""
    if callback is None:
        return
    try:
        await callback(event)
    except Exception:
        logger.debug("Event callback failed for %s", event.get("event"), exc_info=True)


_TRUE_VALUES = {"1", "true", "yes", "on"}


def _env_str(name: str, default: str) -> str:
    value = os.getenv(name, "")
    return value if value else default


def _env_float(name: str, default: float) -> float:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default


def _env_int(name: str, default: int) -> int:
    raw = os.getenv(name, "")
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        logger.warning("Ignoring invalid %s=%r; using %s", name, raw, default)
        return default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.getenv(name, "")
    if not raw:
        return default
    return raw.lower() in _TRUE_VALUES


@dataclass
class JanusConfig:
    """Janus server and engine configuration."""

    # HTTP server
    host: str = "127.0.0.1"
    port: int = 3000
    cors_allowed_origins: str = "*"
    log_level: str = "INFO"

    # Session lifecycle
    session_idle_seconds: float = 600.0
    cleanup_interval_seconds: float = 60.0
    # Clients are expected to heartbeat this often; reported by /health.
    heartbeat_interval_seconds: float = 30.0
    # Default deadline for a single ask, shared by all retry attempts.
    request_timeout_seconds: float = 60.0
    # Serialize concurrent asks on the same session.
    serialize_session_asks: bool = True

    # Retry around agent invocations (transient failures only)
    retry_enabled: bool = True
    retry_max_attempts: int = 3
    retry_initial_delay_seconds: float = 0.5
    retry_multiplier: float = 2.0
    retry_max_delay_seconds: float = 5.0

    # Agent CLI
    agent_provider: str = "cursor"
    # Empty means the provider's own binary (cursor-agent or claude).
    agent_command: str = ""
    agent_api_key_env: str | None = None
    workspace_dir: str = "."
    # Also reap orphaned agent CLI runs at startup, not just media CLIs.
    reap_stale_agents: bool = False

    # Speech-to-text (whisper)
    whisper_path: str = "whisper"
    whisper_model: str = "base"
    transcribe_timeout_seconds: float = 120.0

    # Text-to-speech (kokoro-tts)
    kokoro_tts_path: str = "kokoro-tts"
    kokoro_model_path: str = "kokoro-v1.0.onnx"
    kokoro_voices_path: str = "voices-v1.0.bin"
    kokoro_voice: str = "af_sarah"
    kokoro_speed: float = 1.0
    tts_timeout_seconds: float = 60.0

    # Root for media temp artifacts
    temp_dir: str = field(default_factory=tempfile.gettempdir)

    # Optional async callback for engine events
    # ({"event": "sessions_evicted", "count": 2}, ...).
    event_callback: EventCallback | None = field(default=None, repr=False)

    @property
    def artifact_max_age_seconds(self) -> float:
        """Age after which an orphaned media temp file may be swept.

        Must exceed the longest possible in-flight media request.
        """
        longest = max(
            self.request_timeout_seconds,
            self.transcribe_timeout_seconds,
            self.tts_timeout_seconds,
        )
        return longest + 3600.0

    def validate(self) -> None:
        if not 0 <= self.port <= 65535:
            raise ConfigError(f"port must be 0-65535, got {self.port}")
        if self.session_idle_seconds < 60:
            raise ConfigError("session_idle_seconds must be at least 60")
        if self.cleanup_interval_seconds <= 0:
            raise ConfigError("cleanup_interval_seconds must be positive")
        if self.request_timeout_seconds <= 0:
            raise ConfigError("request_timeout_seconds must be positive")
        if self.retry_max_attempts < 1:
            raise ConfigError("retry_max_attempts must be at least 1")
        if self.retry_initial_delay_seconds < 0 or self.retry_max_delay_seconds < 0:
            raise ConfigError("retry delays must not be negative")
        if self.retry_multiplier < 1:
            raise ConfigError("retry_multiplier must be >= 1")

    def apply_env(self) -> JanusConfig:
        """Overlay JANUS_* environment variables onto this config."""
        janus_vars = {
            k: v for k, v in os.environ.items() if k.startswith("JANUS_")
        }
        if janus_vars:
            logger.info(
                "JanusConfig: JANUS_* env overrides: %s",
                ", ".join(sorted(janus_vars)),
            )

        self.host = _env_str("JANUS_HOST", self.host)
        self.port = _env_int("JANUS_PORT", self.port)
        self.cors_allowed_origins = _env_str(
            "JANUS_CORS_ALLOWED_ORIGINS", self.cors_allowed_origins
        )
        self.log_level = _env_str("JANUS_LOG_LEVEL", self.log_level)

        idle_minutes = os.getenv("JANUS_SESSION_TIMEOUT_MINUTES", "")
        if idle_minutes:
            self.session_idle_seconds = _env_float(
                "JANUS_SESSION_TIMEOUT_MINUTES", self.session_idle_seconds / 60.0
            ) * 60.0
        self.cleanup_interval_seconds = _env_float(
            "JANUS_CLEANUP_INTERVAL", self.cleanup_interval_seconds
        )
        self.request_timeout_seconds = _env_float(
            "JANUS_REQUEST_TIMEOUT", self.request_timeout_seconds
        )
        self.serialize_session_asks = _env_bool(
            "JANUS_SERIALIZE_SESSION_ASKS", self.serialize_session_asks
        )

        self.retry_enabled = _env_bool("JANUS_RETRY_ENABLED", self.retry_enabled)
        self.retry_max_attempts = _env_int(
            "JANUS_RETRY_MAX_ATTEMPTS", self.retry_max_attempts
        )
        self.retry_initial_delay_seconds = _env_float(
            "JANUS_RETRY_INITIAL_DELAY", self.retry_initial_delay_seconds
        )
        self.retry_multiplier = _env_float(
            "JANUS_RETRY_MULTIPLIER", self.retry_multiplier
        )
        self.retry_max_delay_seconds = _env_float(
            "JANUS_RETRY_MAX_DELAY", self.retry_max_delay_seconds
        )

        self.agent_provider = _env_str("JANUS_AGENT_PROVIDER", self.agent_provider)
        self.agent_command = _env_str("JANUS_AGENT_COMMAND", self.agent_command)
        self.agent_api_key_env = (
            os.getenv("JANUS_AGENT_API_KEY_ENV") or self.agent_api_key_env
        )
        self.workspace_dir = _env_str("JANUS_WORKSPACE_DIR", self.workspace_dir)
        self.reap_stale_agents = _env_bool(
            "JANUS_REAP_STALE_AGENTS", self.reap_stale_agents
        )

        self.whisper_path = _env_str("JANUS_WHISPER_PATH", self.whisper_path)
        self.whisper_model = _env_str("JANUS_WHISPER_MODEL", self.whisper_model)
        self.transcribe_timeout_seconds = _env_float(
            "JANUS_TRANSCRIBE_TIMEOUT", self.transcribe_timeout_seconds
        )

        self.kokoro_tts_path = _env_str("JANUS_KOKORO_TTS_PATH", self.kokoro_tts_path)
        self.kokoro_model_path = _env_str(
            "JANUS_KOKORO_MODEL_PATH", self.kokoro_model_path
        )
        self.kokoro_voices_path = _env_str(
            "JANUS_KOKORO_VOICES_PATH", self.kokoro_voices_path
        )
        self.kokoro_voice = _env_str("JANUS_KOKORO_VOICE", self.kokoro_voice)
        self.kokoro_speed = _env_float("JANUS_KOKORO_SPEED", self.kokoro_speed)
        self.tts_timeout_seconds = _env_float(
            "JANUS_TTS_TIMEOUT", self.tts_timeout_seconds
        )
        self.temp_dir = _env_str("JANUS_TEMP_DIR", self.temp_dir)
        return self

    @classmethod
    def from_env(cls) -> JanusConfig:
        """Load configuration from JANUS_* environment variables."""
        config = cls().apply_env()
        config.validate()
        logger.info(
            "JanusConfig.from_env: provider=%s command=%s workspace=%s "
            "idle=%.0fs timeout=%.0fs",
            config.agent_provider, config.agent_command or "(provider default)",
            config.workspace_dir, config.session_idle_seconds,
            config.request_timeout_seconds,
        )
        return config
