"""YAML configuration loader.

Loads a single YAML file whose sections override JanusConfig defaults.
Environment variables still win when ``apply_env=True`` so a deployed
file can be tweaked per host without editing it.

Example YAML:
    server:
      host: 0.0.0.0
      port: 3000
      cors_allowed_origins: "*"

    engine:
      session_timeout_minutes: 10
      cleanup_interval_seconds: 60
      request_timeout_seconds: 60
      workspace_dir: /home/me/project
      reap_stale_agents: false

    agent:
      provider: cursor          # or "claude"
      command: cursor-agent
      api_key_env: CURSOR_API_KEY

    retry:
      enabled: true
      max_attempts: 3
      initial_delay_seconds: 0.5
      multiplier: 2.0
      max_delay_seconds: 5.0

    media:
      whisper:
        path: /opt/whisper/bin/whisper
        model: base
      kokoro:
        path: /opt/kokoro/bin/kokoro-tts
        model_path: /opt/kokoro/kokoro-v1.0.onnx
        voices_path: /opt/kokoro/voices-v1.0.bin
        voice: af_sarah
        speed: 1.0
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import yaml

from .config import _TRUE_VALUES, JanusConfig
from .errors import ConfigError

logger = logging.getLogger(__name__)


def _section(raw: dict[str, Any], name: str) -> dict[str, Any]:
    value = raw.get(name) or {}
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' section must be a mapping")
    return value


_FALSE_VALUES = {"0", "false", "no", "off", ""}


def _as_bool(value: Any, name: str) -> bool:
    """Accept YAML booleans as well as quoted "true"/"false" strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        lowered = value.strip().lower()
        if lowered in _TRUE_VALUES:
            return True
        if lowered in _FALSE_VALUES:
            return False
    raise ConfigError(f"'{name}' must be a boolean, got {value!r}")


def load_yaml_config(path: str | Path, *, apply_env: bool = False) -> JanusConfig:
    """Load and parse a YAML config file into a validated JanusConfig."""
    path = Path(path)
    logger.info(
        "load_yaml_config: attempting to load config from %s (exists=%s)",
        path, path.exists(),
    )
    try:
        with open(path) as f:
            raw = yaml.safe_load(f) or {}
    except FileNotFoundError:
        logger.error("load_yaml_config: config file not found at %s", path.absolute())
        raise
    except yaml.YAMLError as exc:
        logger.error("load_yaml_config: YAML parse error in %s: %s", path, exc)
        raise ConfigError(f"invalid YAML in {path}: {exc}") from exc

    if not isinstance(raw, dict):
        raise ConfigError(f"{path} must contain a mapping at the top level")

    config = JanusConfig()
    try:
        _apply_sections(config, raw)
    except (TypeError, ValueError) as exc:
        raise ConfigError(f"invalid value in {path}: {exc}") from exc

    if apply_env:
        config.apply_env()
    config.validate()

    logger.info(
        "Config loaded from %s: sections=[%s] provider=%s workspace=%s",
        path.name,
        ", ".join(sorted(raw.keys())) or "empty",
        config.agent_provider,
        config.workspace_dir,
    )
    return config


def _apply_sections(config: JanusConfig, raw: dict[str, Any]) -> None:
    # ── Server ─────────────────────────────────────────────────
    server = _section(raw, "server")
    config.host = str(server.get("host", config.host))
    config.port = int(server.get("port", config.port))
    config.cors_allowed_origins = str(
        server.get("cors_allowed_origins", config.cors_allowed_origins)
    )
    config.log_level = str(server.get("log_level", config.log_level))

    # ── Engine ─────────────────────────────────────────────────
    engine = _section(raw, "engine")
    if "session_timeout_minutes" in engine:
        config.session_idle_seconds = float(engine["session_timeout_minutes"]) * 60.0
    config.session_idle_seconds = float(
        engine.get("session_idle_seconds", config.session_idle_seconds)
    )
    config.cleanup_interval_seconds = float(
        engine.get("cleanup_interval_seconds", config.cleanup_interval_seconds)
    )
    config.heartbeat_interval_seconds = float(
        engine.get("heartbeat_interval_seconds", config.heartbeat_interval_seconds)
    )
    config.request_timeout_seconds = float(
        engine.get("request_timeout_seconds", config.request_timeout_seconds)
    )
    config.serialize_session_asks = _as_bool(
        engine.get("serialize_session_asks", config.serialize_session_asks),
        "engine.serialize_session_asks",
    )
    config.workspace_dir = str(engine.get("workspace_dir", config.workspace_dir))
    config.reap_stale_agents = _as_bool(
        engine.get("reap_stale_agents", config.reap_stale_agents),
        "engine.reap_stale_agents",
    )
    config.temp_dir = str(engine.get("temp_dir", config.temp_dir))

    # ── Agent ──────────────────────────────────────────────────
    agent = _section(raw, "agent")
    config.agent_provider = str(agent.get("provider", config.agent_provider))
    config.agent_command = str(agent.get("command") or config.agent_command)
    config.agent_api_key_env = agent.get("api_key_env", config.agent_api_key_env)

    # ── Retry ──────────────────────────────────────────────────
    retry = _section(raw, "retry")
    config.retry_enabled = _as_bool(
        retry.get("enabled", config.retry_enabled), "retry.enabled",
    )
    config.retry_max_attempts = int(retry.get("max_attempts", config.retry_max_attempts))
    config.retry_initial_delay_seconds = float(
        retry.get("initial_delay_seconds", config.retry_initial_delay_seconds)
    )
    config.retry_multiplier = float(retry.get("multiplier", config.retry_multiplier))
    config.retry_max_delay_seconds = float(
        retry.get("max_delay_seconds", config.retry_max_delay_seconds)
    )

    # ── Media ──────────────────────────────────────────────────
    media = _section(raw, "media")
    whisper = _section(media, "whisper")
    config.whisper_path = str(whisper.get("path", config.whisper_path))
    config.whisper_model = str(whisper.get("model", config.whisper_model))
    config.transcribe_timeout_seconds = float(
        whisper.get("timeout_seconds", config.transcribe_timeout_seconds)
    )

    kokoro = _section(media, "kokoro")
    config.kokoro_tts_path = str(kokoro.get("path", config.kokoro_tts_path))
    config.kokoro_model_path = str(kokoro.get("model_path", config.kokoro_model_path))
    config.kokoro_voices_path = str(kokoro.get("voices_path", config.kokoro_voices_path))
    config.kokoro_voice = str(kokoro.get("voice", config.kokoro_voice))
    config.kokoro_speed = float(kokoro.get("speed", config.kokoro_speed))
    config.tts_timeout_seconds = float(
        kokoro.get("timeout_seconds", config.tts_timeout_seconds)
    )
