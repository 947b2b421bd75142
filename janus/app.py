"""Janus — main application entry point."""

from __future__ import annotations

import asyncio
import logging
import sys
from logging.handlers import RotatingFileHandler
from pathlib import Path

from janus.engine.config import JanusConfig
from janus.engine.errors import ConfigError
from janus.engine.yaml_config import load_yaml_config


def _configure_logging(log_level: str) -> Path:
    """Log to ``~/.janus/logs/janus-server.log`` and stderr."""
    log_dir = Path.home() / ".janus" / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "janus-server.log"

    root = logging.getLogger()
    root.setLevel(getattr(logging, log_level.upper(), logging.INFO))
    root.handlers.clear()
    formatter = logging.Formatter(
        "%(asctime)s %(levelname)s %(name)s [pid=%(process)d] %(message)s"
    )
    file_handler = RotatingFileHandler(
        log_file, maxBytes=2_000_000, backupCount=5, encoding="utf-8"
    )
    file_handler.setFormatter(formatter)
    stream_handler = logging.StreamHandler(sys.stderr)
    stream_handler.setFormatter(formatter)
    root.addHandler(file_handler)
    root.addHandler(stream_handler)
    return log_file


def _load_config(config_path: str | None) -> JanusConfig:
    """Explicit path, then ./janus.yaml, then environment only."""
    if config_path:
        return load_yaml_config(config_path, apply_env=True)
    default_yaml = Path.cwd() / "janus.yaml"
    if default_yaml.exists():
        return load_yaml_config(default_yaml, apply_env=True)
    return JanusConfig.from_env()


def main() -> None:
    import argparse

    parser = argparse.ArgumentParser(
        prog="janus",
        description="Janus — voice bridge between a browser and a local coding agent",
    )
    parser.add_argument(
        "--host", default=None,
        help="Interface to bind (default: JANUS_HOST or 127.0.0.1)",
    )
    parser.add_argument(
        "--port", type=int, default=None,
        help="Port to listen on (default: JANUS_PORT or 3000)",
    )
    parser.add_argument(
        "--config", metavar="PATH",
        help="YAML config file (default: ./janus.yaml if present)",
    )
    parser.add_argument(
        "--workspace", metavar="DIR",
        help="Directory the agent CLI runs in",
    )
    parser.add_argument(
        "--verbose", "-v", action="store_true",
        help="Enable debug logging",
    )
    args = parser.parse_args()

    try:
        config = _load_config(args.config)
        if args.host:
            config.host = args.host
        if args.port is not None:
            config.port = args.port
        if args.workspace:
            config.workspace_dir = str(Path(args.workspace).expanduser().resolve())
        if args.verbose:
            config.log_level = "DEBUG"
        config.validate()
    except (ConfigError, FileNotFoundError) as exc:
        print(f"janus: configuration error: {exc}", file=sys.stderr)
        sys.exit(2)

    log_file = _configure_logging(config.log_level)
    logger = logging.getLogger(__name__)
    logger.info(
        "Starting Janus server host=%s port=%s workspace=%s provider=%s log=%s",
        config.host, config.port, config.workspace_dir, config.agent_provider, log_file,
    )

    from janus.server.server import JanusServer
    from janus.shared.services.process_cleanup import cleanup_stale_runtime_processes

    try:
        reaped = cleanup_stale_runtime_processes(
            include_agents=config.reap_stale_agents, log=logger.info,
        )
        if reaped:
            logger.warning("Reaped %d stale runtime process(es) at startup", reaped)
    except Exception:
        logger.exception("Startup stale-process cleanup failed")

    try:
        server = JanusServer(config)
    except ConfigError as exc:
        logger.error("Invalid configuration: %s", exc)
        sys.exit(2)

    try:
        asyncio.run(server.start())
    except KeyboardInterrupt:
        logger.info("Interrupted")


if __name__ == "__main__":
    main()
