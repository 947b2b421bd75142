"""Provider registry — maps provider names to Provider classes."""
from __future__ import annotations

import logging

from ..errors import ConfigError
from .base import Provider
from .claude_provider import ClaudeProvider
from .cursor_provider import CursorProvider

logger = logging.getLogger(__name__)

PROVIDER_TYPES: dict[str, type[Provider]] = {
    "cursor": CursorProvider,
    "claude": ClaudeProvider,
}


def build_provider(
    name: str,
    command: str | None = None,
    api_key_env: str | None = None,
) -> Provider:
    """Instantiate the provider registered under ``name``.

    Logs a warning when the CLI is not installed; the first ask will
    then fail with a spawn error rather than the server refusing to
    start.
    """
    provider_cls = PROVIDER_TYPES.get(name)
    if provider_cls is None:
        available = ", ".join(sorted(PROVIDER_TYPES))
        raise ConfigError(
            f"Provider '{name}' not found. Available: {available}"
        )

    if command:
        provider = provider_cls(command=command, api_key_env=api_key_env)
    else:
        provider = provider_cls(api_key_env=api_key_env)

    if provider.is_available():
        logger.info("Provider %s ready (command=%s)", name, provider.command)
    else:
        logger.warning(
            "Provider %s: CLI '%s' not found on PATH", name, provider.command,
        )
    return provider
