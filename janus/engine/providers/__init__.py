"""Agent CLI providers."""
from .base import Provider, extract_json_payload
from .registry import PROVIDER_TYPES, build_provider
from .claude_provider import ClaudeProvider
from .cursor_provider import CursorProvider

__all__ = [
    "Provider",
    "extract_json_payload",
    "PROVIDER_TYPES",
    "build_provider",
    "ClaudeProvider",
    "CursorProvider",
]
