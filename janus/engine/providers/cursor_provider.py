"""Cursor agent CLI provider."""
from __future__ import annotations

from .base import Provider


class CursorProvider(Provider):
    """Provider backed by ``cursor-agent`` in print mode.

    Auth: uses the CLI's own login by default. If api_key_env is set
    and that env var exists, its value is passed as CURSOR_API_KEY.
    """

    api_key_var = "CURSOR_API_KEY"

    def __init__(
        self,
        command: str = "cursor-agent",
        api_key_env: str | None = None,
    ) -> None:
        super().__init__(command, api_key_env)

    @property
    def name(self) -> str:
        return "cursor"

    @property
    def default_command(self) -> str:
        return "cursor-agent"

    def build_ask_cmd(
        self,
        question: str,
        conversation_handle: str = "",
    ) -> list[str]:
        cmd = [self._command, "--print", "--output-format", "json"]
        if conversation_handle:
            cmd.extend(["--resume", conversation_handle])
        cmd.append(question)
        return cmd
