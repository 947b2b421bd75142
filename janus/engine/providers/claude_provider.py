"""Claude CLI provider.

Runs ``claude -p`` with JSON output; the result object has the same
shape as cursor-agent's, so parsing is shared with the base class.
"""
from __future__ import annotations

from .base import Provider


class ClaudeProvider(Provider):
    """Provider backed by the ``claude`` CLI in print mode.

    Auth: works with the CLI's OAuth login by default. If api_key_env
    is set and the env var exists, it is passed as ANTHROPIC_API_KEY.
    """

    api_key_var = "ANTHROPIC_API_KEY"

    def __init__(
        self,
        command: str = "claude",
        api_key_env: str | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(command, api_key_env)
        self._model = model

    @property
    def name(self) -> str:
        return "claude"

    @property
    def default_command(self) -> str:
        return "claude"

    def build_ask_cmd(
        self,
        question: str,
        conversation_handle: str = "",
    ) -> list[str]:
        cmd = [self._command, "-p", "--output-format", "json"]
        if self._model:
            cmd.extend(["--model", self._model])
        if conversation_handle:
            cmd.extend(["--resume", conversation_handle])
        cmd.append(question)
        return cmd
