"""Abstract base for agent CLI providers.

Each provider wraps one coding-agent CLI that can answer a single
question non-interactively, print a JSON result object, and resume an
earlier conversation by id. ``Provider.ask()`` runs the CLI exactly
once: spawn, wait, reap. Retries belong to the caller.

Expected output shape (cursor-agent and claude agree on it):
    {"type": "result", "subtype": "success", "is_error": false,
     "result": "<answer text>", "session_id": "<conversation id>"}
"""
from __future__ import annotations

import abc
import asyncio
import json
import logging
import os
import shutil
from typing import Any

from janus.shared.services.process_cleanup import kill_and_reap

from ..errors import AgentReportedError, AgentTimeoutError, ProcessFailedError
from ..models import AgentReply

logger = logging.getLogger(__name__)

_OUTPUT_EXCERPT_CHARS = 2000


def extract_json_payload(stdout: str) -> dict[str, Any] | None:
    """Return the result object from CLI stdout, or None if absent.

    Some CLI builds print update notices or warnings before the JSON
    line, so fall back to scanning lines from the end.
    """
    text = stdout.strip()
    if not text:
        return None
    try:
        payload = json.loads(text)
    except json.JSONDecodeError:
        payload = None
    if isinstance(payload, dict):
        return payload

    for line in reversed(text.splitlines()):
        line = line.strip()
        if not line.startswith("{"):
            continue
        try:
            candidate = json.loads(line)
        except json.JSONDecodeError:
            continue
        if isinstance(candidate, dict):
            return candidate
    return None


class Provider(abc.ABC):
    """Abstract agent CLI provider.

    Implementations:
    - CursorProvider: ``cursor-agent --print --output-format json``
    - ClaudeProvider: ``claude -p --output-format json``
    """

    # Environment variable the CLI itself reads its API key from.
    api_key_var: str | None = None

    def __init__(
        self,
        command: str,
        api_key_env: str | None = None,
    ) -> None:
        self._command = self.resolve_command(command, self.default_command)
        self._api_key_env = api_key_env

    @property
    @abc.abstractmethod
    def name(self) -> str:
        """Short provider name (e.g. 'cursor', 'claude')."""

    @property
    @abc.abstractmethod
    def default_command(self) -> str:
        """Binary name used when the configured command is not found."""

    @abc.abstractmethod
    def build_ask_cmd(
        self,
        question: str,
        conversation_handle: str = "",
    ) -> list[str]:
        """Build argv for one non-interactive question.

        A non-empty ``conversation_handle`` resumes that conversation.
        """

    @property
    def command(self) -> str:
        return self._command

    def resolve_command(self, command: str, fallback: str | None = None) -> str:
        """Resolve the CLI binary, preferring the explicit command.

        The command may point to a wrapper that is not on PATH. In that
        case keep the raw value so errors show the configured command.
        """
        if command:
            if shutil.which(command):
                return command
            if fallback and fallback != command and shutil.which(fallback):
                logger.debug(
                    "Command %s not found; falling back to %s",
                    command, fallback,
                )
                return fallback
            return command
        return fallback or command

    def is_available(self) -> bool:
        """Check if the CLI is installed."""
        return shutil.which(self._command) is not None

    def _build_env(self) -> dict[str, str] | None:
        """Build subprocess environment with optional API key."""
        if self._api_key_env and self.api_key_var:
            key = os.environ.get(self._api_key_env)
            if key:
                env = os.environ.copy()
                env[self.api_key_var] = key
                return env
        return None

    async def ask(
        self,
        question: str,
        *,
        conversation_handle: str = "",
        cwd: str | None = None,
        timeout: float | None = None,
    ) -> AgentReply:
        """Run the CLI once for ``question`` and parse its answer.

        The subprocess is killed and reaped if ``timeout`` elapses
        (AgentTimeoutError) or the awaiting task is cancelled
        (CancelledError propagates).
        """
        if timeout is not None and timeout <= 0:
            raise AgentTimeoutError(None)

        cmd = self.build_ask_cmd(question, conversation_handle)
        logger.debug(
            "Running %s (resume=%s cwd=%s timeout=%s)",
            self.name, bool(conversation_handle), cwd, timeout,
        )
        try:
            # argv array, no shell
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self._build_env(),
                cwd=cwd,
            )
        except OSError as exc:
            raise ProcessFailedError(
                f"could not start '{self._command}': {exc}",
                spawn_failed=True,
            ) from exc

        try:
            stdout_bytes, stderr_bytes = await asyncio.wait_for(
                proc.communicate(), timeout=timeout,
            )
        except asyncio.TimeoutError:
            await kill_and_reap(proc)
            logger.warning(
                "%s (pid=%d) killed after %.1fs deadline",
                self.name, proc.pid, timeout,
            )
            raise AgentTimeoutError(timeout) from None
        except asyncio.CancelledError:
            await kill_and_reap(proc)
            logger.info("%s (pid=%d) killed on cancellation", self.name, proc.pid)
            raise

        stdout = stdout_bytes.decode("utf-8", errors="replace")
        stderr = stderr_bytes.decode("utf-8", errors="replace")

        if proc.returncode != 0:
            raise ProcessFailedError(
                f"{self.name} command failed",
                returncode=proc.returncode,
                stderr=stderr,
                output=stdout[:_OUTPUT_EXCERPT_CHARS],
            )
        return self.parse_output(stdout, stderr, conversation_handle)

    def parse_output(
        self,
        stdout: str,
        stderr: str = "",
        conversation_handle: str = "",
    ) -> AgentReply:
        """Turn CLI stdout into an AgentReply or a typed error."""
        payload = extract_json_payload(stdout)
        if payload is None:
            raise ProcessFailedError(
                f"failed to parse {self.name} response",
                stderr=stderr,
                output=stdout[:_OUTPUT_EXCERPT_CHARS],
                malformed_output=True,
            )

        if payload.get("is_error"):
            message = payload.get("result") or payload.get("error") or payload.get("subtype")
            raise AgentReportedError(str(message or "unknown error"))

        result = payload.get("result")
        if not isinstance(result, str):
            raise ProcessFailedError(
                f"{self.name} response has no result text",
                stderr=stderr,
                output=stdout[:_OUTPUT_EXCERPT_CHARS],
                malformed_output=True,
            )

        handle = payload.get("session_id")
        if not isinstance(handle, str) or not handle:
            handle = conversation_handle
        metadata = {
            key: payload[key]
            for key in ("type", "subtype", "duration_ms", "request_id")
            if key in payload
        }
        return AgentReply(answer=result, conversation_handle=handle, metadata=metadata)
