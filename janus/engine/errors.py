"""Exception hierarchy for the session engine.

One exception per failure mode so the HTTP layer can map each to a
status code without inspecting messages.
"""
from __future__ import annotations


class JanusError(Exception):
    """Base exception for all Janus errors."""


class ConfigError(JanusError):
    """Configuration is missing or invalid."""


class SessionNotFoundError(JanusError):
    """No live session has the requested id."""
    def __init__(self, session_id: str):
        self.session_id = session_id
        super().__init__(f"session not found: {session_id}")


class InvalidInputError(JanusError):
    """Caller supplied an empty or malformed value."""
    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InternalError(JanusError):
    """Store invariant violated or id generation failed."""


class AgentTimeoutError(JanusError):
    """Agent CLI did not answer before the deadline and was killed."""
    def __init__(self, timeout_seconds: float | None):
        self.timeout_seconds = timeout_seconds
        if timeout_seconds is None:
            super().__init__("agent request deadline already expired")
        else:
            super().__init__(
                f"agent request timed out after {timeout_seconds:.1f}s"
            )


class AgentInvocationError(JanusError):
    """Base for failures reported by or about the agent subprocess.

    ``diagnostic_text`` is the text searched when classifying the
    failure as transient or permanent.
    """

    @property
    def diagnostic_text(self) -> str:
        return str(self)


class ProcessFailedError(AgentInvocationError):
    """Agent CLI could not be spawned, exited non-zero, or printed
    output that is not the expected JSON payload."""
    def __init__(
        self,
        reason: str,
        *,
        returncode: int | None = None,
        stderr: str = "",
        output: str = "",
        spawn_failed: bool = False,
        malformed_output: bool = False,
    ):
        self.reason = reason
        self.returncode = returncode
        self.stderr = stderr
        self.output = output
        self.spawn_failed = spawn_failed
        self.malformed_output = malformed_output
        message = reason
        if returncode is not None:
            message = f"{message} (rc={returncode})"
        if stderr.strip():
            message = f"{message}, stderr: {stderr.strip()}"
        super().__init__(message)

    @property
    def diagnostic_text(self) -> str:
        return f"{self.reason}\n{self.stderr}\n{self.output}"


class AgentReportedError(AgentInvocationError):
    """Agent CLI ran but flagged its own payload as an error
    (auth, quota, rate limit, ...)."""
    def __init__(self, message: str):
        self.message = message
        super().__init__(f"agent returned error: {message}")

    @property
    def diagnostic_text(self) -> str:
        return self.message


class MediaError(JanusError):
    """Base for speech-to-text / text-to-speech adapter failures."""


class MediaTimeoutError(MediaError):
    """Media executable exceeded its deadline and was killed."""
    def __init__(self, tool: str, timeout_seconds: float):
        self.tool = tool
        self.timeout_seconds = timeout_seconds
        super().__init__(f"{tool} timed out after {timeout_seconds:.1f}s")


class MediaProcessError(MediaError):
    """Media executable failed or produced no output artifact."""
    def __init__(self, tool: str, reason: str, output: str = ""):
        self.tool = tool
        self.reason = reason
        self.output = output
        super().__init__(f"{tool} failed: {reason}")
