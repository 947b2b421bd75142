"""Shared runner for the local speech executables.

Speech-to-text and text-to-speech both shell out to a local CLI with
temp-file input/output and a deadline. The process is always killed and
reaped when the deadline passes or the request is cancelled.
"""
from __future__ import annotations

import asyncio
import logging
from pathlib import Path

from janus.engine.errors import MediaProcessError, MediaTimeoutError

from .process_cleanup import kill_and_reap

logger = logging.getLogger(__name__)


class MediaSubprocessAdapter:
    """Base class for request-scoped media CLI invocations."""

    tool_name: str = "media"
    temp_subdir: str = "janus-media"

    def __init__(
        self,
        executable: str,
        temp_root: str | Path,
        timeout_seconds: float,
    ) -> None:
        self._executable = executable
        self._temp_root = Path(temp_root)
        self._timeout = timeout_seconds

    @property
    def executable(self) -> str:
        return self._executable

    @property
    def temp_dir(self) -> Path:
        return self._temp_root / self.temp_subdir

    async def _run(
        self,
        cmd: list[str],
        timeout: float | None = None,
        env: dict[str, str] | None = None,
    ) -> str:
        """Run ``cmd`` to completion and return its combined output."""
        timeout = self._timeout if timeout is None else timeout
        logger.debug("Executing %s command: %s", self.tool_name, cmd)
        try:
            proc = await asyncio.create_subprocess_exec(
                *cmd,
                stdin=asyncio.subprocess.DEVNULL,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.STDOUT,
                env=env,
            )
        except OSError as exc:
            raise MediaProcessError(
                self.tool_name, f"could not start '{cmd[0]}': {exc}",
            ) from exc

        try:
            output_bytes, _ = await asyncio.wait_for(
                proc.communicate(), timeout=timeout,
            )
        except asyncio.TimeoutError:
            await kill_and_reap(proc)
            logger.error("%s command timed out after %.1fs", self.tool_name, timeout)
            raise MediaTimeoutError(self.tool_name, timeout) from None
        except asyncio.CancelledError:
            await kill_and_reap(proc)
            raise

        output = output_bytes.decode("utf-8", errors="replace")
        if proc.returncode != 0:
            logger.error(
                "%s command failed (rc=%s): %s",
                self.tool_name, proc.returncode, output[-2000:],
            )
            raise MediaProcessError(
                self.tool_name, f"exit code {proc.returncode}", output,
            )
        logger.debug("%s command succeeded: %s", self.tool_name, output[-2000:])
        return output
