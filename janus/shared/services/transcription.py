"""Speech-to-text via the local whisper CLI."""
from __future__ import annotations

import asyncio
import logging
import re
from pathlib import Path

from janus.engine.config import JanusConfig
from janus.engine.errors import InvalidInputError, MediaProcessError

from .media_subprocess import MediaSubprocessAdapter
from .temp_artifacts import ensure_dir, remove_quietly, unique_artifact_path

logger = logging.getLogger(__name__)

_DEFAULT_AUDIO_EXT = ".webm"  # browser MediaRecorder default
_SAFE_EXT_RE = re.compile(r"^\.[A-Za-z0-9]{1,10}$")


class SpeechToText(MediaSubprocessAdapter):
    """Transcribe uploaded audio with ``whisper``.

    whisper writes ``<stem>.txt`` next to the input when run with
    ``--output_format txt --output_dir <dir>``; both files are removed
    before ``transcribe`` returns, whatever happens.
    """

    tool_name = "whisper"
    temp_subdir = "janus-transcribe"

    def __init__(
        self,
        executable: str = "whisper",
        model: str = "base",
        temp_root: str | Path = "/tmp",
        timeout_seconds: float = 120.0,
    ) -> None:
        super().__init__(executable, temp_root, timeout_seconds)
        self._model = model

    @classmethod
    def from_config(cls, config: JanusConfig) -> SpeechToText:
        return cls(
            executable=config.whisper_path,
            model=config.whisper_model,
            temp_root=config.temp_dir,
            timeout_seconds=config.transcribe_timeout_seconds,
        )

    def build_cmd(self, audio_path: Path) -> list[str]:
        return [
            self._executable,
            str(audio_path),
            "--model", self._model,
            "--output_format", "txt",
            "--output_dir", str(audio_path.parent),
        ]

    async def transcribe(
        self,
        audio: bytes,
        filename: str = "",
        timeout: float | None = None,
    ) -> str:
        if not audio:
            raise InvalidInputError("no audio provided")

        ext = Path(filename).suffix if filename else ""
        # whisper writes <stem>.txt, so a .txt upload would be overwritten.
        if not _SAFE_EXT_RE.match(ext) or ext.lower() == ".txt":
            ext = _DEFAULT_AUDIO_EXT

        temp_dir = ensure_dir(self.temp_dir)
        audio_path = unique_artifact_path(temp_dir, "audio", ext)
        txt_path = audio_path.with_suffix(".txt")
        logger.info(
            "Transcribing audio file %s (%d bytes)", filename or "<upload>", len(audio),
        )
        try:
            await asyncio.to_thread(audio_path.write_bytes, audio)
            await self._run(self.build_cmd(audio_path), timeout)
            try:
                text = await asyncio.to_thread(txt_path.read_text, encoding="utf-8")
            except FileNotFoundError as exc:
                raise MediaProcessError(
                    self.tool_name, f"transcription file {txt_path.name} was not written",
                ) from exc
        finally:
            remove_quietly(audio_path, txt_path)

        text = text.strip()
        logger.info("Transcription successful")
        logger.debug("Transcription text: %s", text)
        return text
