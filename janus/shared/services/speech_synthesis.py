"""Text-to-speech via the local kokoro-tts CLI."""
from __future__ import annotations

import asyncio
import logging
import os
import shutil
from pathlib import Path
from typing import Any

from janus.engine.config import JanusConfig
from janus.engine.errors import InvalidInputError, MediaProcessError

from .media_subprocess import MediaSubprocessAdapter
from .temp_artifacts import ensure_dir, remove_quietly, unique_artifact_path

logger = logging.getLogger(__name__)


class TextToSpeech(MediaSubprocessAdapter):
    """Synthesize speech with ``kokoro-tts``.

    ``synthesize`` returns the path of a ``.wav`` file that the caller
    owns and must delete. The text input file never outlives the call,
    and the output file is removed if synthesis fails.
    """

    tool_name = "kokoro-tts"
    temp_subdir = "janus-tts"

    def __init__(
        self,
        executable: str = "kokoro-tts",
        model_path: str = "kokoro-v1.0.onnx",
        voices_path: str = "voices-v1.0.bin",
        voice: str = "af_sarah",
        speed: float = 1.0,
        temp_root: str | Path = "/tmp",
        timeout_seconds: float = 60.0,
        onnx_provider: str = "CUDAExecutionProvider",
    ) -> None:
        super().__init__(executable, temp_root, timeout_seconds)
        self._model_path = model_path
        self._voices_path = voices_path
        self._voice = voice
        self._speed = speed
        self._onnx_provider = onnx_provider

    @classmethod
    def from_config(cls, config: JanusConfig) -> TextToSpeech:
        return cls(
            executable=config.kokoro_tts_path,
            model_path=config.kokoro_model_path,
            voices_path=config.kokoro_voices_path,
            voice=config.kokoro_voice,
            speed=config.kokoro_speed,
            temp_root=config.temp_dir,
            timeout_seconds=config.tts_timeout_seconds,
        )

    def build_cmd(self, input_path: Path, output_path: Path) -> list[str]:
        return [
            self._executable,
            str(input_path),
            str(output_path),
            "--model", self._model_path,
            "--voices", self._voices_path,
            "--speed", f"{self._speed:.1f}",
            "--lang", "en-us",
            "--voice", self._voice,
        ]

    async def synthesize(self, text: str, timeout: float | None = None) -> Path:
        if not text or not text.strip():
            raise InvalidInputError("text must not be empty")

        temp_dir = ensure_dir(self.temp_dir)
        input_path = unique_artifact_path(temp_dir, "input", ".txt")
        output_path = input_path.with_name(
            "output" + input_path.stem[len("input"):] + ".wav"
        )
        env = os.environ.copy()
        env["ONNX_PROVIDER"] = self._onnx_provider

        logger.info("Generating TTS audio (%d chars)", len(text))
        succeeded = False
        try:
            await asyncio.to_thread(input_path.write_text, text, encoding="utf-8")
            await self._run(self.build_cmd(input_path, output_path), timeout, env=env)
            if not output_path.is_file():
                raise MediaProcessError(
                    self.tool_name, f"audio file {output_path.name} was not written",
                )
            succeeded = True
            return output_path
        finally:
            remove_quietly(input_path)
            if not succeeded:
                remove_quietly(output_path)

    def health(self) -> dict[str, Any]:
        """Report whether kokoro-tts and its model files are usable.

        Clients fall back to browser speech synthesis when unavailable.
        """
        executable = self._executable
        if os.path.sep not in executable:
            executable = shutil.which(executable) or executable

        checks = (
            (executable, "Kokoro TTS not configured, using browser TTS"),
            (self._model_path, "Kokoro model files not found, using browser TTS"),
            (self._voices_path, "Kokoro voices file not found, using browser TTS"),
        )
        for path, missing_message in checks:
            try:
                os.stat(path)
            except FileNotFoundError:
                logger.debug("Kokoro TTS path not found: %s", path)
                return {"available": False, "provider": "browser", "message": missing_message}
            except OSError as exc:
                logger.error("Failed to check Kokoro TTS path %s: %s", path, exc)
                return {
                    "available": False,
                    "provider": "browser",
                    "message": f"Kokoro TTS inaccessible: {exc}",
                }

        return {
            "available": True,
            "provider": "kokoro",
            "voice": self._voice,
            "message": "Kokoro TTS available",
        }
