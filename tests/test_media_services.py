from __future__ import annotations

import os
import time
from pathlib import Path

import pytest

from janus.engine.config import JanusConfig
from janus.engine.errors import InvalidInputError, MediaProcessError, MediaTimeoutError
from janus.shared.services.speech_synthesis import TextToSpeech
from janus.shared.services.temp_artifacts import (
    remove_quietly,
    sweep_stale_artifacts,
    unique_artifact_path,
)
from janus.shared.services.transcription import SpeechToText

FAKE_WHISPER = """\
audio="$1"
shift
while [ $# -gt 0 ]; do
  if [ "$1" = "--output_dir" ]; then outdir="$2"; fi
  shift
done
base=$(basename "$audio")
stem="${base%.*}"
printf '%s\\n' "$audio" > "{record}"
printf '  hello world \\n' > "$outdir/$stem.txt"
"""

FAKE_KOKORO = """\
printf '%s' "$ONNX_PROVIDER" > "{record}"
head -c 1234 /dev/zero > "$2"
"""


def _write_stub(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


def _listing(directory: Path) -> list[str]:
    return sorted(p.name for p in directory.iterdir()) if directory.exists() else []


# ── Speech-to-text ──


@pytest.mark.asyncio
async def test_transcribe_returns_stripped_text_and_cleans_up(tmp_path: Path) -> None:
    record = tmp_path / "record.txt"
    stub = _write_stub(tmp_path, "whisper", FAKE_WHISPER.replace("{record}", str(record)))
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path / "tmp")

    text = await stt.transcribe(b"RIFF....", "clip.m4a")
    assert text == "hello world"
    assert record.read_text().strip().endswith(".m4a")
    assert stt.temp_dir == tmp_path / "tmp" / "janus-transcribe"
    assert _listing(stt.temp_dir) == []


@pytest.mark.asyncio
async def test_transcribe_defaults_unsafe_extension_to_webm(tmp_path: Path) -> None:
    record = tmp_path / "record.txt"
    stub = _write_stub(tmp_path, "whisper", FAKE_WHISPER.replace("{record}", str(record)))
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path)

    await stt.transcribe(b"data", "")
    assert record.read_text().strip().endswith(".webm")
    await stt.transcribe(b"data", "../../etc/passwd.we$bm")
    assert record.read_text().strip().endswith(".webm")


@pytest.mark.asyncio
@pytest.mark.parametrize("filename", ["notes.txt", "NOTES.TXT"])
async def test_transcribe_txt_upload_does_not_collide_with_output(
    tmp_path: Path, filename: str,
) -> None:
    record = tmp_path / "record.txt"
    stub = _write_stub(tmp_path, "whisper", FAKE_WHISPER.replace("{record}", str(record)))
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path / "tmp")

    assert await stt.transcribe(b"data", filename) == "hello world"
    assert record.read_text().strip().endswith(".webm")
    assert _listing(stt.temp_dir) == []


@pytest.mark.asyncio
async def test_transcribe_failure_removes_temp_files(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "whisper", 'echo "model not found"\nexit 1\n')
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path)
    with pytest.raises(MediaProcessError) as excinfo:
        await stt.transcribe(b"data", "clip.webm")
    assert "model not found" in excinfo.value.output
    assert _listing(stt.temp_dir) == []


@pytest.mark.asyncio
async def test_transcribe_missing_output_file(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "whisper", "exit 0\n")
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path)
    with pytest.raises(MediaProcessError):
        await stt.transcribe(b"data", "clip.webm")
    assert _listing(stt.temp_dir) == []


@pytest.mark.asyncio
async def test_transcribe_timeout(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "whisper", "exec sleep 30\n")
    stt = SpeechToText(executable=str(stub), temp_root=tmp_path, timeout_seconds=0.3)
    with pytest.raises(MediaTimeoutError):
        await stt.transcribe(b"data", "clip.webm")
    assert _listing(stt.temp_dir) == []


@pytest.mark.asyncio
async def test_transcribe_rejects_empty_audio(tmp_path: Path) -> None:
    stt = SpeechToText(executable=str(tmp_path / "whisper"), temp_root=tmp_path)
    with pytest.raises(InvalidInputError):
        await stt.transcribe(b"", "clip.webm")


@pytest.mark.asyncio
async def test_transcribe_missing_executable(tmp_path: Path) -> None:
    stt = SpeechToText(executable=str(tmp_path / "no-whisper"), temp_root=tmp_path)
    with pytest.raises(MediaProcessError):
        await stt.transcribe(b"data", "clip.webm")
    assert _listing(stt.temp_dir) == []


# ── Text-to-speech ──


@pytest.mark.asyncio
async def test_synthesize_returns_wav_and_removes_input(tmp_path: Path) -> None:
    record = tmp_path / "env.txt"
    stub = _write_stub(tmp_path, "kokoro-tts", FAKE_KOKORO.replace("{record}", str(record)))
    tts = TextToSpeech(executable=str(stub), temp_root=tmp_path / "tmp")

    output = await tts.synthesize("Hello there")
    try:
        assert output.suffix == ".wav"
        assert output.name.startswith("output_")
        assert output.stat().st_size == 1234
        assert _listing(tts.temp_dir) == [output.name]
        assert record.read_text() == "CUDAExecutionProvider"
    finally:
        remove_quietly(output)


@pytest.mark.asyncio
async def test_synthesize_failure_removes_both_files(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "kokoro-tts", 'head -c 10 /dev/zero > "$2"\nexit 1\n')
    tts = TextToSpeech(executable=str(stub), temp_root=tmp_path)
    with pytest.raises(MediaProcessError):
        await tts.synthesize("Hello")
    assert _listing(tts.temp_dir) == []


@pytest.mark.asyncio
async def test_synthesize_missing_output(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "kokoro-tts", "exit 0\n")
    tts = TextToSpeech(executable=str(stub), temp_root=tmp_path)
    with pytest.raises(MediaProcessError):
        await tts.synthesize("Hello")
    assert _listing(tts.temp_dir) == []


@pytest.mark.asyncio
async def test_synthesize_timeout(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "kokoro-tts", "exec sleep 30\n")
    tts = TextToSpeech(executable=str(stub), temp_root=tmp_path, timeout_seconds=0.3)
    with pytest.raises(MediaTimeoutError):
        await tts.synthesize("Hello")
    assert _listing(tts.temp_dir) == []


@pytest.mark.asyncio
@pytest.mark.parametrize("text", ["", "   "])
async def test_synthesize_rejects_blank_text(tmp_path: Path, text: str) -> None:
    tts = TextToSpeech(executable=str(tmp_path / "kokoro-tts"), temp_root=tmp_path)
    with pytest.raises(InvalidInputError):
        await tts.synthesize(text)


def test_synthesize_command_line(tmp_path: Path) -> None:
    tts = TextToSpeech(
        executable="kokoro-tts", model_path="m.onnx", voices_path="v.bin",
        voice="af_sarah", speed=1.5, temp_root=tmp_path,
    )
    assert tts.build_cmd(Path("in.txt"), Path("out.wav")) == [
        "kokoro-tts", "in.txt", "out.wav",
        "--model", "m.onnx", "--voices", "v.bin",
        "--speed", "1.5", "--lang", "en-us", "--voice", "af_sarah",
    ]


def test_tts_health_reports_provider(tmp_path: Path) -> None:
    exe = _write_stub(tmp_path, "kokoro-tts", "exit 0\n")
    model = tmp_path / "kokoro.onnx"
    voices = tmp_path / "voices.bin"
    model.write_bytes(b"m")
    voices.write_bytes(b"v")

    ok = TextToSpeech(executable=str(exe), model_path=str(model), voices_path=str(voices))
    health = ok.health()
    assert health["available"] is True
    assert health["provider"] == "kokoro"

    missing = TextToSpeech(
        executable=str(exe), model_path=str(tmp_path / "nope.onnx"), voices_path=str(voices),
    )
    health = missing.health()
    assert health["available"] is False
    assert health["provider"] == "browser"


def test_adapters_from_config(tmp_path: Path) -> None:
    cfg = JanusConfig(
        whisper_model="small", kokoro_voice="am_adam", temp_dir=str(tmp_path),
    )
    assert SpeechToText.from_config(cfg).temp_dir == tmp_path / "janus-transcribe"
    tts = TextToSpeech.from_config(cfg)
    assert tts.temp_dir == tmp_path / "janus-tts"
    assert "am_adam" in tts.build_cmd(Path("a"), Path("b"))


# ── Temp artifacts ──


def test_unique_artifact_paths_do_not_collide(tmp_path: Path) -> None:
    paths = {unique_artifact_path(tmp_path, "audio", ".webm") for _ in range(200)}
    assert len(paths) == 200
    assert all(p.parent == tmp_path and p.name.startswith("audio_") for p in paths)


def test_sweep_removes_only_files_older_than_threshold(tmp_path: Path) -> None:
    old = tmp_path / "old.txt"
    fresh = tmp_path / "fresh.txt"
    subdir = tmp_path / "nested"
    old.write_text("x")
    fresh.write_text("y")
    subdir.mkdir()
    stamp = time.time() - 7200
    os.utime(old, (stamp, stamp))
    os.utime(subdir, (stamp, stamp))

    assert sweep_stale_artifacts(tmp_path, 3600) == 1
    assert not old.exists()
    assert fresh.exists()
    assert subdir.exists()
    assert sweep_stale_artifacts(tmp_path / "absent", 3600) == 0
