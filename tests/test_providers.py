from __future__ import annotations

import asyncio
import os
from pathlib import Path

import pytest

from janus.engine.errors import (
    AgentReportedError,
    AgentTimeoutError,
    ConfigError,
    ProcessFailedError,
)
from janus.engine.providers import (
    ClaudeProvider,
    CursorProvider,
    build_provider,
    extract_json_payload,
)

SUCCESS_JSON = (
    '{"type":"result","subtype":"success","is_error":false,'
    '"result":"hi there","session_id":"handle-1"}'
)


def _write_stub(directory: Path, name: str, body: str) -> Path:
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(0o755)
    return path


async def _wait_for_file(path: Path, attempts: int = 100) -> None:
    for _ in range(attempts):
        if path.exists() and path.read_text().strip():
            return
        await asyncio.sleep(0.05)
    raise AssertionError(f"{path} never appeared")


def _assert_process_gone(pid: int) -> None:
    with pytest.raises(ProcessLookupError):
        os.kill(pid, 0)


# ── Command building ──


def test_cursor_command_without_and_with_resume() -> None:
    provider = CursorProvider(command="cursor-agent")
    assert provider.build_ask_cmd("hello") == [
        provider.command, "--print", "--output-format", "json", "hello",
    ]
    assert provider.build_ask_cmd("hello", "chat-9") == [
        provider.command, "--print", "--output-format", "json",
        "--resume", "chat-9", "hello",
    ]


def test_claude_command_includes_model_and_resume() -> None:
    provider = ClaudeProvider(model="sonnet")
    assert provider.build_ask_cmd("q", "abc") == [
        provider.command, "-p", "--output-format", "json",
        "--model", "sonnet", "--resume", "abc", "q",
    ]


def test_question_is_a_single_argv_element() -> None:
    question = "what does `rm -rf /` do; echo pwned"
    cmd = CursorProvider().build_ask_cmd(question)
    assert cmd[-1] == question


def test_build_provider_rejects_unknown_name() -> None:
    with pytest.raises(ConfigError):
        build_provider("copilot")
    assert build_provider("claude", command="claude").name == "claude"


# ── Output parsing ──


def test_extract_json_payload_skips_preamble() -> None:
    stdout = "Update available: 1.2.3\n" + SUCCESS_JSON + "\n"
    assert extract_json_payload(stdout)["session_id"] == "handle-1"
    assert extract_json_payload("") is None
    assert extract_json_payload("not json at all") is None
    assert extract_json_payload("[1, 2, 3]") is None


def test_parse_output_success_and_handle_fallback() -> None:
    provider = CursorProvider()
    reply = provider.parse_output(SUCCESS_JSON)
    assert reply.answer == "hi there"
    assert reply.conversation_handle == "handle-1"
    assert reply.metadata["subtype"] == "success"

    no_handle = provider.parse_output('{"result": "ok"}', conversation_handle="prev")
    assert no_handle.conversation_handle == "prev"


def test_parse_output_error_payload() -> None:
    with pytest.raises(AgentReportedError) as excinfo:
        CursorProvider().parse_output('{"is_error": true, "result": "Rate limit exceeded"}')
    assert "Rate limit exceeded" in str(excinfo.value)


def test_parse_output_malformed() -> None:
    provider = CursorProvider()
    with pytest.raises(ProcessFailedError) as excinfo:
        provider.parse_output("Segmentation fault")
    assert excinfo.value.malformed_output
    with pytest.raises(ProcessFailedError) as excinfo:
        provider.parse_output('{"session_id": "x"}')
    assert excinfo.value.malformed_output


# ── Subprocess execution ──


@pytest.mark.asyncio
async def test_ask_runs_stub_cli_in_workspace(tmp_path: Path) -> None:
    workspace = tmp_path / "workspace"
    workspace.mkdir()
    args_file = tmp_path / "args.txt"
    stub = _write_stub(
        tmp_path, "cursor-agent",
        f'printf "%s\\n" "$@" > "{args_file}"\n'
        f'pwd > "{tmp_path / "cwd.txt"}"\n'
        f"echo '{SUCCESS_JSON}'\n",
    )
    provider = CursorProvider(command=str(stub))

    reply = await provider.ask("hello", cwd=str(workspace), timeout=10)
    assert reply.answer == "hi there"
    assert reply.conversation_handle == "handle-1"
    assert args_file.read_text().splitlines() == [
        "--print", "--output-format", "json", "hello",
    ]
    assert Path((tmp_path / "cwd.txt").read_text().strip()).resolve() == workspace.resolve()

    await provider.ask("again", conversation_handle="handle-1", timeout=10)
    assert args_file.read_text().splitlines() == [
        "--print", "--output-format", "json", "--resume", "handle-1", "again",
    ]


@pytest.mark.asyncio
async def test_ask_nonzero_exit_raises_process_failed(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "agent", 'echo "boom: connection reset" >&2\nexit 3\n')
    with pytest.raises(ProcessFailedError) as excinfo:
        await CursorProvider(command=str(stub)).ask("q", timeout=10)
    assert excinfo.value.returncode == 3
    assert "connection reset" in excinfo.value.stderr


@pytest.mark.asyncio
async def test_ask_malformed_stdout(tmp_path: Path) -> None:
    stub = _write_stub(tmp_path, "agent", 'echo "definitely not json"\n')
    with pytest.raises(ProcessFailedError) as excinfo:
        await CursorProvider(command=str(stub)).ask("q", timeout=10)
    assert excinfo.value.malformed_output


@pytest.mark.asyncio
async def test_ask_error_payload(tmp_path: Path) -> None:
    stub = _write_stub(
        tmp_path, "agent",
        """echo '{"type":"result","is_error":true,"result":"Not logged in"}'\n""",
    )
    with pytest.raises(AgentReportedError):
        await CursorProvider(command=str(stub)).ask("q", timeout=10)


@pytest.mark.asyncio
async def test_ask_missing_binary_is_spawn_failure(tmp_path: Path) -> None:
    provider = CursorProvider(command=str(tmp_path / "no-such-agent"))
    with pytest.raises(ProcessFailedError) as excinfo:
        await provider.ask("q", timeout=10)
    assert excinfo.value.spawn_failed


@pytest.mark.asyncio
async def test_ask_timeout_kills_subprocess(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    stub = _write_stub(tmp_path, "agent", f'echo $$ > "{pid_file}"\nexec sleep 30\n')
    provider = CursorProvider(command=str(stub))

    with pytest.raises(AgentTimeoutError) as excinfo:
        await provider.ask("q", timeout=0.5)
    assert excinfo.value.timeout_seconds == 0.5
    _assert_process_gone(int(pid_file.read_text()))


@pytest.mark.asyncio
async def test_ask_cancellation_kills_subprocess(tmp_path: Path) -> None:
    pid_file = tmp_path / "pid"
    stub = _write_stub(tmp_path, "agent", f'echo $$ > "{pid_file}"\nexec sleep 30\n')
    provider = CursorProvider(command=str(stub))

    task = asyncio.create_task(provider.ask("q", timeout=30))
    await _wait_for_file(pid_file)
    task.cancel()
    with pytest.raises(asyncio.CancelledError):
        await task
    _assert_process_gone(int(pid_file.read_text()))


@pytest.mark.asyncio
async def test_expired_deadline_never_spawns(tmp_path: Path) -> None:
    marker = tmp_path / "spawned"
    stub = _write_stub(tmp_path, "agent", f'touch "{marker}"\necho "{{}}"\n')
    with pytest.raises(AgentTimeoutError) as excinfo:
        await CursorProvider(command=str(stub)).ask("q", timeout=0)
    assert excinfo.value.timeout_seconds is None
    assert not marker.exists()


@pytest.mark.asyncio
async def test_api_key_env_is_forwarded(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    env_file = tmp_path / "env.txt"
    stub = _write_stub(
        tmp_path, "agent",
        f'printf "%s" "$CURSOR_API_KEY" > "{env_file}"\n'
        f"echo '{SUCCESS_JSON}'\n",
    )
    monkeypatch.setenv("MY_CURSOR_KEY", "secret-123")
    provider = CursorProvider(command=str(stub), api_key_env="MY_CURSOR_KEY")
    await provider.ask("q", timeout=10)
    assert env_file.read_text() == "secret-123"
