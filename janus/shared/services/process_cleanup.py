"""Subprocess termination helpers.

``kill_and_reap`` ends one request-scoped subprocess. The stale-process
sweep targets agent and media CLIs that Janus spawned in an earlier run
but that outlived it (e.g. after a crash mid-request).
"""

from __future__ import annotations

import asyncio
import logging
import os
import re
import signal
import subprocess
from collections.abc import Iterable
from dataclasses import dataclass
from typing import Callable

logger = logging.getLogger(__name__)

# Media CLIs are only matched on Janus' own temp directories.
MEDIA_PATTERNS: tuple[str, ...] = (
    r"\bwhisper\b.*janus-transcribe",
    r"\bkokoro-tts\b.*janus-tts",
)
# Agent CLIs look the same whether Janus or the user started them, so
# they are only matched when explicitly enabled.
AGENT_PATTERNS: tuple[str, ...] = (
    r"\bcursor-agent\b.*--print\b.*--output-format\b",
    r"\bclaude\b.*\s-p\b.*--output-format\b",
)


async def kill_and_reap(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL ``proc`` if still running and wait for it to exit."""
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            pass
    await proc.wait()


@dataclass(frozen=True)
class ProcessInfo:
    pid: int
    ppid: int
    args: str


def _list_processes() -> dict[int, ProcessInfo]:
    """Return process table keyed by PID using `ps` output."""
    out = subprocess.check_output(
        ["ps", "-eo", "pid=,ppid=,args="],
        text=True,
        stderr=subprocess.DEVNULL,
    )
    table: dict[int, ProcessInfo] = {}
    for line in out.splitlines():
        line = line.strip()
        if not line:
            continue
        parts = line.split(maxsplit=2)
        if len(parts) < 3:
            continue
        try:
            pid = int(parts[0])
            ppid = int(parts[1])
        except ValueError:
            continue
        table[pid] = ProcessInfo(pid=pid, ppid=ppid, args=parts[2])
    return table


def _is_managed_candidate(args: str, patterns: Iterable[str]) -> bool:
    return any(re.search(pat, args) for pat in patterns)


def _has_janus_ancestor(
    proc: ProcessInfo,
    table: dict[int, ProcessInfo],
    current_pid: int,
) -> bool:
    """True when the process tree includes a live Janus server."""
    cur = proc
    hops = 0
    while hops < 32:
        if cur.pid == current_pid:
            return True
        if re.search(r"\bjanus(?:\.app)?\b", cur.args) and cur.pid != proc.pid:
            return True
        parent = table.get(cur.ppid)
        if parent is None:
            return False
        cur = parent
        hops += 1
    return False


def cleanup_stale_runtime_processes(
    *,
    current_pid: int | None = None,
    include_agents: bool = False,
    patterns: Iterable[str] | None = None,
    process_table: dict[int, ProcessInfo] | None = None,
    log: Callable[[str], None] | None = None,
) -> int:
    """SIGTERM orphaned agent/media subprocesses.

    A process is reaped only when:
    - its command line matches a managed signature (agent CLIs only
      with ``include_agents``), and
    - it has no live Janus server ancestor, and
    - it is orphaned (parent is PID 1 or parent is missing).
    """
    pid = current_pid or os.getpid()
    emit = log or logger.info
    if patterns is None:
        patterns = MEDIA_PATTERNS + (AGENT_PATTERNS if include_agents else ())
    patterns = tuple(patterns)
    table = process_table if process_table is not None else _list_processes()
    killed = 0

    for proc in table.values():
        if proc.pid == pid:
            continue
        if not _is_managed_candidate(proc.args, patterns):
            continue

        parent_exists = proc.ppid in table
        is_orphan = (proc.ppid == 1) or (not parent_exists)
        if not is_orphan:
            continue

        if _has_janus_ancestor(proc, table, pid):
            continue

        try:
            os.kill(proc.pid, signal.SIGTERM)
            killed += 1
            emit(
                f"Reaped stale runtime process pid={proc.pid} "
                f"ppid={proc.ppid} cmd={proc.args[:180]}"
            )
        except ProcessLookupError:
            continue
        except PermissionError as exc:
            emit(f"Failed to reap stale process pid={proc.pid}: {exc}")

    return killed
