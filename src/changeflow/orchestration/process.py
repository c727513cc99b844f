"""
changeflow — agent process runner

File: src/changeflow/orchestration/process.py

Purpose
- Spawn one external agent process, feed it the prompt on stdin, and capture both output
  streams whole.

Functional requirements
- stdin feeding and stdout/stderr draining run concurrently so neither pipe can stall the
  child.
- A child that closes stdin before the prompt is fully written is not an error; success is
  judged by exit status alone.
- No internal timeout. Callers impose one with ``asyncio.wait_for`` if they need it; the
  child is killed when the runner is cancelled.

Security
- Prompts and outputs are never logged at INFO or above.
"""

from __future__ import annotations

import asyncio
import logging
import os
import time
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Final

from changeflow.errors import CommandNotFoundError, NonZeroExitError, OrchestratorIOError

logger = logging.getLogger(__name__)

_STREAM_LIMIT: Final[int] = 16 * 1024 * 1024
_STDOUT: Final[str] = "stdout"
_STDERR: Final[str] = "stderr"

LineCallback = Callable[[str, str], None]


@dataclass(frozen=True, slots=True)
class ProcessResult:
    argv: tuple[str, ...]
    stdout: str
    stderr: str
    returncode: int
    duration_ms: int
    stdin_closed_early: bool = False


async def run_process(
    argv: Sequence[str],
    *,
    stdin_data: str | bytes | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    on_line: LineCallback | None = None,
    check: bool = True,
) -> ProcessResult:
    """Run ``argv`` to completion and capture its output.

    ``on_line(stream, line)`` is called for every decoded output line as it arrives.
    Raises ``CommandNotFoundError`` when the executable is missing, ``NonZeroExitError`` on
    a failing exit status (unless ``check`` is false), and ``OrchestratorIOError`` when the
    process cannot be spawned or its streams break.
    """

    if not argv:
        raise ValueError("argv must not be empty")
    command = argv[0]
    payload = stdin_data.encode("utf-8") if isinstance(stdin_data, str) else stdin_data
    start = time.perf_counter()

    try:
        proc = await asyncio.create_subprocess_exec(
            *argv,
            stdin=asyncio.subprocess.PIPE if payload is not None else asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            cwd=str(cwd) if cwd is not None else None,
            env={**os.environ, **env} if env is not None else None,
            limit=_STREAM_LIMIT,
        )
    except FileNotFoundError as exc:
        raise CommandNotFoundError(command) from exc
    except PermissionError as exc:
        raise OrchestratorIOError(command, f"not executable: {exc}") from exc
    except OSError as exc:
        raise OrchestratorIOError(command, f"spawn failed: {exc}") from exc

    stdout_lines: list[bytes] = []
    stderr_lines: list[bytes] = []
    closed_early = False

    async def _feed_stdin() -> None:
        nonlocal closed_early
        if payload is None or proc.stdin is None:
            return
        try:
            proc.stdin.write(payload)
            await proc.stdin.drain()
            proc.stdin.close()
            await proc.stdin.wait_closed()
        except (BrokenPipeError, ConnectionResetError):
            closed_early = True
            logger.debug("%s closed stdin before the prompt was fully written", command)

    async def _drain(stream: asyncio.StreamReader | None, name: str, sink: list[bytes]) -> None:
        if stream is None:
            return
        while True:
            line = await stream.readline()
            if not line:
                break
            sink.append(line)
            if on_line is not None:
                text = line.decode("utf-8", errors="replace").rstrip("\r\n")
                if text:
                    on_line(name, text)

    try:
        await asyncio.gather(
            _feed_stdin(),
            _drain(proc.stdout, _STDOUT, stdout_lines),
            _drain(proc.stderr, _STDERR, stderr_lines),
        )
        returncode = await proc.wait()
    except asyncio.CancelledError:
        _kill(proc)
        await proc.wait()
        raise
    except (OSError, ValueError) as exc:
        _kill(proc)
        await proc.wait()
        raise OrchestratorIOError(command, f"stream failure: {exc}") from exc

    result = ProcessResult(
        argv=tuple(argv),
        stdout=b"".join(stdout_lines).decode("utf-8", errors="replace"),
        stderr=b"".join(stderr_lines).decode("utf-8", errors="replace"),
        returncode=returncode,
        duration_ms=int((time.perf_counter() - start) * 1000),
        stdin_closed_early=closed_early,
    )
    logger.debug("%s exited %d after %dms", command, returncode, result.duration_ms)
    if check and returncode != 0:
        raise NonZeroExitError(command, returncode, result.stderr)
    return result


def _kill(proc: asyncio.subprocess.Process) -> None:
    if proc.returncode is None:
        try:
            proc.kill()
        except ProcessLookupError:
            logger.debug("process %s already exited", proc.pid)


__all__ = ["LineCallback", "ProcessResult", "run_process"]
