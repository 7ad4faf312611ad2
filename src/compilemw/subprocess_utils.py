"""Asynchronous subprocess helpers for external compilers."""

from __future__ import annotations

import asyncio
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Mapping, Sequence

TIMEOUT_RETURNCODE = 124


@dataclass(frozen=True)
class CommandResult:
    """Captured output from a command invocation."""

    command: list[str]
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool


def _decode(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")


async def run_command(
    command: Sequence[str],
    *,
    input_text: str | None = None,
    cwd: Path | None = None,
    env: Mapping[str, str] | None = None,
    timeout: float | None = None,
) -> CommandResult:
    """Run a command, piping ``input_text`` to stdin and capturing output.

    ``timeout`` is in seconds. A timed-out process is killed and reported
    with return code 124, mirroring coreutils ``timeout``.
    """
    cmd_list = [str(item) for item in command]
    process_env = None
    if env:
        process_env = dict(os.environ)
        process_env.update(env)
    process = await asyncio.create_subprocess_exec(
        *cmd_list,
        stdin=asyncio.subprocess.PIPE,
        stdout=asyncio.subprocess.PIPE,
        stderr=asyncio.subprocess.PIPE,
        cwd=cwd,
        env=process_env,
    )
    payload = input_text.encode("utf-8") if input_text is not None else None
    try:
        stdout, stderr = await asyncio.wait_for(process.communicate(payload), timeout)
    except asyncio.TimeoutError:
        process.kill()
        await process.wait()
        return CommandResult(
            cmd_list,
            TIMEOUT_RETURNCODE,
            "",
            f"Command timed out after {timeout} seconds.",
            True,
        )
    except asyncio.CancelledError:
        if process.returncode is None:
            process.kill()
            await process.wait()
        raise
    return CommandResult(
        cmd_list,
        process.returncode if process.returncode is not None else 1,
        _decode(stdout),
        _decode(stderr),
        False,
    )
