"""Asynchronous shell command execution for quality gate stages."""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Mapping

LOGGER = logging.getLogger(__name__)

LineSink = Callable[[str, str], None]

# Longest single output line accepted before the reader errors out.
_STREAM_LIMIT = 8 * 1024 * 1024


@dataclass(slots=True, frozen=True)
class CommandResult:
    """Exit status and captured output of one shell command."""

    ok: bool
    stdout: str
    stderr: str
    exit_code: int


async def run_command(
    command: str,
    cwd: str | Path,
    *,
    env: Mapping[str, str] | None = None,
    on_line: LineSink | None = None,
) -> CommandResult:
    """Run ``command`` through the shell in ``cwd`` and wait for it to finish.

    Output is captured line by line; ``on_line`` receives ``(stream, line)``
    for every line as it arrives.  The command is never killed: a long
    running stage runs to completion.
    """
    merged_env = dict(os.environ)
    if env:
        merged_env.update(env)

    try:
        process = await asyncio.create_subprocess_shell(
            command,
            cwd=str(cwd),
            env=merged_env,
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            limit=_STREAM_LIMIT,
        )
    except OSError as error:
        LOGGER.warning("Failed to launch %r in %s: %s", command, cwd, error)
        return CommandResult(ok=False, stdout="", stderr=str(error), exit_code=127)

    stdout_lines: list[str] = []
    stderr_lines: list[str] = []

    async def _drain(stream: asyncio.StreamReader | None, sink: list[str], name: str) -> None:
        if stream is None:
            return
        while True:
            chunk = await stream.readline()
            if not chunk:
                break
            line = chunk.decode("utf-8", errors="replace")
            sink.append(line)
            if on_line is not None:
                on_line(name, line.rstrip("\r\n"))

    await asyncio.gather(
        _drain(process.stdout, stdout_lines, "stdout"),
        _drain(process.stderr, stderr_lines, "stderr"),
    )
    exit_code = await process.wait()
    LOGGER.debug("Command %r exited with %s", command, exit_code)
    return CommandResult(
        ok=exit_code == 0,
        stdout="".join(stdout_lines),
        stderr="".join(stderr_lines),
        exit_code=exit_code if exit_code is not None else 1,
    )


__all__ = ["CommandResult", "LineSink", "run_command"]
