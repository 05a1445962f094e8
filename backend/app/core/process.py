"""Subprocess execution with live stdout streaming.

Spawns the test runner from a discrete argument list (never through a
shell), hands every stdout chunk to a callback as soon as it arrives, and
always resolves: launch failures and timeouts come back as a non-zero exit
code instead of an exception so the caller can still summarise whatever
output exists.
"""

from __future__ import annotations

import asyncio
import codecs
import logging
import os
import signal
import sys
from dataclasses import dataclass
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

ChunkCallback = Callable[[str], Awaitable[None]]

_READ_SIZE = 4096
# Upper bound on reaping a killed process tree
_REAP_TIMEOUT = 5.0


@dataclass
class ProcessResult:
    """Outcome of one subprocess execution."""

    output: str
    exit_code: int
    timed_out: bool = False
    launch_error: str | None = None


def _kill_tree(proc: asyncio.subprocess.Process) -> None:
    """SIGKILL the whole process group; grandchildren hold the output pipes open."""
    if proc.returncode is not None:
        return
    if sys.platform == "win32":
        proc.kill()
        return
    try:
        os.killpg(proc.pid, signal.SIGKILL)
    except ProcessLookupError:
        pass


async def run_process(
    cmd: list[str],
    *,
    cwd: str | None = None,
    env: dict[str, str] | None = None,
    timeout: float = 300.0,
    on_stdout: ChunkCallback | None = None,
) -> ProcessResult:
    """Run *cmd* and collect its combined output.

    *env* is merged over the inherited environment. stderr is appended
    after stdout in the combined output.
    """
    proc_env = {**os.environ, **(env or {})}

    try:
        proc = await asyncio.create_subprocess_exec(
            *cmd,
            cwd=cwd,
            env=proc_env,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
            # Own process group so a timeout can kill runner workers too
            start_new_session=sys.platform != "win32",
        )
    except (OSError, ValueError) as exc:
        logger.warning("process: failed to start %s: %s", cmd[0] if cmd else "<empty>", exc)
        return ProcessResult(output=str(exc), exit_code=1, launch_error=str(exc))

    stdout_parts: list[str] = []
    stderr_parts: list[str] = []

    async def _pump_stdout(stream: asyncio.StreamReader) -> None:
        # Chunks may split multi-byte characters
        decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
        while True:
            raw = await stream.read(_READ_SIZE)
            text = decoder.decode(raw, final=not raw)
            if text:
                stdout_parts.append(text)
                if on_stdout is not None:
                    try:
                        await on_stdout(text)
                    except Exception:
                        logger.exception("process: stdout consumer failed")
            if not raw:
                break

    async def _drain(stream: asyncio.StreamReader, buf: list[str]) -> None:
        data = await stream.read()
        buf.append(data.decode("utf-8", errors="replace"))

    t_out = asyncio.create_task(_pump_stdout(proc.stdout))  # type: ignore[arg-type]
    t_err = asyncio.create_task(_drain(proc.stderr, stderr_parts))  # type: ignore[arg-type]

    timed_out = False
    try:
        await asyncio.wait_for(asyncio.gather(t_out, t_err), timeout=timeout)
    except asyncio.TimeoutError:
        timed_out = True
        t_out.cancel()
        t_err.cancel()
        _kill_tree(proc)
        logger.warning("process: %s timed out after %ss, killed", cmd[0], timeout)

    try:
        await asyncio.wait_for(proc.wait(), timeout=_REAP_TIMEOUT)
    except asyncio.TimeoutError:
        logger.error("process: %s not reaped within %ss, killing", cmd[0], _REAP_TIMEOUT)
        _kill_tree(proc)
    output = "".join(stdout_parts) + "".join(stderr_parts)

    if timed_out:
        notice = f"Test run timed out after {timeout:g} seconds"
        output = f"{output}\n{notice}" if output else notice
        return ProcessResult(output=output, exit_code=1, timed_out=True)

    returncode = proc.returncode
    # Killed by a signal, or never reaped
    if returncode is None or returncode < 0:
        returncode = 1
    return ProcessResult(output=output, exit_code=returncode)
