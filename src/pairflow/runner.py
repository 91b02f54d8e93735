"""Async subprocess runner with incremental output callbacks and a hard timeout."""

from __future__ import annotations

import asyncio
import codecs
import contextlib
import logging
import os
from collections.abc import Callable, Mapping
from dataclasses import dataclass

from pairflow.errors import TransportError

log = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30 * 60
KILL_GRACE_SECONDS = 5.0
_READ_SIZE = 64 * 1024

OutputCallback = Callable[[str], None]


@dataclass(frozen=True)
class ProcessResult:
    exit_code: int
    stdout: str
    stderr: str


def _child_env(extra: Mapping[str, str] | None) -> dict[str, str]:
    env = dict(os.environ)
    if extra:
        env.update(extra)
    # A nested claude refuses to start when it sees this marker.
    env.pop("CLAUDECODE", None)
    return env


async def _pump(
    stream: asyncio.StreamReader,
    sink: list[str],
    callback: OutputCallback | None,
) -> None:
    """Read a pipe to EOF, decoding UTF-8 without splitting characters."""
    decoder = codecs.getincrementaldecoder("utf-8")(errors="replace")
    while True:
        data = await stream.read(_READ_SIZE)
        text = decoder.decode(data, final=not data)
        if text:
            sink.append(text)
            if callback is not None:
                callback(text)
        if not data:
            break


async def _terminate(process: asyncio.subprocess.Process, grace: float) -> None:
    """SIGTERM, then SIGKILL if the child outlives the grace window."""
    with contextlib.suppress(ProcessLookupError):
        process.terminate()
    try:
        await asyncio.wait_for(process.wait(), timeout=grace)
    except TimeoutError:
        log.debug("Process %s ignored SIGTERM, sending SIGKILL", process.pid)
        with contextlib.suppress(ProcessLookupError):
            process.kill()
        await process.wait()


async def run_process(
    command: str,
    args: list[str],
    *,
    cwd: str | None = None,
    timeout: float | None = DEFAULT_TIMEOUT_SECONDS,
    on_stdout: OutputCallback | None = None,
    on_stderr: OutputCallback | None = None,
    env: Mapping[str, str] | None = None,
    kill_grace: float = KILL_GRACE_SECONDS,
) -> ProcessResult:
    """Run *command* to completion, streaming decoded output to the callbacks.

    Raises :class:`TransportError` when the process cannot be started or does
    not exit within *timeout* seconds. A non-zero exit is returned, not raised.
    An exception from a callback terminates the child and propagates.
    """
    log.debug("exec: %s (%d args, cwd=%s)", command, len(args), cwd or ".")
    try:
        process = await asyncio.create_subprocess_exec(
            command,
            *args,
            cwd=cwd,
            env=_child_env(env),
            stdin=asyncio.subprocess.DEVNULL,
            stdout=asyncio.subprocess.PIPE,
            stderr=asyncio.subprocess.PIPE,
        )
    except OSError as exc:
        raise TransportError(f"Failed to start {command}: {exc}") from exc

    assert process.stdout and process.stderr
    stdout_parts: list[str] = []
    stderr_parts: list[str] = []

    pumps = [
        asyncio.ensure_future(_pump(process.stdout, stdout_parts, on_stdout)),
        asyncio.ensure_future(_pump(process.stderr, stderr_parts, on_stderr)),
    ]

    async def _communicate() -> int:
        await asyncio.gather(*pumps)
        return await process.wait()

    try:
        if timeout is not None:
            returncode = await asyncio.wait_for(_communicate(), timeout=timeout)
        else:
            returncode = await _communicate()
    except TimeoutError:
        await _terminate(process, kill_grace)
        raise TransportError(
            f"{command} timed out after {timeout:g}s",
            stderr="".join(stderr_parts),
            timed_out=True,
        ) from None
    except BaseException:
        # Cancellation or a raising output callback: the child must not outlive us.
        await _terminate(process, kill_grace)
        raise
    finally:
        for task in pumps:
            task.cancel()
        await asyncio.gather(*pumps, return_exceptions=True)

    return ProcessResult(
        exit_code=returncode if returncode is not None else 1,
        stdout="".join(stdout_parts),
        stderr="".join(stderr_parts),
    )
