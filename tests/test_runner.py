"""Tests for the async process runner."""

from __future__ import annotations

import asyncio
import shutil
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from pairflow.errors import TransportError
from pairflow.runner import run_process


def make_stream(*chunks: bytes, eof: bool = True) -> asyncio.StreamReader:
    reader = asyncio.StreamReader()
    for chunk in chunks:
        reader.feed_data(chunk)
    if eof:
        reader.feed_eof()
    return reader


def make_mock_process(stdout: asyncio.StreamReader, stderr: asyncio.StreamReader, returncode=0):
    proc = MagicMock()
    proc.pid = 4242
    proc.stdout = stdout
    proc.stderr = stderr
    proc.wait = AsyncMock(return_value=returncode)
    proc.terminate = MagicMock()
    proc.kill = MagicMock()
    return proc


@pytest.mark.asyncio
async def test_collects_output_and_exit_code():
    proc = make_mock_process(make_stream(b"out1", b"out2"), make_stream(b"err"), returncode=3)
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await run_process("tool", ["a"], cwd="/tmp", timeout=5)
    assert result.exit_code == 3
    assert result.stdout == "out1out2"
    assert result.stderr == "err"


@pytest.mark.asyncio
async def test_split_multibyte_character_is_not_corrupted():
    encoded = "héllo €".encode()
    # Split inside the two-byte é and the three-byte €.
    chunks = [encoded[:2], encoded[2:7], encoded[7:]]
    seen: list[str] = []
    proc = make_mock_process(make_stream(*chunks), make_stream())
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await run_process("tool", [], on_stdout=seen.append)
    assert result.stdout == "héllo €"
    assert "".join(seen) == "héllo €"


@pytest.mark.asyncio
async def test_callbacks_receive_each_stream():
    out: list[str] = []
    err: list[str] = []
    proc = make_mock_process(make_stream(b"o"), make_stream(b"e"))
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        await run_process("tool", [], on_stdout=out.append, on_stderr=err.append)
    assert out == ["o"]
    assert err == ["e"]


@pytest.mark.asyncio
async def test_none_returncode_reported_as_failure():
    proc = make_mock_process(make_stream(), make_stream(), returncode=None)
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        result = await run_process("tool", [])
    assert result.exit_code == 1


@pytest.mark.asyncio
async def test_child_env_drops_claudecode(monkeypatch):
    monkeypatch.setenv("CLAUDECODE", "1")
    proc = make_mock_process(make_stream(), make_stream())
    spawn = AsyncMock(return_value=proc)
    with patch("pairflow.runner.asyncio.create_subprocess_exec", spawn):
        await run_process("tool", ["x"], env={"EXTRA": "yes"})
    env = spawn.call_args.kwargs["env"]
    assert "CLAUDECODE" not in env
    assert env["EXTRA"] == "yes"
    assert spawn.call_args.args == ("tool", "x")
    assert spawn.call_args.kwargs["stdin"] == asyncio.subprocess.DEVNULL


@pytest.mark.asyncio
async def test_start_failure_raises_transport_error():
    spawn = AsyncMock(side_effect=FileNotFoundError(2, "No such file", "tool"))
    with patch("pairflow.runner.asyncio.create_subprocess_exec", spawn):
        with pytest.raises(TransportError, match="Failed to start tool") as info:
            await run_process("tool", [])
    assert not info.value.timed_out


@pytest.mark.asyncio
async def test_timeout_terminates_process():
    proc = make_mock_process(make_stream(b"partial", eof=False), make_stream(b"warn", eof=False))
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        with pytest.raises(TransportError, match="timed out") as info:
            await run_process("tool", [], timeout=0.05)
    assert info.value.timed_out
    assert info.value.stderr == "warn"
    proc.terminate.assert_called_once()
    proc.kill.assert_not_called()


@pytest.mark.asyncio
async def test_timeout_kills_process_that_ignores_sigterm():
    proc = make_mock_process(make_stream(eof=False), make_stream(eof=False))
    calls = 0

    async def wait():
        nonlocal calls
        calls += 1
        if calls == 1:
            await asyncio.sleep(10)
        return -9

    proc.wait = wait
    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        with pytest.raises(TransportError):
            await run_process("tool", [], timeout=0.05, kill_grace=0.05)
    proc.terminate.assert_called_once()
    proc.kill.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("sh") is None, reason="sh is not installed")
async def test_real_process(tmp_path):
    result = await run_process(
        "sh",
        ["-c", "printf 'héllo'; printf oops >&2; exit 3"],
        cwd=str(tmp_path),
        timeout=10,
    )
    assert result == type(result)(exit_code=3, stdout="héllo", stderr="oops")


@pytest.mark.asyncio
async def test_raising_callback_terminates_process():
    proc = make_mock_process(make_stream(b"hello"), make_stream(eof=False))

    def broken_sink(chunk):
        raise BrokenPipeError("stdout closed")

    with patch("pairflow.runner.asyncio.create_subprocess_exec", AsyncMock(return_value=proc)):
        with pytest.raises(BrokenPipeError):
            await run_process("tool", [], on_stdout=broken_sink, timeout=5)
    proc.terminate.assert_called_once()


@pytest.mark.asyncio
@pytest.mark.skipif(shutil.which("sh") is None, reason="sh is not installed")
async def test_raising_callback_leaves_no_live_child(tmp_path):
    spawned = []
    real_spawn = asyncio.create_subprocess_exec

    async def spawn(*args, **kwargs):
        process = await real_spawn(*args, **kwargs)
        spawned.append(process)
        return process

    def broken_sink(chunk):
        raise BrokenPipeError("stdout closed")

    with patch("pairflow.runner.asyncio.create_subprocess_exec", spawn):
        with pytest.raises(BrokenPipeError):
            await run_process(
                "sh", ["-c", "echo hello; exec sleep 30"], cwd=str(tmp_path), on_stdout=broken_sink
            )
    assert spawned[0].returncode is not None
