"""Tests against a real subprocess speaking the command server protocol."""

from __future__ import annotations

import typing as t

import pytest

from libhg import exc
from libhg._internal.process import HgProcess
from libhg.client import ClientState, CommandServer
from libhg.constants import Channel

if t.TYPE_CHECKING:
    import pathlib

    from .conftest import OutputRecorder


def test_build_env_forces_encoding() -> None:
    """HGENCODING and LANGUAGE are set, explicit overrides win."""
    env = HgProcess(env={"HGUSER": "test <test@example.com>"}).build_env()
    assert env["HGENCODING"] == "UTF-8"
    assert env["LANGUAGE"] == "en_US.UTF-8"
    assert env["HGUSER"] == "test <test@example.com>"

    env = HgProcess(env={"LANGUAGE": "C"}).build_env()
    assert env["LANGUAGE"] == "C"


@pytest.mark.asyncio
async def test_missing_executable_fails_handshake(tmp_path: pathlib.Path) -> None:
    """An unknown hg path is reported as a handshake failure."""
    hg = CommandServer(str(tmp_path / "no-such-hg"))

    with pytest.raises(exc.HandshakeError, match="hg executable not found") as excinfo:
        await hg.execute("root")

    assert isinstance(excinfo.value.__cause__, exc.HandshakeError)
    assert hg.state is ClientState.BROKEN
    await hg.stop()


@pytest.mark.asyncio
async def test_process_roundtrip(fake_hg: pathlib.Path) -> None:
    """Commands are exchanged with a spawned process."""
    async with CommandServer(str(fake_hg)) as hg:
        assert hg.hello is not None
        assert hg.hello.encoding == "UTF-8"
        assert await hg.root() == "/repo/path"
        assert await hg.execute("echo", "a b", "c") == "a b c\n"
        assert await hg.execute("env") == "UTF-8\n"


@pytest.mark.asyncio
async def test_process_cwd_and_output(
    fake_hg: pathlib.Path,
    recorder: OutputRecorder,
) -> None:
    """--cwd reaches the process, every channel reaches the receiver."""
    async with CommandServer(
        str(fake_hg),
        directory="/work/repo",
        output_receiver=recorder,
    ) as hg:
        await hg.execute("echo", "hi")

    assert recorder.entries == [
        (None, "\nhg echo --cwd /work/repo hi\n"),
        (Channel.DEBUG, "cwd: /work/repo\n"),
        (Channel.OUTPUT, "hi\n"),
    ]


@pytest.mark.asyncio
async def test_process_command_failure(fake_hg: pathlib.Path) -> None:
    """Non-zero results are command errors; the server stays usable."""
    async with CommandServer(str(fake_hg)) as hg:
        with pytest.raises(exc.CommandError) as excinfo:
            await hg.execute("fail")
        assert await hg.root() == "/repo/path"

    assert excinfo.value.returncode == 255
    assert excinfo.value.message == "abort: no repository found in '/nowhere'!"


@pytest.mark.asyncio
async def test_process_prompt(fake_hg: pathlib.Path) -> None:
    """Line requests are answered through the prompt handler."""
    prompts: list[tuple[str, bool]] = []

    async def answer(prompt: str, secret: bool) -> str:
        prompts.append((prompt, secret))
        return "hunter2"

    async with CommandServer(str(fake_hg), prompt_handler=answer) as hg:
        assert await hg.execute("prompt") == "password: got hunter2\n"

    assert prompts == [("password", True)]


@pytest.mark.asyncio
async def test_process_encoding_mismatch(
    fake_hg: pathlib.Path,
    monkeypatch: pytest.MonkeyPatch,
) -> None:
    """A server announcing another encoding is rejected."""
    monkeypatch.setenv("FAKE_HG_ENCODING", "ascii")
    hg = CommandServer(str(fake_hg))

    with pytest.raises(exc.HandshakeError, match="Expected encoding UTF-8, but found ascii"):
        await hg.start()

    assert hg.state is ClientState.BROKEN
    await hg.stop()


@pytest.mark.asyncio
async def test_process_crash(fake_hg: pathlib.Path) -> None:
    """Early exit rejects the command in flight and every later one."""
    hg = CommandServer(str(fake_hg))

    with pytest.raises(exc.TransportClosed, match="exit code 3") as excinfo:
        await hg.execute("crash")
    assert excinfo.value.command == "crash"
    assert excinfo.value.returncode is None

    with pytest.raises(exc.TransportError):
        await hg.execute("root")
    await hg.stop()


@pytest.mark.asyncio
async def test_close_is_idempotent(fake_hg: pathlib.Path) -> None:
    """close() stops the process once and keeps its exit status."""
    process = HgProcess(str(fake_hg))
    await process.start()
    assert process.pid is not None

    await process.close()
    await process.close()

    assert process.pid is None
    assert process.returncode == 0
    with pytest.raises(exc.TransportClosed, match="not running"):
        await process.read_chunk()
