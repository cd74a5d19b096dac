"""Process supervisor for a pipe-mode hg command server."""

from __future__ import annotations

import asyncio
import contextlib
import logging
import os
import shutil
from collections import deque

from libhg import exc
from libhg.constants import ENCODING, HEADER, INPUT_CHANNELS, SERVER_ARGS, Channel

logger = logging.getLogger(__name__)


def _resolve_hg_executable(hg_path: str | None = None) -> str:
    hg_bin = shutil.which(hg_path or "hg")
    if not hg_bin:
        raise exc.HgCommandNotFound(hg_path)
    return hg_bin


def _add_note(error: BaseException, note: str) -> None:
    # BaseException.add_note only exists on Python 3.11+
    add_note = getattr(error, "add_note", None)
    if add_note is not None:
        add_note(note)


class HgProcess:
    """Own one ``hg serve --cmdserver pipe`` process and its pipes.

    The process is spawned by :meth:`start` and never respawned. Output is
    handed out one whole frame at a time by :meth:`read_chunk`, so parsers
    never see a frame split across reads.

    Parameters
    ----------
    hg_path : str, optional
        Executable name or path, looked up on ``PATH``. Default: ``hg``
    env : dict, optional
        Extra environment variables for the process.
    encoding : str
        Encoding forced through ``HGENCODING`` and ``LANGUAGE``.
    """

    def __init__(
        self,
        hg_path: str | None = None,
        *,
        env: dict[str, str] | None = None,
        encoding: str = ENCODING,
    ) -> None:
        self._hg_path = hg_path
        self._env_override = env
        self._encoding = encoding
        self._process: asyncio.subprocess.Process | None = None
        self._stderr_task: asyncio.Task[None] | None = None
        self._stderr_buffer: deque[str] = deque(maxlen=20)
        self._returncode: int | None = None

    @property
    def pid(self) -> int | None:
        """Process id of the running command server."""
        return self._process.pid if self._process is not None else None

    @property
    def returncode(self) -> int | None:
        """Exit status once the process has ended."""
        if self._process is not None:
            return self._process.returncode
        return self._returncode

    def build_env(self) -> dict[str, str]:
        """Return the environment the command server runs with."""
        env = os.environ.copy()
        env["HGENCODING"] = self._encoding
        # hg prompts must be in a known language to be recognized
        env["LANGUAGE"] = f"en_US.{self._encoding}"
        if self._env_override:
            env.update(self._env_override)
        return env

    async def start(self) -> None:
        """Spawn the command server if it is not running yet."""
        if self._process is not None:
            return

        hg_bin = _resolve_hg_executable(self._hg_path)
        argv = [hg_bin, *SERVER_ARGS]

        logger.debug("starting hg command server", extra={"hg_argv": argv})
        try:
            self._process = await asyncio.create_subprocess_exec(
                *argv,
                stdin=asyncio.subprocess.PIPE,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                env=self.build_env(),
            )
        except OSError as error:
            message = f"failed to launch {hg_bin}"
            raise exc.TransportClosed(message=message, cause=error) from error

        self._stderr_task = asyncio.create_task(
            self._drain_stderr(self._process),
            name="hg-cmdserver-stderr",
        )

    async def write(self, data: bytes) -> None:
        """Write *data* to the command server's input."""
        process = self._require_process()
        assert process.stdin is not None

        try:
            process.stdin.write(data)
            await process.stdin.drain()
        except (BrokenPipeError, ConnectionResetError) as error:
            raise await self._closed_error("hg command server stdin closed") from error

    async def read_chunk(self) -> bytes:
        """Read exactly one frame from the command server's output."""
        process = self._require_process()
        stdout = process.stdout
        assert stdout is not None

        try:
            header = await stdout.readexactly(HEADER.size)
            tag, length = HEADER.unpack(header)
            if _is_input_request(tag):
                return header
            payload = await stdout.readexactly(length)
        except asyncio.IncompleteReadError as error:
            raise await self._closed_error("hg command server exited") from error
        except ConnectionResetError as error:
            raise await self._closed_error("hg command server output closed") from error

        return header + payload

    async def close(self, timeout: float = 2.0) -> None:
        """Close the command server's input and wait for it to exit.

        Safe to call multiple times.
        """
        process = self._process
        if process is None:
            return
        self._process = None

        if process.stdin is not None and not process.stdin.is_closing():
            process.stdin.close()

        if process.returncode is None:
            try:
                await asyncio.wait_for(process.wait(), timeout=timeout)
            except asyncio.TimeoutError:
                logger.warning(
                    "hg command server did not exit, killing it",
                    extra={"hg_pid": process.pid},
                )
                with contextlib.suppress(ProcessLookupError):
                    process.kill()
                await process.wait()

        self._returncode = process.returncode
        logger.debug(
            "hg command server stopped",
            extra={"hg_pid": process.pid, "hg_returncode": process.returncode},
        )

        if self._stderr_task is not None:
            self._stderr_task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await self._stderr_task
            self._stderr_task = None

    def _require_process(self) -> asyncio.subprocess.Process:
        if self._process is None:
            message = "hg command server is not running"
            raise exc.TransportClosed(message=message)
        return self._process

    async def _closed_error(self, message: str) -> exc.TransportClosed:
        process = self._process
        returncode: int | None = None
        if process is not None:
            with contextlib.suppress(asyncio.TimeoutError):
                returncode = await asyncio.wait_for(process.wait(), timeout=0.5)

        error = exc.TransportClosed(message=f"{message} (exit code {returncode!r})")
        for stderr_line in self._stderr_buffer:
            _add_note(error, f"stderr: {stderr_line}")
        logger.warning(message, extra={"hg_returncode": returncode})
        return error

    async def _drain_stderr(self, process: asyncio.subprocess.Process) -> None:
        stderr = process.stderr
        if stderr is None:
            return
        while True:
            chunk = await stderr.readline()
            if not chunk:
                break
            text = chunk.decode(self._encoding, errors="backslashreplace").rstrip("\n")
            self._stderr_buffer.append(text)
            logger.debug("hg command server stderr", extra={"hg_stderr": text})


def _is_input_request(tag: bytes) -> bool:
    try:
        return Channel(tag.decode("latin-1")) in INPUT_CHANNELS
    except ValueError:
        return False


__all__ = ["HgProcess"]
