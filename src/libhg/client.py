"""Client for the Mercurial command server.

libhg.client
~~~~~~~~~~~~

One :class:`CommandServer` owns one ``hg serve --cmdserver pipe`` process.
Commands issued concurrently are queued and exchanged with the process one at
a time, in the order they were issued.
"""

from __future__ import annotations

import asyncio
import contextlib
import dataclasses
import enum
import logging
import sys
import typing as t
from collections import deque

from libhg import exc
from libhg._internal.handshake import read_hello
from libhg._internal.process import HgProcess
from libhg._internal.protocol import (
    InputRequestMessage,
    OutputMessage,
    ResultMessage,
    encode_input,
    encode_runcommand,
    is_password_prompt,
    last_line,
    parse_messages,
    prompt_from_output,
)
from libhg.common import ensure_directory, trim_trailing_newline
from libhg.constants import ENCODING, Channel

if t.TYPE_CHECKING:
    import pathlib
    from types import TracebackType

    from libhg._internal.handshake import HelloInfo
    from libhg._types import OutputReceiver, PromptHandler, Transport

    if sys.version_info >= (3, 11):
        from typing import Self
    else:
        from typing_extensions import Self

logger = logging.getLogger(__name__)


class ClientState(enum.Enum):
    """Lifecycle of a :class:`CommandServer`."""

    UNSTARTED = enum.auto()
    HANDSHAKING = enum.auto()
    IDLE = enum.auto()
    EXECUTING = enum.auto()
    BROKEN = enum.auto()  # handshake failed, every command is rejected
    TERMINATED = enum.auto()


@dataclasses.dataclass
class ScheduledCommand:
    """A caller's command waiting for, or in, its exchange."""

    command: str
    args: tuple[str, ...]
    future: asyncio.Future[str]


class CommandServer:
    r"""Run hg commands through a long-lived command server process.

    Parameters
    ----------
    hg_path : str, optional
        hg executable. Default: ``hg`` from ``PATH``
    directory : str, optional
        Repository directory, passed as ``--cwd`` to every command.
    output_receiver : callable, optional
        ``(channel, text)`` sink for all output and the command echo line.
    prompt_handler : callable, optional
        ``async (prompt, is_secret) -> answer`` used when hg asks for input.
    env : dict, optional
        Extra environment variables for the hg process.
    command_timeout : float, optional
        Seconds to wait for each frame from hg. Default: wait forever
    transport : Transport, optional
        Byte stream to use instead of spawning hg.

    Examples
    --------
    >>> import asyncio
    >>> from libhg.testing import MockTransport, output, result
    >>> transport = MockTransport(script={
    ...     ("root",): [output("/repo/path\n"), result(0)],
    ... })
    >>> async def find_root() -> str:
    ...     async with CommandServer(transport=transport) as hg:
    ...         return await hg.root()
    >>> asyncio.run(find_root())
    '/repo/path'
    """

    def __init__(
        self,
        hg_path: str | None = None,
        *,
        directory: str | None = None,
        output_receiver: OutputReceiver | None = None,
        prompt_handler: PromptHandler | None = None,
        env: dict[str, str] | None = None,
        command_timeout: float | None = None,
        transport: Transport | None = None,
    ) -> None:
        self.directory = directory
        self.output_receiver = output_receiver
        self.prompt_handler = prompt_handler
        self.command_timeout = command_timeout
        self.encoding = ENCODING
        self.hello: HelloInfo | None = None

        if transport is None:
            transport = HgProcess(hg_path, env=env, encoding=self.encoding)
        self._transport = transport

        self._state = ClientState.UNSTARTED
        self._queue: deque[ScheduledCommand] = deque()
        self._busy = False
        self._current: ScheduledCommand | None = None
        self._worker: asyncio.Task[None] | None = None
        self._handshake_task: asyncio.Task[HelloInfo] | None = None

    def __repr__(self) -> str:
        return (
            f"{self.__class__.__name__}(directory={self.directory!r}, "
            f"state={self._state.name}, queued={len(self._queue)})"
        )

    @property
    def state(self) -> ClientState:
        """Current lifecycle state."""
        return self._state

    @property
    def busy(self) -> bool:
        """True while a command exchange is in flight."""
        return self._busy

    # Lifecycle ---------------------------------------------------------
    async def __aenter__(self) -> Self:
        """Enter the async context manager, performing the handshake."""
        await self.start()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_value: BaseException | None,
        tb: TracebackType | None,
    ) -> None:
        """Exit the async context manager, stopping the command server."""
        await self.stop()

    async def start(self) -> HelloInfo:
        """Start hg and complete the handshake, once per client.

        Commands do this on first use; calling it up front surfaces
        configuration problems early.
        """
        return await self._ensure_started(command=None)

    async def stop(self) -> None:
        """Stop the command server.

        Queued commands and the command in flight are rejected with
        :exc:`~libhg.exc.ClientDisposed`. Safe to call multiple times.
        """
        if self._state is ClientState.TERMINATED:
            return
        self._state = ClientState.TERMINATED

        while self._queue:
            self._reject(self._queue.popleft(), exc.ClientDisposed)

        current = self._current
        for task in (self._worker, self._handshake_task):
            if task is not None and not task.done():
                task.cancel()
                with contextlib.suppress(asyncio.CancelledError):
                    await task
        if current is not None:
            self._reject(current, exc.ClientDisposed)

        await self._transport.close()
        logger.debug("command server client stopped")

    # Command API -------------------------------------------------------
    async def execute(self, command: str, *args: str) -> str:
        """Run ``hg <command> <args>`` and return its output channel text.

        Raises
        ------
        :exc:`~libhg.exc.CommandError`
            hg finished with a non-zero return code.
        :exc:`~libhg.exc.TransportError`
            The process failed, the handshake failed or the client stopped.
        :exc:`~libhg.exc.ProtocolError`
            hg sent a malformed frame.
        """
        if self._state is ClientState.TERMINATED:
            raise exc.ClientDisposed(command=command)

        loop = asyncio.get_running_loop()
        scheduled = ScheduledCommand(
            command=command,
            args=tuple(args),
            future=loop.create_future(),
        )
        self._queue.append(scheduled)

        if not self._busy:
            self._busy = True
            self._worker = asyncio.create_task(
                self._run_queue(),
                name="hg-cmdserver-dispatch",
            )

        return await scheduled.future

    async def clone(self, url: str, dest: str | pathlib.Path | None = None) -> None:
        """Clone *url*, into *dest* if given (created with its parents)."""
        if dest is not None:
            ensure_directory(dest)
            await self.execute("clone", url, str(dest))
        else:
            await self.execute("clone", url)

    async def init(self) -> None:
        """Create a repository in :attr:`directory`."""
        await self.execute("init")

    async def status(self) -> str:
        """Return ``hg status`` output."""
        return await self.execute("status")

    async def root(self) -> str:
        """Return the repository root."""
        return trim_trailing_newline(await self.execute("root"))

    async def cat(self, path: str) -> str:
        """Return the contents of *path* at the working directory parent."""
        return await self.execute("cat", path)

    async def identify(self) -> str:
        """Return the working directory's identification summary."""
        return trim_trailing_newline(await self.execute("identify"))

    async def commit(self, message: str) -> None:
        """Commit outstanding changes with *message*."""
        await self.execute("commit", "-m", message)

    async def add(self, *paths: str) -> None:
        """Schedule *paths* for addition (everything if none given)."""
        await self.execute("add", *paths)

    async def forget(self, *paths: str) -> None:
        """Stop tracking *paths* without deleting them."""
        await self.execute("forget", *paths)

    # Dispatch ----------------------------------------------------------
    async def _run_queue(self) -> None:
        try:
            while self._queue:
                scheduled = self._queue.popleft()
                if scheduled.future.done():
                    # caller was cancelled before its turn
                    continue

                self._current = scheduled
                try:
                    stdout = await self._run_command(scheduled)
                except exc.HgError as error:
                    self._fail(scheduled, error)
                except Exception as error:
                    logger.exception(
                        "unexpected error in hg command exchange",
                        extra={"hg_command": scheduled.command},
                    )
                    self._fail(
                        scheduled,
                        exc.HgError(command=scheduled.command, cause=error),
                    )
                else:
                    if not scheduled.future.done():
                        scheduled.future.set_result(stdout)
                finally:
                    self._current = None
                    if self._state is ClientState.EXECUTING:
                        self._state = ClientState.IDLE
        finally:
            self._busy = False

    async def _run_command(self, scheduled: ScheduledCommand) -> str:
        command = scheduled.command
        await self._ensure_started(command=command)
        self._state = ClientState.EXECUTING

        args = list(scheduled.args)
        directory = self.directory
        if directory:
            args = ["--cwd", directory, *args]
        argv = [command, *args]

        self._emit(None, f"\nhg {' '.join(argv)}\n")
        logger.debug("dispatching hg command", extra={"hg_argv": argv})
        await self._write(command, encode_runcommand(argv, self.encoding))

        return await self._exchange(command)

    async def _exchange(self, command: str) -> str:
        stdout: list[str] = []
        output = ""
        prompt_error: BaseException | None = None

        while True:
            chunk = await self._read(command)
            try:
                messages = parse_messages(chunk, self.encoding)
            except exc.ProtocolError as error:
                error.command = command
                logger.error(
                    "hg command server protocol error",
                    extra={"hg_command": command, "hg_error": error.message},
                )
                # frames still owed to this command would be read as the next
                # command's reply
                with contextlib.suppress(exc.LibHgException, OSError):
                    await self._transport.close()
                raise

            for message in messages:
                if isinstance(message, OutputMessage):
                    self._emit(message.channel, message.text)
                    if message.channel is Channel.OUTPUT:
                        stdout.append(message.text)
                    if message.channel is not Channel.DEBUG:
                        output += message.text
                elif isinstance(message, InputRequestMessage):
                    try:
                        output += await self._answer_prompt(command, output)
                    except _PromptFailed as failed:
                        prompt_error = failed.cause
                        output += "\n"
                elif isinstance(message, ResultMessage):
                    return self._finish(command, message, stdout, output, prompt_error)
                else:
                    msg = f"message is of unknown type {type(message).__name__}"
                    raise exc.ProtocolError(command=command, message=msg)

    def _finish(
        self,
        command: str,
        message: ResultMessage,
        stdout: list[str],
        output: str,
        prompt_error: BaseException | None,
    ) -> str:
        logger.debug(
            "hg command finished",
            extra={"hg_command": command, "hg_returncode": message.returncode},
        )
        if prompt_error is not None:
            raise exc.HgError(command=command, cause=prompt_error) from prompt_error
        if message.returncode != 0:
            raise exc.CommandError(
                command=command,
                returncode=message.returncode,
                message=last_line(output),
            )
        return "".join(stdout)

    async def _answer_prompt(self, command: str, output: str) -> str:
        prompt = prompt_from_output(output)
        secret = is_password_prompt(prompt)
        failure: BaseException | None = None

        if self.prompt_handler is None:
            logger.warning(
                "hg requested input but no prompt handler is set",
                extra={"hg_command": command, "hg_prompt": prompt},
            )
            answer = ""
        else:
            try:
                answer = await self.prompt_handler(prompt, secret) or ""
            except Exception as error:
                # hg is still blocked on input, answer it before failing
                logger.exception(
                    "prompt handler failed",
                    extra={"hg_command": command, "hg_prompt": prompt},
                )
                answer = ""
                failure = error

        answer = answer.replace("\n", "") + "\n"
        await self._write(command, encode_input(answer, self.encoding))
        self._emit(None, "\n" if secret else answer)

        if failure is not None:
            raise _PromptFailed(failure)
        return "\n"

    # Handshake ---------------------------------------------------------
    async def _ensure_started(self, command: str | None) -> HelloInfo:
        if self._handshake_task is None:
            self._handshake_task = asyncio.create_task(
                self._handshake(),
                name="hg-cmdserver-handshake",
            )

        try:
            return await asyncio.shield(self._handshake_task)
        except exc.HandshakeError as error:
            if command is None:
                raise
            raise exc.HandshakeError(
                command=command,
                message=error.message,
            ) from error

    async def _handshake(self) -> HelloInfo:
        self._state = ClientState.HANDSHAKING
        try:
            await self._transport.start()
            chunk = await self._read("hello")
            hello = read_hello(parse_messages(chunk, self.encoding), encoding=self.encoding)
        except (exc.LibHgException, OSError) as error:
            self._state = ClientState.BROKEN
            logger.error(
                "hg command server handshake failed",
                extra={"hg_error": str(error)},
            )
            with contextlib.suppress(exc.LibHgException, OSError):
                await self._transport.close()
            if isinstance(error, exc.HandshakeError):
                raise
            raise exc.HandshakeError(command="hello", cause=error) from error

        self.hello = hello
        self._state = ClientState.IDLE
        return hello

    # I/O ---------------------------------------------------------------
    async def _read(self, command: str) -> bytes:
        try:
            if self.command_timeout is None:
                return await self._transport.read_chunk()
            return await asyncio.wait_for(
                self._transport.read_chunk(),
                timeout=self.command_timeout,
            )
        except asyncio.TimeoutError as error:
            # the stream is out of step now, it cannot serve further commands
            await self._transport.close()
            message = f"hg {command} timed out after {self.command_timeout}s"
            raise exc.OperationTimeout(command=command, message=message) from error
        except exc.HgError as error:
            if error.command is None:
                error.command = command
            raise

    async def _write(self, command: str, data: bytes) -> None:
        try:
            await self._transport.write(data)
        except exc.HgError as error:
            if error.command is None:
                error.command = command
            raise

    def _emit(self, channel: Channel | None, text: str) -> None:
        if self.output_receiver is None:
            return
        try:
            self.output_receiver(channel, text)
        except Exception:
            logger.exception("output receiver failed")

    def _fail(self, scheduled: ScheduledCommand, error: exc.HgError) -> None:
        if isinstance(error, exc.CommandError):
            logger.debug(
                "hg command failed",
                extra={"hg_command": error.command, "hg_returncode": error.returncode},
            )
        else:
            logger.warning(
                "hg command exchange failed",
                extra={"hg_command": scheduled.command, "hg_error": error.message},
            )
        if not scheduled.future.done():
            scheduled.future.set_exception(error)

    def _reject(
        self,
        scheduled: ScheduledCommand,
        error_cls: type[exc.ClientDisposed],
    ) -> None:
        if not scheduled.future.done():
            scheduled.future.set_exception(error_cls(command=scheduled.command))


class _PromptFailed(Exception):
    """Prompt handler raised after hg's input request was answered."""

    def __init__(self, cause: BaseException) -> None:
        super().__init__(str(cause))
        self.cause = cause


__all__ = ["ClientState", "CommandServer", "ScheduledCommand"]
