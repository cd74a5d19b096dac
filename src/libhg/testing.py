"""Testing helpers for libhg.

Build command server frames and script an in-memory transport, so the client
can be exercised without an hg installation.
"""

from __future__ import annotations

import asyncio
import typing as t
from collections.abc import Iterable, Mapping, Sequence

from libhg import exc
from libhg._internal.protocol import (
    InputRequestMessage,
    OutputMessage,
    ResultMessage,
    encode_message,
)
from libhg.constants import ENCODING, RUNCOMMAND, UINT32, Channel

from ._types import Transport

ScriptStep = t.Union[bytes, BaseException]


def output(text: str, channel: Channel = Channel.OUTPUT) -> bytes:
    r"""Return an output, error or debug frame carrying *text*.

    >>> output("hi")
    b'o\x00\x00\x00\x02hi'
    """
    return encode_message(OutputMessage(channel=channel, text=text))


def error(text: str) -> bytes:
    """Return an error channel frame carrying *text*."""
    return output(text, Channel.ERROR)


def debug(text: str) -> bytes:
    """Return a debug channel frame carrying *text*."""
    return output(text, Channel.DEBUG)


def result(returncode: int = 0) -> bytes:
    r"""Return a result frame.

    >>> result(255)
    b'r\x00\x00\x00\x04\x00\x00\x00\xff'
    """
    return encode_message(ResultMessage(returncode=returncode))


def input_request(length: int = 4096, channel: Channel = Channel.LINE) -> bytes:
    r"""Return an input (or line) request frame.

    >>> input_request(4096)
    b'L\x00\x00\x10\x00'
    """
    return encode_message(InputRequestMessage(length=length, channel=channel))


def hello(
    capabilities: Iterable[str] = ("getencoding", RUNCOMMAND),
    encoding: str = ENCODING,
    pid: int | None = 4242,
) -> bytes:
    """Return the hello frame a command server sends on startup."""
    lines = [f"capabilities: {' '.join(capabilities)}", f"encoding: {encoding}"]
    if pid is not None:
        lines.append(f"pid: {pid}")
    return output("\n".join(lines))


def decode_runcommand(data: bytes, encoding: str = ENCODING) -> tuple[str, ...]:
    r"""Return the argv of an encoded ``runcommand`` request.

    >>> decode_runcommand(b"runcommand\n\x00\x00\x00\x08log\x00-l\x001")
    ('log', '-l', '1')
    """
    control = f"{RUNCOMMAND}\n".encode(encoding)
    if not data.startswith(control):
        msg = f"not a runcommand request: {data!r}"
        raise ValueError(msg)
    body = data[len(control) :]
    (length,) = UINT32.unpack_from(body)
    payload = body[UINT32.size : UINT32.size + length]
    return tuple(payload.decode(encoding).split("\0"))


def decode_input(data: bytes, encoding: str = ENCODING) -> str:
    r"""Return the text of an encoded input answer.

    >>> decode_input(b"\x00\x00\x00\x04yes\n")
    'yes\n'
    """
    (length,) = UINT32.unpack_from(data)
    return data[UINT32.size : UINT32.size + length].decode(encoding)


class MockTransport(Transport):
    r"""In-memory command server used in doctests and unit tests.

    Each ``runcommand`` request is looked up in *script* by its argv and the
    scripted steps are queued for reading: ``bytes`` are returned as one
    chunk, exceptions are raised from :meth:`read_chunk`. Unscripted commands
    succeed with no output.

    >>> import asyncio
    >>> transport = MockTransport(script={("root",): [output("/r\n"), result(0)]})
    >>> async def roundtrip() -> list[bytes]:
    ...     await transport.start()
    ...     chunks = [await transport.read_chunk()]
    ...     await transport.write(b"runcommand\n\x00\x00\x00\x04root")
    ...     chunks.append(await transport.read_chunk())
    ...     return chunks
    >>> asyncio.run(roundtrip())[1]
    b'o\x00\x00\x00\x03/r\n'
    >>> transport.commands
    [('root',)]
    """

    def __init__(
        self,
        *,
        script: Mapping[tuple[str, ...], Sequence[ScriptStep]] | None = None,
        hello_frame: bytes | None = None,
        delays: Mapping[tuple[str, ...], float] | None = None,
    ) -> None:
        self._script = {key: list(steps) for key, steps in (script or {}).items()}
        self._delays = dict(delays or {})
        self._hello = hello_frame if hello_frame is not None else hello()
        self._chunks: asyncio.Queue[ScriptStep] = asyncio.Queue()
        self._started = False
        self._closed = False
        self.writes: list[bytes] = []
        self.commands: list[tuple[str, ...]] = []
        self.inputs: list[str] = []

    @property
    def closed(self) -> bool:
        """True once :meth:`close` was called."""
        return self._closed

    async def start(self) -> None:
        """Queue the hello frame."""
        if self._closed:
            message = "MockTransport is closed"
            raise exc.TransportClosed(message=message)
        if not self._started:
            self._started = True
            self._chunks.put_nowait(self._hello)

    async def write(self, data: bytes) -> None:
        """Record *data* and queue the scripted reply of a command."""
        self._require_open()
        self.writes.append(data)

        if not data.startswith(f"{RUNCOMMAND}\n".encode()):
            self.inputs.append(decode_input(data))
            return

        argv = decode_runcommand(data)
        self.commands.append(argv)
        delay = self._delays.get(argv, 0.0)
        if delay:
            await asyncio.sleep(delay)
        for step in self._script.get(argv, [result(0)]):
            self._chunks.put_nowait(step)

    async def read_chunk(self) -> bytes:
        """Return the next scripted chunk."""
        self._require_open()
        step = await self._chunks.get()
        if isinstance(step, BaseException):
            raise step
        return step

    async def close(self) -> None:
        """Close the transport; later reads and writes fail."""
        self._closed = True

    def _require_open(self) -> None:
        if self._closed:
            message = "MockTransport is closed"
            raise exc.TransportClosed(message=message)
        if not self._started:
            message = "MockTransport not started"
            raise exc.TransportClosed(message=message)


__all__ = [
    "MockTransport",
    "debug",
    "decode_input",
    "decode_runcommand",
    "error",
    "hello",
    "input_request",
    "output",
    "result",
]
