"""Command server wire format.

Frames sent by the server are a 1-byte channel tag, a 4-byte big-endian
unsigned length and, for the text and result channels, that many payload
bytes. Input and line requests carry no payload; their length is the amount
of input the server is waiting for.

Frames sent to the server are either a ``runcommand`` control line followed by
a length-prefixed, NUL-joined argument list, or a length-prefixed answer to an
input request.
"""

from __future__ import annotations

import dataclasses
import logging
import typing as t

from libhg import exc
from libhg.constants import (
    ENCODING,
    HEADER,
    INPUT_CHANNELS,
    OUTPUT_CHANNELS,
    RUNCOMMAND,
    UINT32,
    Channel,
)

logger = logging.getLogger(__name__)

PASSWORD_PROMPT = "password"


@dataclasses.dataclass(frozen=True)
class OutputMessage:
    """Text written by hg on the output, error or debug channel."""

    channel: Channel
    text: str


@dataclasses.dataclass(frozen=True)
class ResultMessage:
    """Terminal status of the command being executed."""

    returncode: int


@dataclasses.dataclass(frozen=True)
class InputRequestMessage:
    """hg is blocked until *length* bytes (or a line) of input arrive."""

    length: int
    channel: Channel = Channel.INPUT


Message = t.Union[OutputMessage, ResultMessage, InputRequestMessage]


def parse_messages(data: bytes, encoding: str = ENCODING) -> list[Message]:
    r"""Decode a buffer of whole frames into messages.

    Parameters
    ----------
    data : bytes
        Zero or more complete frames.
    encoding : str
        Encoding of text payloads.

    Returns
    -------
    list[Message]
        Messages in the order hg emitted them.

    Raises
    ------
    :exc:`~libhg.exc.ProtocolError`
        Unknown channel tag, result payload other than 4 bytes, or a frame
        running past the end of *data*.

    Examples
    --------
    >>> parse_messages(b"o\x00\x00\x00\x02hir\x00\x00\x00\x04\x00\x00\x00\x00")
    [OutputMessage(channel=<Channel.OUTPUT: 'o'>, text='hi'), ResultMessage(returncode=0)]

    >>> parse_messages(b"L\x00\x00\x10\x00")
    [InputRequestMessage(length=4096, channel=<Channel.LINE: 'L'>)]

    >>> parse_messages(b"")
    []
    """
    messages: list[Message] = []
    view = memoryview(data)
    pos = 0

    while pos < len(view):
        if len(view) - pos < HEADER.size:
            msg = f"truncated frame header at offset {pos}"
            raise exc.ProtocolError(message=msg)

        tag, length = HEADER.unpack_from(view, pos)
        pos += HEADER.size

        try:
            channel = Channel(tag.decode("latin-1"))
        except ValueError:
            msg = f"unknown channel type: {tag!r}"
            raise exc.ProtocolError(message=msg) from None

        if channel in INPUT_CHANNELS:
            messages.append(InputRequestMessage(length=length, channel=channel))
            continue

        if len(view) - pos < length:
            msg = (
                f"truncated {channel.name.lower()} frame: expected {length} bytes, "
                f"got {len(view) - pos}"
            )
            raise exc.ProtocolError(message=msg)

        payload = bytes(view[pos : pos + length])
        pos += length

        if channel in OUTPUT_CHANNELS:
            text = payload.decode(encoding, errors="backslashreplace")
            messages.append(OutputMessage(channel=channel, text=text))
        else:
            if length != UINT32.size:
                msg = (
                    f"expected data length {UINT32.size} for a result message, "
                    f"but was {length}"
                )
                raise exc.ProtocolError(message=msg)
            (returncode,) = UINT32.unpack(payload)
            messages.append(ResultMessage(returncode=returncode))

    return messages


def encode_message(message: Message, encoding: str = ENCODING) -> bytes:
    r"""Encode *message* the way the command server writes it.

    Inverse of :func:`parse_messages`, used to script fake servers.

    Examples
    --------
    >>> encode_message(ResultMessage(returncode=1))
    b'r\x00\x00\x00\x04\x00\x00\x00\x01'

    >>> encode_message(InputRequestMessage(length=4096))
    b'I\x00\x00\x10\x00'
    """
    if isinstance(message, OutputMessage):
        payload = message.text.encode(encoding)
        return HEADER.pack(message.channel.value.encode(), len(payload)) + payload
    if isinstance(message, ResultMessage):
        payload = UINT32.pack(message.returncode)
        return HEADER.pack(Channel.RESULT.value.encode(), len(payload)) + payload
    if isinstance(message, InputRequestMessage):
        return HEADER.pack(message.channel.value.encode(), message.length)
    msg = f"message is of unknown type {type(message).__name__}"
    raise exc.ProtocolError(message=msg)


def encode_runcommand(argv: t.Sequence[str], encoding: str = ENCODING) -> bytes:
    r"""Encode a ``runcommand`` request for *argv*.

    Examples
    --------
    >>> encode_runcommand(["log", "-l", "1"])
    b'runcommand\n\x00\x00\x00\x08log\x00-l\x001'

    >>> encode_runcommand(["root"])
    b'runcommand\n\x00\x00\x00\x04root'
    """
    payload = "\0".join(argv).encode(encoding)
    return f"{RUNCOMMAND}\n".encode(encoding) + UINT32.pack(len(payload)) + payload


def encode_input(text: str, encoding: str = ENCODING) -> bytes:
    r"""Encode an answer to an input request.

    Input always flows in one format, so there is no channel tag.

    Examples
    --------
    >>> encode_input("yes\n")
    b'\x00\x00\x00\x04yes\n'
    """
    data = text.encode(encoding)
    return UINT32.pack(len(data)) + data


def last_line(output: str) -> str:
    r"""Return the last line of *output*, ignoring one trailing newline.

    Examples
    --------
    >>> last_line("a\nb\n")
    'b'
    >>> last_line("a\nb")
    'b'
    >>> last_line("onlyline")
    'onlyline'
    >>> last_line("")
    ''
    """
    if output.endswith("\n"):
        output = output[:-1]
    return output.rpartition("\n")[2]


def prompt_from_output(output: str) -> str:
    r"""Derive the prompt hg is showing from its recent output.

    Examples
    --------
    >>> prompt_from_output("http authorization required\nPassword: ")
    'Password'
    >>> prompt_from_output("user:")
    'user'
    """
    prompt = last_line(output).strip()
    if prompt.endswith(":"):
        prompt = prompt[:-1]
    return prompt


def is_password_prompt(prompt: str) -> bool:
    """Return True if *prompt* asks for a password.

    Case is ignored so that both ``password:`` and ``Password:`` prompts are
    treated as secret.

    Examples
    --------
    >>> is_password_prompt("password")
    True
    >>> is_password_prompt("Password")
    True
    >>> is_password_prompt("Username")
    False
    """
    return prompt.lower() == PASSWORD_PROMPT
