"""Command server hello negotiation."""

from __future__ import annotations

import dataclasses
import logging
import typing as t

from libhg import exc
from libhg._internal.protocol import OutputMessage
from libhg.constants import ENCODING, RUNCOMMAND, Channel

if t.TYPE_CHECKING:
    from libhg._internal.protocol import Message

logger = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class HelloInfo:
    """Parsed hello message of a command server."""

    capabilities: tuple[str, ...]
    encoding: str
    pid: int | None = None
    pgid: int | None = None
    fields: dict[str, str] = dataclasses.field(default_factory=dict)


def parse_hello(text: str) -> dict[str, str]:
    r"""Parse ``key: value`` lines of a hello message.

    Examples
    --------
    >>> parse_hello("capabilities: getencoding runcommand\nencoding: UTF-8\n")
    {'capabilities': 'getencoding runcommand', 'encoding': 'UTF-8'}
    """
    fields: dict[str, str] = {}
    for line in text.splitlines():
        if not line:
            continue
        key, _, value = line.partition(": ")
        fields[key] = value
    return fields


def _optional_int(value: str | None) -> int | None:
    if value is None:
        return None
    try:
        return int(value)
    except ValueError:
        return None


def validate_hello(
    fields: t.Mapping[str, str],
    *,
    encoding: str = ENCODING,
) -> HelloInfo:
    """Check hello *fields* and return them as :class:`HelloInfo`.

    Raises
    ------
    :exc:`~libhg.exc.HandshakeError`
        Encoding differs from *encoding*, or ``runcommand`` is not among the
        server's capabilities.
    """
    server_encoding = fields.get("encoding")
    if server_encoding != encoding:
        msg = f"Expected encoding {encoding}, but found {server_encoding}"
        raise exc.HandshakeError(message=msg)

    if "capabilities" not in fields:
        msg = "command server did not announce its capabilities"
        raise exc.HandshakeError(message=msg)

    capabilities = tuple(fields["capabilities"].split())
    if RUNCOMMAND not in capabilities:
        msg = f"{RUNCOMMAND} capability not supported"
        raise exc.HandshakeError(message=msg)

    return HelloInfo(
        capabilities=capabilities,
        encoding=server_encoding,
        pid=_optional_int(fields.get("pid")),
        pgid=_optional_int(fields.get("pgid")),
        fields=dict(fields),
    )


def read_hello(
    messages: t.Sequence[Message],
    *,
    encoding: str = ENCODING,
) -> HelloInfo:
    """Validate the first message batch a command server sends."""
    if not messages:
        msg = "command server sent no hello message"
        raise exc.HandshakeError(message=msg)

    hello = messages[0]
    if not isinstance(hello, OutputMessage) or hello.channel is not Channel.OUTPUT:
        msg = f"expected hello on the output channel, got {hello!r}"
        raise exc.HandshakeError(message=msg)

    info = validate_hello(parse_hello(hello.text), encoding=encoding)
    logger.debug(
        "command server hello",
        extra={"hg_capabilities": info.capabilities, "hg_pid": info.pid},
    )
    return info
