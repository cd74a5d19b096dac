"""libhg, an asyncio client for the Mercurial command server."""

from .__about__ import (
    __author__,
    __copyright__,
    __description__,
    __email__,
    __license__,
    __package_name__,
    __title__,
    __version__,
)
from .client import ClientState, CommandServer
from .constants import Channel
from .exc import (
    ClientDisposed,
    CommandError,
    HandshakeError,
    HgError,
    OperationTimeout,
    ProtocolError,
    TransportClosed,
    TransportError,
)

__all__ = (
    "Channel",
    "ClientDisposed",
    "ClientState",
    "CommandError",
    "CommandServer",
    "HandshakeError",
    "HgError",
    "OperationTimeout",
    "ProtocolError",
    "TransportClosed",
    "TransportError",
    "__author__",
    "__copyright__",
    "__description__",
    "__email__",
    "__license__",
    "__package_name__",
    "__title__",
    "__version__",
)
