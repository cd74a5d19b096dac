"""Shared typed structures for the libhg API."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import Optional, Protocol, runtime_checkable

from .constants import Channel

OutputReceiver = Callable[[Optional[Channel], str], None]
"""Receives every unit of output; ``None`` marks the command echo line."""

PromptHandler = Callable[[str, bool], Awaitable[Optional[str]]]
"""Answers an input request given the prompt text and whether it is secret."""


@runtime_checkable
class Transport(Protocol):
    """Byte stream pair connected to a command server."""

    async def start(self) -> None: ...

    async def write(self, data: bytes) -> None: ...

    async def read_chunk(self) -> bytes: ...

    async def close(self) -> None: ...


__all__ = ["OutputReceiver", "PromptHandler", "Transport"]
