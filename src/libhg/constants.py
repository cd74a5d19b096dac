"""Constant variables for libhg."""

from __future__ import annotations

import enum
import struct

ENCODING = "UTF-8"
"""Text encoding negotiated with the command server."""

RUNCOMMAND = "runcommand"
"""Capability (and control line) used to run a command."""

SERVER_ARGS: tuple[str, ...] = (
    "--config",
    "ui.interactive=yes",
    "serve",
    "--cmdserver",
    "pipe",
)
"""Arguments that put ``hg`` into pipe-mode command server operation."""


class Channel(enum.Enum):
    """Channel of a command server frame, keyed by its tag byte."""

    OUTPUT = "o"
    ERROR = "e"
    DEBUG = "d"
    RESULT = "r"
    INPUT = "I"
    LINE = "L"


OUTPUT_CHANNELS = frozenset({Channel.OUTPUT, Channel.ERROR, Channel.DEBUG})
INPUT_CHANNELS = frozenset({Channel.INPUT, Channel.LINE})

#: Frame header: 1-byte channel tag, 4-byte big-endian unsigned length.
HEADER = struct.Struct(">cI")
#: Big-endian unsigned length prefix / result code.
UINT32 = struct.Struct(">I")
