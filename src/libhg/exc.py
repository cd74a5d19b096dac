"""Provide exceptions used by libhg.

libhg.exc
~~~~~~~~~

Every failure of a command exchange is an :exc:`HgError`. It always names the
command that was executing and carries a human readable message. Command
failures also carry the backend's return code; transport failures usually
carry the underlying cause.

Notes
-----
Callers that only care about the kind of failure can catch the subclasses:

- :exc:`TransportError` for process level problems (launch failures, early
  exits, broken pipes, failed handshakes, timeouts, disposal)
- :exc:`ProtocolError` for malformed frames
- :exc:`CommandError` for non-zero return codes
"""

from __future__ import annotations


class LibHgException(Exception):
    """Base exception for all libhg errors."""


class HgCommandNotFound(LibHgException):
    """Raised when the hg executable cannot be found on the system."""

    def __init__(self, hg_path: str | None = None, *args: object) -> None:
        msg = "hg executable not found in PATH"
        if hg_path is not None:
            msg = f"hg executable not found: {hg_path}"
        super().__init__(msg)


class HgError(LibHgException):
    """Failure of a single command exchange with the command server.

    Parameters
    ----------
    command : str, optional
        Name of the command that was executing.
    message : str, optional
        Explicit message, used when *cause* has none.
    returncode : int, optional
        Return code reported by hg; only set for command failures.
    cause : BaseException, optional
        Underlying error, its message takes precedence.

    Examples
    --------
    >>> str(HgError(command="status"))
    'hg status error'

    >>> str(HgError(command="status", message="abort: no repository found"))
    'abort: no repository found'

    >>> err = HgError(command="pull", cause=OSError("broken pipe"))
    >>> err.message, err.returncode
    ('broken pipe', None)
    """

    def __init__(
        self,
        *,
        command: str | None = None,
        message: str | None = None,
        returncode: int | None = None,
        cause: BaseException | None = None,
    ) -> None:
        self.command = command
        self.returncode = returncode
        self.cause = cause

        if cause is not None and str(cause):
            resolved = str(cause)
        elif message:
            resolved = message
        else:
            resolved = f"hg {command} error"
        self.message = resolved
        super().__init__(resolved)


class TransportError(HgError):
    """Process level failure while talking to the command server."""


class TransportClosed(TransportError):
    """Raised when the command server process is gone or its pipes closed."""


class HandshakeError(TransportError):
    """Raised when the command server hello is missing or unacceptable."""


class OperationTimeout(TransportError):
    """Raised when the command server does not answer in time."""


class ClientDisposed(TransportError):
    """Raised for commands still pending when the client is stopped."""

    def __init__(
        self,
        *,
        command: str | None = None,
        message: str = "command server client was stopped",
    ) -> None:
        super().__init__(command=command, message=message)


class ProtocolError(HgError):
    """Raised when command server frames cannot be parsed."""


class CommandError(HgError):
    """Raised when hg finishes a command with a non-zero return code."""

    returncode: int

    def __init__(
        self,
        *,
        command: str | None = None,
        returncode: int,
        message: str | None = None,
    ) -> None:
        super().__init__(command=command, message=message, returncode=returncode)


__all__ = sorted(
    {
        "ClientDisposed",
        "CommandError",
        "HandshakeError",
        "HgCommandNotFound",
        "HgError",
        "LibHgException",
        "OperationTimeout",
        "ProtocolError",
        "TransportClosed",
        "TransportError",
    }
)
