"""Tests for libhg's error model."""

from __future__ import annotations

from libhg import exc


def test_cause_message_wins() -> None:
    """The underlying cause's message takes precedence."""
    cause = BrokenPipeError("pipe closed")
    error = exc.TransportError(command="pull", message="ignored", cause=cause)

    assert error.message == "pipe closed"
    assert error.cause is cause
    assert error.returncode is None
    assert error.command == "pull"


def test_explicit_message() -> None:
    """An explicit message is used when there is no cause."""
    error = exc.HgError(command="push", message="abort: push creates new heads")
    assert str(error) == "abort: push creates new heads"


def test_fallback_message_names_command() -> None:
    """Without cause or message the command is named."""
    assert exc.HgError(command="status").message == "hg status error"


def test_empty_cause_message_falls_back() -> None:
    """A cause with an empty message does not blank the error."""
    error = exc.HgError(command="log", message="explicit", cause=OSError())
    assert error.message == "explicit"


def test_command_error_carries_returncode() -> None:
    """Command failures carry the return code."""
    error = exc.CommandError(command="commit", returncode=1, message="nothing changed")

    assert isinstance(error, exc.HgError)
    assert error.returncode == 1
    assert error.cause is None
    assert str(error) == "nothing changed"


def test_hierarchy() -> None:
    """Transport failures share one base class."""
    for error_cls in (
        exc.TransportClosed,
        exc.HandshakeError,
        exc.OperationTimeout,
        exc.ClientDisposed,
    ):
        assert issubclass(error_cls, exc.TransportError)
    assert not issubclass(exc.ProtocolError, exc.TransportError)
    assert issubclass(exc.HgCommandNotFound, exc.LibHgException)


def test_client_disposed_message() -> None:
    """Disposal errors explain themselves."""
    error = exc.ClientDisposed(command="status")
    assert error.message == "command server client was stopped"
    assert error.command == "status"


def test_package_exports_transport_errors() -> None:
    """Errors raised by the client are importable from the package root."""
    import libhg

    for name in (
        "ClientDisposed",
        "CommandError",
        "HandshakeError",
        "HgError",
        "OperationTimeout",
        "ProtocolError",
        "TransportClosed",
        "TransportError",
    ):
        assert getattr(libhg, name) is getattr(exc, name)
        assert name in libhg.__all__
