"""Fixtures for libhg tests."""

from __future__ import annotations

import dataclasses
import pathlib
import stat
import sys
import typing as t

import pytest

if t.TYPE_CHECKING:
    from libhg.constants import Channel

FAKE_HG = pathlib.Path(__file__).parent / "fake_hg.py"


@dataclasses.dataclass
class OutputRecorder:
    """Output receiver that keeps everything it was given."""

    entries: list[tuple[Channel | None, str]] = dataclasses.field(default_factory=list)

    def __call__(self, channel: Channel | None, text: str) -> None:
        self.entries.append((channel, text))

    @property
    def text(self) -> str:
        """All received text, echo lines included."""
        return "".join(text for _, text in self.entries)


@pytest.fixture
def recorder() -> OutputRecorder:
    """Return a fresh :class:`OutputRecorder`."""
    return OutputRecorder()


@pytest.fixture
def fake_hg(tmp_path: pathlib.Path) -> pathlib.Path:
    """Executable that speaks the command server protocol, for process tests."""
    if sys.platform == "win32":
        pytest.skip("fake hg executable needs a POSIX shell")

    script = tmp_path / "bin" / "hg"
    script.parent.mkdir()
    script.write_text(
        f'#!/bin/sh\nexec "{sys.executable}" "{FAKE_HG}" "$@"\n',
        encoding="utf-8",
    )
    script.chmod(script.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return script
