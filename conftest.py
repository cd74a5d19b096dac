"""Conftest.py (root-level).

We keep this in root so pytest fixtures are available to pytest's doctest
plugin, and so conftest.py is not included in the wheel.
"""

from __future__ import annotations

import asyncio
import typing as t

import pytest
from _pytest.doctest import DoctestItem

from libhg.client import CommandServer
from libhg.testing import MockTransport


@pytest.fixture(autouse=True)
def add_doctest_fixtures(
    request: pytest.FixtureRequest,
    doctest_namespace: dict[str, t.Any],
) -> None:
    """Configure doctest fixtures for pytest-doctest."""
    if isinstance(request._pyfuncitem, DoctestItem):
        doctest_namespace["asyncio"] = asyncio
        doctest_namespace["CommandServer"] = CommandServer
        doctest_namespace["MockTransport"] = MockTransport


@pytest.fixture(autouse=True)
def set_home(
    monkeypatch: pytest.MonkeyPatch,
    tmp_path_factory: pytest.TempPathFactory,
) -> None:
    """Keep hg from reading the developer's ``~/.hgrc``."""
    monkeypatch.setenv("HOME", str(tmp_path_factory.mktemp("home")))
    monkeypatch.setenv("HGRCPATH", "")
