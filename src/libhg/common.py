"""Helper functions for libhg.

libhg.common
~~~~~~~~~~~~

"""

from __future__ import annotations

import logging
import pathlib

logger = logging.getLogger(__name__)


def trim_trailing_newline(value: str) -> str:
    r"""Remove a single trailing newline from *value*.

    Examples
    --------
    >>> trim_trailing_newline("/repo/path\n")
    '/repo/path'
    >>> trim_trailing_newline("a\n\n")
    'a\n'
    >>> trim_trailing_newline("no newline")
    'no newline'
    """
    return value[:-1] if value.endswith("\n") else value


def ensure_directory(path: str | pathlib.Path) -> pathlib.Path:
    """Create *path* and its parents if needed.

    Raises
    ------
    FileExistsError
        If *path* exists and is not a directory.
    """
    directory = pathlib.Path(path)
    if directory.exists() and not directory.is_dir():
        msg = f"'{directory}' already exists and it isn't a directory"
        raise FileExistsError(msg)
    directory.mkdir(parents=True, exist_ok=True)
    logger.debug("ensured directory", extra={"hg_directory": str(directory)})
    return directory
