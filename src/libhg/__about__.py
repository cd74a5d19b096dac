"""Metadata for libhg package."""

from __future__ import annotations

__title__ = "libhg"
__package_name__ = "libhg"
__version__ = "0.1.0"
__description__ = "asyncio client for the Mercurial command server"
__email__ = "libhg@users.noreply.github.com"
__author__ = "libhg contributors"
__github__ = "https://github.com/libhg/libhg"
__docs__ = "https://github.com/libhg/libhg#readme"
__tracker__ = "https://github.com/libhg/libhg/issues"
__pypi__ = "https://pypi.org/project/libhg/"
__license__ = "MIT"
__copyright__ = "Copyright 2026- libhg contributors"
