"""Playarr version as recorded in the installed distribution's metadata."""

from importlib.metadata import PackageNotFoundError, version

try:
    __version__ = version("playarr")
except PackageNotFoundError:
    # running from a checkout that was never installed
    __version__ = "0.0.0-dev"
