"""Nami - render node log statistics and status API."""

from .version import NAMI_VERSION, __version__  # noqa: F401

__all__ = ["NAMI_VERSION", "__version__"]
