"""Reusable libraries shared by the Nami applications."""

from . import render_log

__version__ = "0.1.0"

__all__ = ["__version__", "render_log"]
