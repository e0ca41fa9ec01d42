"""Version information for the Nami render node monitor."""

NAMI_VERSION = "0.1.0"
__version__ = NAMI_VERSION
