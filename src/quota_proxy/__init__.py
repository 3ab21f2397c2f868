"""Quota Proxy - pooled upstream credentials with per-model quota tracking."""

from ._version import __version__


__all__ = ["__version__"]
