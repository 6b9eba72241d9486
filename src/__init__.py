# src/__init__.py — v1
"""partledger: split, fingerprint and publish oversized content as a resumable multi-part series."""

from partledger.version import __version__

__all__ = ["__version__"]
