# src/__init__.py — v1
"""checkout_ledger — tamper-evident checkout pipeline tracking."""

from checkout_ledger.version import __version__

__all__ = ["__version__"]
