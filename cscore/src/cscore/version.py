"""
Centralized version management for Coinswap NG.

This is the single source of truth for the project version.
All components inherit their version from here.
"""

from __future__ import annotations

# Format: MAJOR.MINOR.PATCH (Semantic Versioning)
__version__ = "0.3.0"


def get_version() -> str:
    """Return the current version string."""
    return __version__
