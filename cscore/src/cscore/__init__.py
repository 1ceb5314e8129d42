"""
cscore - Core library for Coinswap NG components

Provides shared network types, Bitcoin script helpers and settings.
"""

from cscore.models import NetworkType
from cscore.version import __version__

__all__ = [
    "NetworkType",
    "__version__",
]
