"""
Shared path utilities for Coinswap NG data directories.
"""

from __future__ import annotations

import os
from pathlib import Path


def get_default_data_dir() -> Path:
    """
    Get the Coinswap NG data directory.

    Returns $COINSWAP_DATA_DIR if set, else ~/.coinswap-ng. The directory is
    not created here; writers create it when they first need it.
    """
    env_path = os.getenv("COINSWAP_DATA_DIR")
    return Path(env_path) if env_path else Path.home() / ".coinswap-ng"
