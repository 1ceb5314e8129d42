"""
Wallet constants shared across wallet modules.
"""

from __future__ import annotations

# Default range for ranged wallet descriptors (Bitcoin Core default is 1000)
DEFAULT_SCAN_RANGE = 1000

# Seconds to wait before retrying a rescan rejected because another scan is running
RESCAN_RETRY_INTERVAL = 3.0
