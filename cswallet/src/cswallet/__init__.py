"""
Coinswap NG watch-only wallet sync engine backed by Bitcoin Core.
"""

from cswallet.backends.rpc import BitcoinCoreRPC, RPCConfig, connect
from cswallet.wallet.store import WalletStore
from cswallet.wallet.sync import SyncResult, WalletSynchronizer

__all__ = [
    "BitcoinCoreRPC",
    "RPCConfig",
    "SyncResult",
    "WalletStore",
    "WalletSynchronizer",
    "connect",
]
