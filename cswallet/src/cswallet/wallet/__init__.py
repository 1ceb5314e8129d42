"""
Wallet functionality for Coinswap NG.
"""

from cswallet.wallet.models import FidelityBond, FidelityBondEntry, KeychainKind, SwapCoin
from cswallet.wallet.store import WalletStore, load_store, save_store
from cswallet.wallet.sync import WalletSynchronizer

__all__ = [
    "FidelityBond",
    "FidelityBondEntry",
    "KeychainKind",
    "SwapCoin",
    "WalletStore",
    "WalletSynchronizer",
    "load_store",
    "save_store",
]
