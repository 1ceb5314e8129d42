"""
Bitcoin Core backend for the watch-only wallet.
"""

from cswallet.backends.rpc import BitcoinCoreRPC, RPCConfig, connect

__all__ = ["BitcoinCoreRPC", "RPCConfig", "connect"]
