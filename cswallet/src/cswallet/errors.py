"""
Exception hierarchy for the watch-only wallet sync engine.

Three families matter to callers:
- ConfigurationError: the local configuration does not match the node, never retried
- RescanInProgressError: the node is busy with another scan, retried by the rescan driver
- ProtocolError / RpcError: anything else the node reports, propagated immediately
"""

from __future__ import annotations


class WalletError(Exception):
    """Base exception for wallet sync errors."""

    pass


class ConfigurationError(WalletError):
    """Local configuration is inconsistent with the connected node."""

    pass


class NetworkMismatchError(ConfigurationError):
    """The node reports a different chain than the configured network."""

    def __init__(self, expected: str, actual: str):
        self.expected = expected
        self.actual = actual
        super().__init__(f"RPC network mismatch: configured {expected}, node reports {actual}")


class ProtocolError(WalletError):
    """Unexpected or malformed data exchanged with the node."""

    pass


class RpcError(WalletError, ValueError):
    """JSON-RPC error returned by Bitcoin Core."""

    def __init__(self, code: int | str, message: str, method: str | None = None):
        self.code = code
        self.message = message
        self.method = method
        super().__init__(f"RPC error {code}: {message}")


class RescanInProgressError(RpcError):
    """The wallet is already rescanning; the request can be retried later."""

    pass


class RescanRetriesExhaustedError(WalletError):
    """The rescan kept hitting a concurrent scan beyond the configured retry cap."""

    def __init__(self, attempts: int):
        self.attempts = attempts
        super().__init__(f"Rescan still contended after {attempts} attempt(s)")
