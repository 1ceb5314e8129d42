"""
Bitcoin Core JSON-RPC client for the watch-only wallet.

Node-level calls (chain info, wallet directory, descriptor checksums) go to the
base RPC URL; wallet calls (imports, rescans, address info) go to
``{rpc_url}/wallet/{wallet_name}``.

Two HTTP clients are kept: one with a short timeout for regular calls and one
with a long timeout for importdescriptors and rescanblockchain, which can run
for a long time on mainnet.
"""

from __future__ import annotations

from collections.abc import Sequence
from typing import Any
from urllib.parse import quote

import httpx
from cscore.bitcoin import network_from_chain
from cscore.models import NetworkType
from loguru import logger
from pydantic import BaseModel, Field, SecretStr

from cswallet.errors import (
    NetworkMismatchError,
    ProtocolError,
    RescanInProgressError,
    RpcError,
)

# Timeout for regular RPC calls (seconds)
DEFAULT_RPC_TIMEOUT = 30.0

# Timeout for descriptor import and rescans (seconds)
LONG_RPC_TIMEOUT = 7200.0

# Bitcoin Core RPC_WALLET_ERROR, also used for "Wallet is currently rescanning"
RPC_WALLET_ERROR = -4

# First Bitcoin Core version (0.21.0) where createwallet accepts the descriptors flag
DESCRIPTOR_WALLET_MIN_VERSION = 210_000


class RPCConfig(BaseModel):
    """Configuration parameters for connecting to a Bitcoin Core node via RPC."""

    url: str = Field(default="http://127.0.0.1:18443", description="Bitcoin Core RPC URL")
    rpc_user: str = Field(default="regtestrpcuser", description="RPC username")
    rpc_password: SecretStr = Field(default=SecretStr("regtestrpcpass"), description="RPC password")
    network: NetworkType = Field(
        default=NetworkType.REGTEST,
        description="Expected network; checked against the node at connect time",
    )
    wallet_name: str = Field(
        default="random-wallet-name",
        min_length=1,
        description="Wallet name in Bitcoin Core",
    )
    timeout: float = Field(default=DEFAULT_RPC_TIMEOUT, gt=0.0)
    long_timeout: float = Field(default=LONG_RPC_TIMEOUT, gt=0.0)


def _is_rescan_contention(code: Any, message: str) -> bool:
    return code == RPC_WALLET_ERROR and "rescan" in message.lower()


class BitcoinCoreRPC:
    """
    Thin async JSON-RPC client for the calls the wallet sync engine needs.

    Usage:
        rpc = await connect(RPCConfig(wallet_name="my-wallet"))
        try:
            height = await rpc.get_block_count()
        finally:
            await rpc.close()
    """

    def __init__(
        self,
        rpc_url: str = "http://127.0.0.1:18443",
        rpc_user: str = "regtestrpcuser",
        rpc_password: str = "regtestrpcpass",
        wallet_name: str = "random-wallet-name",
        timeout: float = DEFAULT_RPC_TIMEOUT,
        long_timeout: float = LONG_RPC_TIMEOUT,
    ):
        """
        Initialize the RPC client.

        Args:
            rpc_url: Bitcoin Core RPC URL
            rpc_user: RPC username
            rpc_password: RPC password
            wallet_name: Name of the wallet in Bitcoin Core
            timeout: Timeout for regular RPC calls
            long_timeout: Timeout for descriptor imports and rescans
        """
        self.rpc_url = rpc_url.rstrip("/")
        self.rpc_user = rpc_user
        self.wallet_name = wallet_name

        self.client = httpx.AsyncClient(timeout=timeout, auth=(rpc_user, rpc_password))
        self._long_client = httpx.AsyncClient(timeout=long_timeout, auth=(rpc_user, rpc_password))
        self._request_id = 0

    @classmethod
    def from_config(cls, config: RPCConfig) -> BitcoinCoreRPC:
        """Build an (unvalidated) client from an RPCConfig."""
        return cls(
            rpc_url=config.url,
            rpc_user=config.rpc_user,
            rpc_password=config.rpc_password.get_secret_value(),
            wallet_name=config.wallet_name,
            timeout=config.timeout,
            long_timeout=config.long_timeout,
        )

    def _get_wallet_url(self) -> str:
        """Get the RPC URL for wallet-specific calls; the name is percent-encoded."""
        encoded = quote(self.wallet_name, safe="")
        return f"{self.rpc_url}/wallet/{encoded}"

    async def _rpc_call(
        self,
        method: str,
        params: list | None = None,
        client: httpx.AsyncClient | None = None,
        use_wallet: bool = True,
    ) -> Any:
        """
        Make an RPC call to Bitcoin Core.

        Args:
            method: RPC method name
            params: Method parameters
            client: Optional httpx client (uses default client if not provided)
            use_wallet: If True, use wallet-specific URL

        Returns:
            RPC result

        Raises:
            RescanInProgressError: If the wallet is busy rescanning
            RpcError: On any other RPC error
            ProtocolError: If the response is not a JSON-RPC reply
            httpx.HTTPError: On connection/timeout errors
        """
        self._request_id += 1
        payload = {
            "jsonrpc": "2.0",
            "id": self._request_id,
            "method": method,
            "params": params or [],
        }

        use_client = client or self.client
        url = self._get_wallet_url() if use_wallet else self.rpc_url

        try:
            response = await use_client.post(url, json=payload)
        except httpx.TimeoutException as e:
            logger.error(f"RPC call timed out: {method} - {e}")
            raise
        except httpx.HTTPError as e:
            logger.error(f"RPC call failed: {method} - {e}")
            raise

        # Bitcoin Core answers RPC errors with HTTP 500 and a JSON-RPC error body
        try:
            data = response.json()
        except ValueError:
            response.raise_for_status()
            raise ProtocolError(f"Non-JSON response to {method}: {response.text[:200]}") from None

        if not isinstance(data, dict):
            raise ProtocolError(f"Unexpected response to {method}: {data!r}")

        error_info = data.get("error")
        if error_info:
            code = error_info.get("code", "unknown")
            message = error_info.get("message", str(error_info))
            if _is_rescan_contention(code, message):
                raise RescanInProgressError(code, message, method=method)
            raise RpcError(code, message, method=method)

        response.raise_for_status()
        return data.get("result")

    # -- Node-level calls ---------------------------------------------------

    async def get_blockchain_info(self) -> dict[str, Any]:
        return await self._rpc_call("getblockchaininfo", use_wallet=False)

    async def get_block_count(self) -> int:
        """Get current blockchain height."""
        return int(await self._rpc_call("getblockcount", use_wallet=False))

    async def get_version(self) -> int:
        """Get the node version as an integer (e.g. 270000 for v27.0)."""
        info = await self._rpc_call("getnetworkinfo", use_wallet=False)
        return int(info["version"])

    async def list_wallets(self) -> list[str]:
        """List wallets currently loaded by the node."""
        return await self._rpc_call("listwallets", use_wallet=False)

    async def list_wallet_dir(self) -> list[str]:
        """List wallet names available in the node's wallet directory."""
        result = await self._rpc_call("listwalletdir", use_wallet=False)
        try:
            return [entry["name"] for entry in result["wallets"]]
        except (KeyError, TypeError) as e:
            raise ProtocolError(f"Malformed listwalletdir response: {result!r}") from e

    async def load_wallet(self, wallet_name: str) -> dict[str, Any]:
        return await self._rpc_call("loadwallet", [wallet_name], use_wallet=False)

    async def create_wallet(
        self,
        wallet_name: str,
        disable_private_keys: bool | None = None,
        blank: bool | None = None,
        passphrase: str | None = None,
        avoid_reuse: bool | None = None,
    ) -> dict[str, Any]:
        """
        Create a wallet using the pre-0.21 createwallet parameter list.

        Trailing unset arguments are omitted so the node applies its defaults.
        """
        params: list[Any] = [wallet_name, disable_private_keys, blank, passphrase, avoid_reuse]
        while params and params[-1] is None:
            params.pop()
        return await self._rpc_call("createwallet", params, use_wallet=False)

    async def get_descriptor_info(self, descriptor: str) -> dict[str, Any]:
        """Analyse a descriptor; the result's 'descriptor' carries the checksum."""
        return await self._rpc_call("getdescriptorinfo", [descriptor], use_wallet=False)

    async def derive_addresses(
        self, descriptor: str, derivation_range: tuple[int, int] | None = None
    ) -> list[str]:
        params: list[Any] = [descriptor]
        if derivation_range is not None:
            params.append(list(derivation_range))
        return await self._rpc_call("deriveaddresses", params, use_wallet=False)

    # -- Wallet calls -------------------------------------------------------

    async def get_address_info(self, address: str) -> dict[str, Any]:
        return await self._rpc_call("getaddressinfo", [address])

    async def import_descriptors(self, requests: Sequence[dict[str, Any]]) -> list[dict[str, Any]]:
        """Submit one importdescriptors batch (uses the long-timeout client)."""
        return await self._rpc_call(
            "importdescriptors", [list(requests)], client=self._long_client
        )

    async def rescan_blockchain(self, start_height: int, stop_height: int) -> dict[str, Any]:
        """Rescan [start_height, stop_height] (uses the long-timeout client)."""
        return await self._rpc_call(
            "rescanblockchain", [start_height, stop_height], client=self._long_client
        )

    async def list_unspent(self, minconf: int = 0, maxconf: int = 9999999) -> list[dict[str, Any]]:
        return await self._rpc_call("listunspent", [minconf, maxconf])

    async def close(self) -> None:
        """Close both HTTP clients."""
        await self.client.aclose()
        await self._long_client.aclose()

    async def __aenter__(self) -> BitcoinCoreRPC:
        return self

    async def __aexit__(self, *exc_info: Any) -> None:
        await self.close()


async def create_descriptor_wallet_compat(rpc: BitcoinCoreRPC, wallet_name: str) -> dict[str, Any]:
    """
    Compatibility shim: create a watch-only descriptor wallet on Bitcoin Core >= 0.21.

    Same role as ``BitcoinCoreRPC.create_wallet`` but sends the full positional
    parameter list explicitly, because typed createwallet bindings are known to
    mis-encode the newer ``descriptors`` argument. Replace with a typed call
    once the bindings are fixed.

    Params: wallet_name, disable_private_keys, blank, passphrase, avoid_reuse, descriptors
    """
    args: list[Any] = [
        wallet_name,
        True,  # disable_private_keys
        False,  # blank
        None,  # passphrase
        False,  # avoid_reuse
        True,  # descriptors
    ]
    return await rpc._rpc_call("createwallet", args, use_wallet=False)


async def connect(config: RPCConfig) -> BitcoinCoreRPC:
    """
    Build a client bound to the configured wallet and verify the node's network.

    Performs one getblockchaininfo round-trip. Operating against the wrong chain
    is never recoverable, so a mismatch fails before any wallet call is made.

    Raises:
        NetworkMismatchError: If the node's chain differs from config.network
        ProtocolError: If the node reports an unknown chain or a malformed reply
    """
    rpc = BitcoinCoreRPC.from_config(config)
    try:
        info = await rpc.get_blockchain_info()
        if not isinstance(info, dict):
            raise ProtocolError(f"Malformed getblockchaininfo response: {info!r}")
        chain = info.get("chain", "")
        try:
            actual = network_from_chain(chain)
        except ValueError as e:
            raise ProtocolError(str(e)) from e

        if actual != config.network:
            logger.error(
                f"Node at {config.url} is on {actual.value}, expected {config.network.value}"
            )
            raise NetworkMismatchError(config.network.value, actual.value)
    except BaseException:
        await rpc.close()
        raise

    logger.debug(f"Connected to {config.url} ({actual.value}), wallet '{config.wallet_name}'")
    return rpc
