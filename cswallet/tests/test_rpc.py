"""
Tests for the Bitcoin Core RPC client and the connect() network guard.
"""

from __future__ import annotations

import json
from typing import Any
from unittest.mock import AsyncMock, patch

import httpx
import pytest
from _cswallet_test_helpers import TEST_RPC_URL, TEST_WALLET_NAME, make_mock_rpc, make_rpc
from cscore.models import NetworkType

from cswallet.backends.rpc import (
    BitcoinCoreRPC,
    RPCConfig,
    connect,
    create_descriptor_wallet_compat,
)
from cswallet.errors import (
    NetworkMismatchError,
    ProtocolError,
    RescanInProgressError,
    RpcError,
)


def _transport(handler) -> httpx.AsyncClient:
    return httpx.AsyncClient(transport=httpx.MockTransport(handler))


def _json_reply(result: Any = None, error: dict | None = None, status: int = 200):
    def handler(request: httpx.Request) -> httpx.Response:
        body = json.loads(request.content)
        return httpx.Response(status, json={"result": result, "error": error, "id": body["id"]})

    return handler


class TestRPCConfig:
    def test_defaults(self):
        config = RPCConfig()
        assert config.url == "http://127.0.0.1:18443"
        assert config.rpc_user == "regtestrpcuser"
        assert config.rpc_password.get_secret_value() == "regtestrpcpass"
        assert config.network == NetworkType.REGTEST
        assert config.wallet_name == "random-wallet-name"

    def test_empty_wallet_name_rejected(self):
        with pytest.raises(ValueError):
            RPCConfig(wallet_name="")

    def test_password_not_in_repr(self):
        config = RPCConfig(rpc_password="hunter2")
        assert "hunter2" not in repr(config)


class TestBitcoinCoreRPC:
    def test_get_wallet_url(self):
        rpc = BitcoinCoreRPC(rpc_url="http://localhost:18443/", wallet_name="my_wallet")
        assert rpc._get_wallet_url() == "http://localhost:18443/wallet/my_wallet"

    @pytest.mark.parametrize(
        ("wallet_name", "encoded"),
        [
            ("maker#2", "maker%232"),
            ("what?now", "what%3Fnow"),
            ("100%", "100%25"),
            ("a/b c", "a%2Fb%20c"),
        ],
    )
    def test_get_wallet_url_encodes_name(self, wallet_name, encoded):
        rpc = BitcoinCoreRPC(rpc_url="http://localhost:18443", wallet_name=wallet_name)
        assert rpc._get_wallet_url() == f"http://localhost:18443/wallet/{encoded}"

    @pytest.mark.asyncio
    async def test_wallet_call_reaches_encoded_path(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"result": {"ismine": False}, "error": None, "id": 1})

        rpc = BitcoinCoreRPC(rpc_url=TEST_RPC_URL, wallet_name="maker#2")
        rpc.client = _transport(handler)

        await rpc.get_address_info("bcrt1qexample")

        assert seen[0].url.raw_path == b"/wallet/maker%232"
        await rpc.close()

    def test_from_config(self):
        config = RPCConfig(url="http://node:8332", wallet_name="w1", timeout=5.0)
        rpc = BitcoinCoreRPC.from_config(config)
        assert rpc.rpc_url == "http://node:8332"
        assert rpc.wallet_name == "w1"

    @pytest.mark.asyncio
    async def test_rpc_call_returns_result_and_uses_wallet_url(self):
        seen: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(request)
            return httpx.Response(200, json={"result": [], "error": None, "id": 1})

        rpc = make_rpc()
        rpc.client = _transport(handler)

        assert await rpc.list_unspent() == []
        assert str(seen[0].url) == f"{TEST_RPC_URL}/wallet/{TEST_WALLET_NAME}"
        payload = json.loads(seen[0].content)
        assert payload["method"] == "listunspent"
        assert payload["params"] == [0, 9999999]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_node_calls_use_base_url(self):
        seen: list[str] = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append(str(request.url))
            return httpx.Response(200, json={"result": 812345, "error": None, "id": 1})

        rpc = make_rpc()
        rpc.client = _transport(handler)

        assert await rpc.get_block_count() == 812345
        assert seen == [TEST_RPC_URL]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_rescan_in_progress_error(self):
        rpc = make_rpc()
        message = "Wallet is currently rescanning. Abort existing rescan or wait."
        rpc._long_client = _transport(
            _json_reply(error={"code": -4, "message": message}, status=500)
        )

        with pytest.raises(RescanInProgressError) as exc_info:
            await rpc.rescan_blockchain(0, 100)
        assert exc_info.value.code == -4
        assert exc_info.value.method == "rescanblockchain"
        await rpc.close()

    @pytest.mark.asyncio
    async def test_other_wallet_error_is_not_contention(self):
        rpc = make_rpc()
        rpc.client = _transport(
            _json_reply(error={"code": -4, "message": "Wallet file verification failed"}, status=500)
        )

        with pytest.raises(RpcError) as exc_info:
            await rpc.load_wallet("broken")
        assert not isinstance(exc_info.value, RescanInProgressError)
        assert "Wallet file verification failed" in str(exc_info.value)
        await rpc.close()

    @pytest.mark.asyncio
    async def test_rpc_error_is_value_error(self):
        rpc = make_rpc()
        rpc.client = _transport(
            _json_reply(error={"code": -5, "message": "Invalid address"}, status=500)
        )

        with pytest.raises(ValueError, match="RPC error -5"):
            await rpc.get_address_info("nope")
        await rpc.close()

    @pytest.mark.asyncio
    async def test_non_json_error_status_raises_http_error(self):
        rpc = make_rpc()
        rpc.client = _transport(lambda request: httpx.Response(401, text="Unauthorized"))

        with pytest.raises(httpx.HTTPStatusError):
            await rpc.get_block_count()
        await rpc.close()

    @pytest.mark.asyncio
    async def test_non_json_ok_status_raises_protocol_error(self):
        rpc = make_rpc()
        rpc.client = _transport(lambda request: httpx.Response(200, text="<html>proxy</html>"))

        with pytest.raises(ProtocolError):
            await rpc.get_block_count()
        await rpc.close()

    @pytest.mark.asyncio
    async def test_import_descriptors_uses_long_client(self):
        rpc = make_rpc()
        rpc.client = _transport(lambda request: pytest.fail("short client used"))
        rpc._long_client = _transport(_json_reply(result=[{"success": True}]))

        result = await rpc.import_descriptors([{"desc": "raw(51)#abc", "timestamp": "now"}])
        assert result == [{"success": True}]
        await rpc.close()

    @pytest.mark.asyncio
    async def test_list_wallet_dir(self):
        rpc = make_rpc()
        rpc._rpc_call = make_mock_rpc(
            {"listwalletdir": {"wallets": [{"name": "alice"}, {"name": "bob"}]}}
        )
        assert await rpc.list_wallet_dir() == ["alice", "bob"]

    @pytest.mark.asyncio
    async def test_list_wallet_dir_malformed(self):
        rpc = make_rpc()
        rpc._rpc_call = make_mock_rpc({"listwalletdir": {"unexpected": True}})
        with pytest.raises(ProtocolError):
            await rpc.list_wallet_dir()

    @pytest.mark.asyncio
    async def test_get_version(self):
        rpc = make_rpc()
        rpc._rpc_call = make_mock_rpc({"getnetworkinfo": {"version": 270000}})
        assert await rpc.get_version() == 270000

    @pytest.mark.asyncio
    async def test_derive_addresses_with_range(self):
        rpc = make_rpc()
        rpc._rpc_call = AsyncMock(return_value=["bcrt1qexample"])

        await rpc.derive_addresses("wpkh(xpub/0/*)#abc", (0, 0))

        rpc._rpc_call.assert_called_once_with(
            "deriveaddresses", ["wpkh(xpub/0/*)#abc", [0, 0]], use_wallet=False
        )

    @pytest.mark.asyncio
    async def test_create_wallet_trims_unset_arguments(self):
        rpc = make_rpc()
        rpc._rpc_call = AsyncMock(return_value={"name": "w"})

        await rpc.create_wallet("w", disable_private_keys=True)

        rpc._rpc_call.assert_called_once_with("createwallet", ["w", True], use_wallet=False)

    @pytest.mark.asyncio
    async def test_descriptor_wallet_compat_sends_full_positional_list(self):
        rpc = make_rpc()
        rpc._rpc_call = AsyncMock(return_value={"name": "w"})

        await create_descriptor_wallet_compat(rpc, "w")

        rpc._rpc_call.assert_called_once_with(
            "createwallet", ["w", True, False, None, False, True], use_wallet=False
        )

    @pytest.mark.asyncio
    async def test_context_manager_closes_clients(self):
        rpc = make_rpc()
        async with rpc:
            pass
        assert rpc.client.is_closed
        assert rpc._long_client.is_closed


class TestConnect:
    @pytest.mark.asyncio
    async def test_connect_matching_network(self):
        config = RPCConfig(network=NetworkType.SIGNET, wallet_name="w1")
        with patch.object(
            BitcoinCoreRPC, "get_blockchain_info", AsyncMock(return_value={"chain": "signet"})
        ):
            rpc = await connect(config)
        assert rpc.wallet_name == "w1"
        await rpc.close()

    @pytest.mark.asyncio
    async def test_connect_testnet4_maps_to_testnet(self):
        config = RPCConfig(network=NetworkType.TESTNET)
        with patch.object(
            BitcoinCoreRPC, "get_blockchain_info", AsyncMock(return_value={"chain": "testnet4"})
        ):
            rpc = await connect(config)
        await rpc.close()

    @pytest.mark.asyncio
    async def test_connect_network_mismatch(self):
        config = RPCConfig(network=NetworkType.REGTEST)
        info = AsyncMock(return_value={"chain": "main"})
        close = AsyncMock()
        with (
            patch.object(BitcoinCoreRPC, "get_blockchain_info", info),
            patch.object(BitcoinCoreRPC, "close", close),
        ):
            with pytest.raises(NetworkMismatchError) as exc_info:
                await connect(config)

        assert exc_info.value.expected == "regtest"
        assert exc_info.value.actual == "mainnet"
        info.assert_awaited_once()
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_unknown_chain(self):
        close = AsyncMock()
        with (
            patch.object(
                BitcoinCoreRPC, "get_blockchain_info", AsyncMock(return_value={"chain": "weird"})
            ),
            patch.object(BitcoinCoreRPC, "close", close),
        ):
            with pytest.raises(ProtocolError):
                await connect(RPCConfig())
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_null_chain_info(self):
        close = AsyncMock()
        with (
            patch.object(BitcoinCoreRPC, "get_blockchain_info", AsyncMock(return_value=None)),
            patch.object(BitcoinCoreRPC, "close", close),
        ):
            with pytest.raises(ProtocolError, match="getblockchaininfo"):
                await connect(RPCConfig())
        close.assert_awaited_once()

    @pytest.mark.asyncio
    async def test_connect_closes_on_transport_error(self):
        close = AsyncMock()
        with (
            patch.object(
                BitcoinCoreRPC,
                "get_blockchain_info",
                AsyncMock(side_effect=httpx.ConnectError("refused")),
            ),
            patch.object(BitcoinCoreRPC, "close", close),
        ):
            with pytest.raises(httpx.ConnectError):
                await connect(RPCConfig())
        close.assert_awaited_once()
