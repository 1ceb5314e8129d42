"""
Integration tests against a regtest Bitcoin Core node.

Marked with @pytest.mark.docker; they expect a node on the default regtest
RPC endpoint (see RPCConfig defaults) and skip when none is reachable.
"""

from __future__ import annotations

import uuid

import httpx
import pytest
from _cswallet_test_helpers import make_bond_entry, make_swapcoin

from cswallet.backends.rpc import RPCConfig, connect
from cswallet.wallet.store import WalletStore
from cswallet.wallet.sync import WalletSynchronizer

pytestmark = pytest.mark.docker


async def _connect_or_skip(config: RPCConfig):
    try:
        return await connect(config)
    except httpx.HTTPError as e:
        pytest.skip(f"Bitcoin Core regtest node not reachable: {e}")


@pytest.mark.asyncio
async def test_sync_twice_imports_once():
    wallet_name = f"cs-test-{uuid.uuid4().hex[:8]}"
    store = WalletStore(
        file_name=wallet_name,
        incoming_swapcoins={"in": make_swapcoin(1)},
        fidelity_bond={0: make_bond_entry(0), 1: make_bond_entry(1)},
    )
    rpc = await _connect_or_skip(RPCConfig(wallet_name=wallet_name))

    try:
        first = await WalletSynchronizer(rpc, store).sync()
        assert first.imported == 4
        assert store.last_synced_height is not None

        second = await WalletSynchronizer(rpc, store).sync()
        assert second.up_to_date
    finally:
        await rpc.close()
