"""
Watch-only wallet synchronization against Bitcoin Core.

``WalletSynchronizer.sync()`` runs the whole pipeline once:

1. make sure the watch-only wallet exists and is loaded on the node
2. compute the descriptors the node is missing
3. import them in one batch (no rescan at import time)
4. rescan the blocks not covered by ``last_synced_height``, retrying while
   another scan is running
5. advance the external HD index watermark

Every step awaits the previous one; nothing runs in parallel. The wallet
store is owned by the synchronizer for the duration of a call, and callers
must not run two syncs against the same store concurrently.
"""

from __future__ import annotations

import asyncio
import re
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from cswallet.backends.rpc import (
    DESCRIPTOR_WALLET_MIN_VERSION,
    BitcoinCoreRPC,
    create_descriptor_wallet_compat,
)
from cswallet.errors import ConfigurationError, ProtocolError
from cswallet.wallet.constants import DEFAULT_SCAN_RANGE, RESCAN_RETRY_INTERVAL
from cswallet.wallet.descriptors import (
    SENSITIVE_LOGGING,
    DescriptorCatalog,
    ImportPlan,
    build_import_requests,
)
from cswallet.wallet.models import KeychainKind
from cswallet.wallet.rescan import RescanDriver, RescanResult, SleepFunc
from cswallet.wallet.store import WalletStore

# wpkh([fingerprint/.../keychain/index]pubkey) as reported by listunspent
_DESC_PATH_RE = re.compile(r"wpkh\(\[[\da-f]{8}((?:/\d+['h]?)+)\][\da-f]+\)", re.I)


class WalletLoadStatus(str, Enum):
    ALREADY_LOADED = "already_loaded"
    LOADED = "loaded"
    CREATED = "created"


@dataclass
class SyncResult:
    """Summary of one sync() call."""

    imported: int
    rescan: RescanResult | None
    external_index: int

    @property
    def up_to_date(self) -> bool:
        return self.imported == 0 and self.rescan is None


def parse_keychain_index(descriptor: str) -> tuple[int, int] | None:
    """
    Extract (keychain, index) from a derived wpkh descriptor.

    Args:
        descriptor: e.g. ``wpkh([d34db33f/0/5]02ab...)#checksum``

    Returns:
        (keychain, index), or None for descriptors without an unhardened
        keychain/index suffix (raw scripts, multisig, ...)
    """
    match = _DESC_PATH_RE.search(descriptor.split("#", 1)[0])
    if not match:
        return None

    parts = match.group(1).strip("/").split("/")
    if len(parts) < 2 or not (parts[-2].isdigit() and parts[-1].isdigit()):
        return None
    return int(parts[-2]), int(parts[-1])


class WalletSynchronizer:
    """
    Reconciles a WalletStore with the watch-only wallet on a Bitcoin Core node.

    Usage:
        rpc = await connect(RPCConfig(wallet_name=store.file_name, network=store.network))
        synchronizer = WalletSynchronizer(rpc, store)
        result = await synchronizer.sync()
        save_store(store, path)
    """

    def __init__(
        self,
        rpc: BitcoinCoreRPC,
        store: WalletStore,
        retry_interval: float = RESCAN_RETRY_INTERVAL,
        max_rescan_retries: int | None = None,
        sleep: SleepFunc = asyncio.sleep,
        scan_range: int = DEFAULT_SCAN_RANGE,
    ):
        if rpc.wallet_name != store.file_name:
            raise ConfigurationError(
                f"RPC client is bound to wallet '{rpc.wallet_name}' "
                f"but the store is '{store.file_name}'"
            )
        self.rpc = rpc
        self.store = store
        self.retry_interval = retry_interval
        self.max_rescan_retries = max_rescan_retries
        self.scan_range = scan_range
        self._sleep = sleep
        self._wallet_ready = False

    # -- Wallet directory ---------------------------------------------------

    async def ensure_wallet(self) -> WalletLoadStatus:
        """
        Make sure the watch-only wallet is loaded on the node.

        Order: already loaded -> load from the wallet directory -> create.
        Resolved once per synchronizer; later calls are no-ops.
        """
        wallet_name = self.store.file_name
        if self._wallet_ready:
            return WalletLoadStatus.ALREADY_LOADED

        if wallet_name in await self.rpc.list_wallets():
            logger.info(f"Wallet already loaded: {wallet_name}")
            status = WalletLoadStatus.ALREADY_LOADED
        elif wallet_name in await self.rpc.list_wallet_dir():
            await self.rpc.load_wallet(wallet_name)
            logger.info(f"Wallet loaded: {wallet_name}")
            status = WalletLoadStatus.LOADED
        else:
            await self._create_watch_only_wallet(wallet_name)
            logger.info(f"Wallet created: {wallet_name}")
            status = WalletLoadStatus.CREATED

        self._wallet_ready = True
        return status

    async def _create_watch_only_wallet(self, wallet_name: str) -> None:
        """Create a keyless, non-blank watch-only wallet (descriptor wallet on >= 0.21)."""
        version = await self.rpc.get_version()
        if version < DESCRIPTOR_WALLET_MIN_VERSION:
            logger.debug(f"Node version {version} predates descriptor wallets, using legacy")
            await self.rpc.create_wallet(wallet_name, disable_private_keys=True)
        else:
            await create_descriptor_wallet_compat(self.rpc, wallet_name)

    # -- Descriptor import --------------------------------------------------

    async def build_import_plan(self) -> ImportPlan:
        return await DescriptorCatalog(self.rpc, self.store).build()

    async def import_descriptors(self, descriptors: list[str]) -> int:
        """
        Import descriptors as watch-only in a single batch, without rescanning.

        Returns:
            Number of descriptors imported

        Raises:
            ProtocolError: If the node reports a failure for any entry
        """
        requests = build_import_requests(descriptors, self.scan_range)
        if SENSITIVE_LOGGING:
            logger.debug(f"Importing descriptors: {requests}")
        else:
            logger.debug(f"Importing {len(requests)} wallet spks/descriptors")

        result = await self.rpc.import_descriptors(requests)
        if not isinstance(result, list) or len(result) != len(requests):
            raise ProtocolError(f"Unexpected importdescriptors response: {result!r}")

        failures = [
            (desc, r.get("error", {}).get("message", "unknown"))
            for desc, r in zip(descriptors, result)
            if not r.get("success", False)
        ]
        if failures:
            for desc, message in failures:
                logger.error(
                    f"Descriptor import failed: {message}"
                    + (f" ({desc})" if SENSITIVE_LOGGING else "")
                )
            raise ProtocolError(f"{len(failures)} of {len(requests)} descriptor import(s) failed")

        for r in result:
            for warning in r.get("warnings", []):
                logger.warning(f"importdescriptors: {warning}")

        logger.info(f"Imported {len(requests)} descriptor(s)")
        return len(requests)

    # -- HD index -----------------------------------------------------------

    async def find_hd_next_index(self, keychain: KeychainKind) -> int:
        """
        Next unused index on a keychain, from the wallet's observed outputs.

        Returns:
            Highest used index on the keychain + 1, or 0 if none is used
        """
        max_index = -1
        for utxo in await self.rpc.list_unspent():
            parsed = parse_keychain_index(utxo.get("desc", ""))
            if parsed is None:
                continue
            utxo_keychain, index = parsed
            if utxo_keychain == int(keychain) and index > max_index:
                max_index = index
        return max_index + 1

    async def advance_external_index(self) -> int:
        """Recompute and persist the external (receive) index watermark."""
        next_index = await self.find_hd_next_index(KeychainKind.EXTERNAL)
        self.store.update_external_index(next_index)
        logger.info(f"External index for '{self.store.file_name}': {self.store.external_index}")
        return self.store.external_index

    # -- Orchestration ------------------------------------------------------

    async def sync(self) -> SyncResult:
        """
        Sync the wallet store with the node.

        Returns immediately (no import, no rescan) when there is nothing new
        to watch. Any RPC failure other than rescan contention propagates.
        """
        await self.ensure_wallet()

        plan = await self.build_import_plan()
        if plan.is_empty:
            logger.info(f"Wallet '{self.store.file_name}' is up to date, nothing to import")
            return SyncResult(imported=0, rescan=None, external_index=self.store.external_index)

        imported = await self.import_descriptors(plan.to_import)

        driver = RescanDriver(
            self.rpc,
            self.store,
            retry_interval=self.retry_interval,
            max_retries=self.max_rescan_retries,
            sleep=self._sleep,
        )
        rescan = await driver.run()

        external_index = await self.advance_external_index()
        return SyncResult(imported=imported, rescan=rescan, external_index=external_index)
