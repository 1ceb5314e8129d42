"""
Rescan driver: run rescanblockchain over the blocks the wallet has not seen yet.

Rescans are exclusive per wallet on the node side. When another scan is
already running (started by another process or an earlier call), the node
rejects the request; the driver waits a fixed interval and tries again.

State machine::

    PENDING -> RUNNING -> SUCCEEDED
                  ^  |
                  |  v
               RETRYABLE  (sleep retry_interval)

By default there is no retry limit. ``max_retries`` caps the loop for tests
and for callers that prefer to fail.
"""

from __future__ import annotations

import asyncio
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import Enum

from loguru import logger

from cswallet.backends.rpc import BitcoinCoreRPC
from cswallet.errors import RescanInProgressError, RescanRetriesExhaustedError
from cswallet.wallet.constants import RESCAN_RETRY_INTERVAL
from cswallet.wallet.store import WalletStore

SleepFunc = Callable[[float], Awaitable[None]]


class RescanState(str, Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    RETRYABLE = "retryable"


@dataclass
class RescanResult:
    """Range covered by the successful rescan call."""

    start_height: int
    stop_height: int
    attempts: int
    skipped: bool = False


class RescanDriver:
    """
    Drives one rescan of ``[start, tip]`` to completion.

    The start height is max(last synced height, wallet birthday). The tip is
    read fresh before every attempt, so the target moves forward if blocks
    arrive while waiting. On success the tip read *before* the scan becomes
    the new ``last_synced_height``; blocks mined during the scan are picked
    up by the next sync.
    """

    def __init__(
        self,
        rpc: BitcoinCoreRPC,
        store: WalletStore,
        retry_interval: float = RESCAN_RETRY_INTERVAL,
        max_retries: int | None = None,
        sleep: SleepFunc = asyncio.sleep,
    ):
        self.rpc = rpc
        self.store = store
        self.retry_interval = retry_interval
        self.max_retries = max_retries
        self._sleep = sleep

        self.state = RescanState.PENDING
        self.attempts = 0

    async def _attempt(self) -> RescanResult:
        start_height = self.store.rescan_start_height
        stop_height = await self.rpc.get_block_count()

        if start_height > stop_height:
            logger.info(
                f"Nothing to rescan: start height {start_height} is above tip {stop_height}"
            )
            return RescanResult(start_height, stop_height, self.attempts, skipped=True)

        logger.info(f"Rescanning blockchain from {start_height} to {stop_height}")
        await self.rpc.rescan_blockchain(start_height, stop_height)
        return RescanResult(start_height, stop_height, self.attempts)

    async def run(self) -> RescanResult:
        """
        Rescan until the node accepts and completes the request.

        Returns:
            RescanResult for the successful attempt

        Raises:
            RescanRetriesExhaustedError: If max_retries is set and exceeded
            RpcError / httpx.HTTPError: Any non-contention failure, immediately
        """
        self.state = RescanState.PENDING
        self.attempts = 0
        retries = 0

        logger.debug("Starting wallet rescan. This may take a while.")
        while True:
            self.state = RescanState.RUNNING
            self.attempts += 1
            try:
                result = await self._attempt()
            except RescanInProgressError as e:
                self.state = RescanState.RETRYABLE
                if self.max_retries is not None and retries >= self.max_retries:
                    logger.error(f"Giving up rescan after {self.attempts} attempt(s): {e}")
                    raise RescanRetriesExhaustedError(self.attempts) from e
                retries += 1
                logger.warning(f"Sync error, retrying in {self.retry_interval:g}s: {e}")
                await self._sleep(self.retry_interval)
                continue

            self.state = RescanState.SUCCEEDED
            if not result.skipped:
                previous = self.store.last_synced_height or 0
                self.store.last_synced_height = max(previous, result.stop_height)
            return result
