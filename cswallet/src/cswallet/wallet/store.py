"""
Wallet store: the locally persisted view of a watch-only wallet.

The store is owned by a single sync run at a time. Only two fields are ever
written by the sync engine: ``last_synced_height`` after a successful rescan
and ``external_index`` after that.
"""

from __future__ import annotations

import json
import os
from pathlib import Path

from cscore.models import NetworkType
from loguru import logger
from pydantic import BaseModel, Field

from cswallet.wallet.models import FidelityBondEntry, SwapCoin


class WalletStore(BaseModel):
    """Persisted state of a watch-only wallet."""

    version: int = 1
    file_name: str = Field(..., min_length=1, description="Stable wallet identity")
    network: NetworkType = NetworkType.REGTEST
    account_xpub: str | None = Field(
        default=None,
        description="Account-level extended public key for the standard wallet descriptors",
    )
    incoming_swapcoins: dict[str, SwapCoin] = Field(default_factory=dict)
    outgoing_swapcoins: dict[str, SwapCoin] = Field(default_factory=dict)
    # Insertion order matters: the import probe looks at the first and last entry
    fidelity_bond: dict[int, FidelityBondEntry] = Field(default_factory=dict)
    last_synced_height: int | None = Field(default=None, ge=0)
    wallet_birthday: int | None = Field(default=None, ge=0)
    external_index: int = Field(default=0, ge=0, description="Next unused external index")

    @property
    def rescan_start_height(self) -> int:
        """First block a rescan must cover: max(last synced height, wallet birthday)."""
        return max(self.last_synced_height or 0, self.wallet_birthday or 0)

    def update_external_index(self, index: int) -> None:
        """Persist a new external watermark; it never moves backwards."""
        if index < self.external_index:
            logger.debug(
                f"Keeping external index {self.external_index} (found {index}) for "
                f"wallet '{self.file_name}'"
            )
            return
        self.external_index = index


def load_store(path: Path) -> WalletStore:
    """
    Load a wallet store from disk.

    Args:
        path: Path to the JSON wallet file

    Returns:
        WalletStore instance

    Raises:
        FileNotFoundError: If the file does not exist
        pydantic.ValidationError: If the file content is not a valid store
    """
    data = json.loads(path.read_text())
    store = WalletStore.model_validate(data)
    logger.debug(f"Loaded wallet store '{store.file_name}' from {path}")
    return store


def save_store(store: WalletStore, path: Path) -> None:
    """
    Save the wallet store to disk.

    The file is written to a temporary sibling first and then renamed, so an
    interrupted write never leaves a truncated store behind.

    Args:
        store: WalletStore instance
        path: Destination path
    """
    path.parent.mkdir(parents=True, exist_ok=True)
    tmp_path = path.with_name(path.name + ".tmp")

    try:
        tmp_path.write_text(store.model_dump_json(indent=2))
        os.replace(tmp_path, path)
        logger.debug(f"Saved wallet store to {path}")
    except OSError as e:
        logger.error(f"Failed to save wallet store: {e}")
        raise
