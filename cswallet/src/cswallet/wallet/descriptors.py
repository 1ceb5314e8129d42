"""
Descriptor catalog: which scripts the node should be watching.

The catalog is built per category, in a fixed order:

(a) standard wallet descriptors (external and internal keychains) not yet imported
(b) incoming swap-coin 2-of-2 multisig descriptors not yet imported
(c) outgoing swap-coin 2-of-2 multisig descriptors not yet imported
(d) incoming swap-coin contract ``raw()`` descriptors not yet imported
(e) outgoing swap-coin contract ``raw()`` descriptors not yet imported
(f) every fidelity bond ``raw()`` descriptor, unfiltered

Swap-coins are few, so each one is checked individually. Fidelity bonds
accumulate, so that category is checked with a cheap first/last probe
instead (see ``DescriptorCatalog.fidelity_bonds_imported``).
"""

from __future__ import annotations

import os
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

from loguru import logger

from cswallet.backends.rpc import BitcoinCoreRPC
from cswallet.errors import ProtocolError, RpcError
from cswallet.wallet.constants import DEFAULT_SCAN_RANGE
from cswallet.wallet.models import KeychainKind, SwapCoin
from cswallet.wallet.store import WalletStore

# Environment variable to enable sensitive logging (descriptors, addresses, etc.)
SENSITIVE_LOGGING = os.environ.get("SENSITIVE_LOGGING", "").lower() in ("1", "true", "yes")


def multisig_descriptor(other_pubkey: str, my_pubkey: str) -> str:
    """2-of-2 sorted multisig descriptor for a swap-coin, without checksum."""
    return f"wsh(sortedmulti(2,{other_pubkey},{my_pubkey}))"


def raw_descriptor(script_pubkey: bytes | str) -> str:
    """``raw()`` descriptor for a script-pub-key, without checksum."""
    if isinstance(script_pubkey, bytes):
        script_pubkey = script_pubkey.hex()
    return f"raw({script_pubkey})"


def contract_descriptor(swapcoin: SwapCoin) -> str:
    """``raw()`` descriptor for the output paying to a swap-coin's contract."""
    return raw_descriptor(swapcoin.contract_scriptpubkey)


def wallet_descriptor(account_xpub: str, keychain: KeychainKind) -> str:
    """Ranged P2WPKH descriptor for one keychain of the wallet account."""
    return f"wpkh({account_xpub}/{int(keychain)}/*)"


def strip_checksum(descriptor: str) -> str:
    return descriptor.split("#", 1)[0]


def is_ranged(descriptor: str) -> bool:
    return "*" in strip_checksum(descriptor)


def build_import_requests(
    descriptors: Iterable[str], scan_range: int = DEFAULT_SCAN_RANGE
) -> list[dict[str, Any]]:
    """
    Format descriptors for a single importdescriptors call.

    Every request uses ``timestamp="now"``: the import itself never rescans,
    the rescan driver covers history separately. Only ranged descriptors can
    be active; the internal flag follows the keychain in the derivation path.
    """
    requests: list[dict[str, Any]] = []
    for desc in descriptors:
        request: dict[str, Any] = {"desc": desc, "timestamp": "now"}
        if is_ranged(desc):
            request["active"] = True
            request["range"] = [0, scan_range - 1]
            request["internal"] = strip_checksum(desc).endswith(
                f"/{int(KeychainKind.INTERNAL)}/*)"
            )
        requests.append(request)
    return requests


def _dedupe(descriptors: Iterable[str]) -> list[str]:
    seen: set[str] = set()
    result = []
    for desc in descriptors:
        if desc not in seen:
            seen.add(desc)
            result.append(desc)
    return result


@dataclass
class ImportPlan:
    """Outcome of a catalog build: what to submit in the next import batch."""

    descriptors: list[str] = field(default_factory=list)
    fidelity_bond_descriptors: list[str] = field(default_factory=list)
    fidelity_bonds_imported: bool = True

    @property
    def is_empty(self) -> bool:
        """Nothing new to watch, so neither an import nor a rescan is needed."""
        return not self.descriptors and self.fidelity_bonds_imported

    @property
    def to_import(self) -> list[str]:
        """The complete batch; fidelity bonds always ride along with a non-empty batch."""
        if self.is_empty:
            return []
        return _dedupe(self.descriptors + self.fidelity_bond_descriptors)


class DescriptorCatalog:
    """
    Computes the descriptors the node is missing for a wallet store.

    The store is only read here.
    """

    def __init__(self, rpc: BitcoinCoreRPC, store: WalletStore):
        self.rpc = rpc
        self.store = store

    async def add_checksum(self, descriptor: str) -> str:
        """
        Canonicalize a descriptor through getdescriptorinfo.

        Raises:
            ProtocolError: If the node rejects the descriptor. Every descriptor
                built here comes from validated store data, so a rejection is
                a fault, not a transient condition.
        """
        try:
            info = await self.rpc.get_descriptor_info(descriptor)
        except RpcError as e:
            raise ProtocolError(f"Node rejected descriptor {descriptor!r}: {e}") from e

        result = info.get("descriptor") if isinstance(info, dict) else None
        if not result:
            raise ProtocolError(f"getdescriptorinfo returned no descriptor: {info!r}")
        return result

    async def descriptor_address(self, descriptor: str) -> str:
        """First address a (checksummed) descriptor expands to."""
        derivation_range = (0, 0) if is_ranged(descriptor) else None
        addresses = await self.rpc.derive_addresses(descriptor, derivation_range)
        if not addresses:
            raise ProtocolError(f"deriveaddresses returned nothing for {descriptor!r}")
        return addresses[0]

    async def is_descriptor_imported(self, descriptor: str) -> bool:
        """
        Check whether the wallet already watches a descriptor.

        Looks at the first derived address. Keyless descriptor wallets report
        imported scripts as ``ismine``, legacy watch-only imports as
        ``iswatchonly``; either counts.
        """
        address = await self.descriptor_address(descriptor)
        info = await self.rpc.get_address_info(address)
        return bool(info.get("iswatchonly") or info.get("ismine"))

    async def _filter_unimported(self, descriptors: Iterable[str]) -> list[str]:
        result = []
        for desc in descriptors:
            checksummed = await self.add_checksum(desc)
            if not await self.is_descriptor_imported(checksummed):
                result.append(checksummed)
        return result

    async def unimported_wallet_descriptors(self) -> list[str]:
        """Standard external/internal keychain descriptors the node lacks."""
        xpub = self.store.account_xpub
        if not xpub:
            return []
        return await self._filter_unimported(
            wallet_descriptor(xpub, keychain) for keychain in KeychainKind
        )

    async def unimported_multisig_descriptors(self, swapcoins: Iterable[SwapCoin]) -> list[str]:
        return await self._filter_unimported(
            multisig_descriptor(sc.other_pubkey, sc.my_pubkey) for sc in swapcoins
        )

    async def unimported_contract_descriptors(self, swapcoins: Iterable[SwapCoin]) -> list[str]:
        return await self._filter_unimported(contract_descriptor(sc) for sc in swapcoins)

    async def fidelity_bond_descriptors(self) -> list[str]:
        """Every fidelity bond descriptor, in store insertion order."""
        return [
            await self.add_checksum(raw_descriptor(entry.script_pubkey))
            for entry in self.store.fidelity_bond.values()
        ]

    async def fidelity_bonds_imported(self) -> bool:
        """
        Approximate "are all fidelity bonds imported" by probing two entries.

        Only the first and last script-pub-key (insertion order) are checked.
        This relies on bonds always being imported as one complete batch in
        append order, so the imported bonds form a contiguous prefix: if both
        ends are watched, so is everything in between. An empty collection
        counts as imported.
        """
        entries = list(self.store.fidelity_bond.values())
        if not entries:
            return True

        for entry in (entries[0], entries[-1]):
            descriptor = await self.add_checksum(raw_descriptor(entry.script_pubkey))
            if not await self.is_descriptor_imported(descriptor):
                return False
        return True

    async def build(self) -> ImportPlan:
        """Compute the ordered import delta for the store."""
        incoming = list(self.store.incoming_swapcoins.values())
        outgoing = list(self.store.outgoing_swapcoins.values())

        descriptors: list[str] = []
        descriptors.extend(await self.unimported_wallet_descriptors())
        descriptors.extend(await self.unimported_multisig_descriptors(incoming))
        descriptors.extend(await self.unimported_multisig_descriptors(outgoing))
        descriptors.extend(await self.unimported_contract_descriptors(incoming))
        descriptors.extend(await self.unimported_contract_descriptors(outgoing))

        bonds_imported = await self.fidelity_bonds_imported()
        plan = ImportPlan(descriptors=_dedupe(descriptors), fidelity_bonds_imported=bonds_imported)
        if not plan.is_empty:
            plan.fidelity_bond_descriptors = await self.fidelity_bond_descriptors()

        if SENSITIVE_LOGGING:
            logger.debug(f"Descriptor delta: {plan.descriptors}")
        logger.debug(
            f"Descriptor catalog: {len(plan.descriptors)} unimported, "
            f"{len(plan.fidelity_bond_descriptors)} fidelity bond(s), "
            f"bonds imported={bonds_imported}"
        )
        return plan
