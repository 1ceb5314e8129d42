"""
Wallet data models.

Swap-coins and fidelity bonds are created by other parts of the system; the
sync engine only reads them to derive the descriptors the node must watch.
"""

from __future__ import annotations

from enum import IntEnum

from coincurve import PublicKey
from cscore.bitcoin import (
    mk_freeze_script,
    redeemscript_to_scriptpubkey,
    script_to_p2wsh_scriptpubkey,
)
from pydantic import BaseModel, Field, field_validator


class KeychainKind(IntEnum):
    """HD keychain branch: external (receive) or internal (change)."""

    EXTERNAL = 0
    INTERNAL = 1


def _validate_pubkey(value: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise ValueError(f"Public key is not valid hex: {value!r}") from None
    if len(raw) != 33:
        raise ValueError(f"Expected 33-byte compressed public key, got {len(raw)} bytes")
    # Raises ValueError if the point is not on the curve
    PublicKey(raw)
    return raw.hex()


def _validate_hex(value: str) -> str:
    try:
        raw = bytes.fromhex(value)
    except ValueError:
        raise ValueError(f"Not a valid hex string: {value!r}") from None
    if not raw:
        raise ValueError("Script must not be empty")
    return raw.hex()


class SwapCoin(BaseModel):
    """One side of a 2-of-2 swap contract output."""

    other_pubkey: str = Field(..., description="Counterparty multisig public key (hex)")
    my_pubkey: str = Field(..., description="Our multisig public key (hex)")
    contract_redeemscript: str = Field(..., description="Contract redeem script (hex)")

    @field_validator("other_pubkey", "my_pubkey")
    @classmethod
    def validate_pubkey(cls, v: str) -> str:
        return _validate_pubkey(v)

    @field_validator("contract_redeemscript")
    @classmethod
    def validate_redeemscript(cls, v: str) -> str:
        return _validate_hex(v)

    @property
    def contract_scriptpubkey(self) -> bytes:
        """Script-pub-key (P2WSH) paying to the contract redeem script."""
        return redeemscript_to_scriptpubkey(self.contract_redeemscript)


class FidelityBond(BaseModel):
    """A timelocked fidelity bond output."""

    outpoint: str = Field(..., pattern=r"^[0-9a-fA-F]{64}:\d+$")
    amount: int = Field(..., ge=0, description="Bond value in satoshis")
    lock_time: int = Field(..., ge=0, description="Absolute locktime of the bond script")
    pubkey: str = Field(..., description="Bond public key (hex)")
    conf_height: int | None = None
    cert_expiry: int | None = None

    @field_validator("pubkey")
    @classmethod
    def validate_pubkey(cls, v: str) -> str:
        return _validate_pubkey(v)

    @property
    def redeem_script(self) -> bytes:
        """<locktime> OP_CHECKLOCKTIMEVERIFY OP_DROP <pubkey> OP_CHECKSIG"""
        return mk_freeze_script(self.pubkey, self.lock_time)

    @property
    def script_pubkey(self) -> bytes:
        return script_to_p2wsh_scriptpubkey(self.redeem_script)


class FidelityBondEntry(BaseModel):
    """Stored fidelity bond: the bond, its script-pub-key and whether it is spent."""

    bond: FidelityBond
    script_pubkey: str
    is_spent: bool = False

    @field_validator("script_pubkey")
    @classmethod
    def validate_script_pubkey(cls, v: str) -> str:
        return _validate_hex(v)

    @classmethod
    def from_bond(cls, bond: FidelityBond, is_spent: bool = False) -> FidelityBondEntry:
        """Build an entry whose script-pub-key is derived from the bond itself."""
        return cls(bond=bond, script_pubkey=bond.script_pubkey.hex(), is_spent=is_spent)
