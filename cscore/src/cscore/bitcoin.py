"""
Bitcoin utilities for Coinswap NG.

This module provides the script-level operations the wallet needs:
- SHA256 hashing
- Script number and push-data encoding
- P2WSH script-pub-key construction
- Fidelity bond (timelocked freeze) scripts
- Mapping of node chain names to network types
"""

from __future__ import annotations

import hashlib

from cscore.models import NetworkType

# Opcodes used by the scripts built here
OP_0 = 0x00
OP_PUSHDATA1 = 0x4C
OP_PUSHDATA2 = 0x4D
OP_1NEGATE = 0x4F
OP_1 = 0x51
OP_DROP = 0x75
OP_CHECKSIG = 0xAC
OP_CHECKLOCKTIMEVERIFY = 0xB1

# Chain names as reported by Bitcoin Core's getblockchaininfo
CHAIN_NAME_MAP = {
    "main": NetworkType.MAINNET,
    "test": NetworkType.TESTNET,
    "testnet4": NetworkType.TESTNET,
    "signet": NetworkType.SIGNET,
    "regtest": NetworkType.REGTEST,
}


# =============================================================================
# Hash Functions
# =============================================================================


def sha256(data: bytes) -> bytes:
    """
    Single SHA256 hash.

    Args:
        data: Input data to hash

    Returns:
        32-byte hash
    """
    return hashlib.sha256(data).digest()


# =============================================================================
# Script Encoding
# =============================================================================


def encode_script_number(n: int) -> bytes:
    """
    Encode an integer as a minimal CScriptNum (little-endian, sign bit in MSB).

    Args:
        n: Integer to encode

    Returns:
        Encoded bytes (empty for zero)
    """
    if n == 0:
        return b""

    negative = n < 0
    value = abs(n)
    result = bytearray()
    while value:
        result.append(value & 0xFF)
        value >>= 8

    # If the top bit is set, add an extra byte to carry the sign
    if result[-1] & 0x80:
        result.append(0x80 if negative else 0x00)
    elif negative:
        result[-1] |= 0x80

    return bytes(result)


def push_data(data: bytes) -> bytes:
    """
    Build the script fragment that pushes data onto the stack.

    Args:
        data: Bytes to push

    Returns:
        Opcode(s) followed by the data
    """
    length = len(data)
    if length < OP_PUSHDATA1:
        return bytes([length]) + data
    elif length <= 0xFF:
        return bytes([OP_PUSHDATA1, length]) + data
    elif length <= 0xFFFF:
        return bytes([OP_PUSHDATA2]) + length.to_bytes(2, "little") + data
    raise ValueError(f"Push data too large: {length} bytes")


def push_int(n: int) -> bytes:
    """Push an integer using the small-integer opcodes where possible."""
    if n == 0:
        return bytes([OP_0])
    if n == -1:
        return bytes([OP_1NEGATE])
    if 1 <= n <= 16:
        return bytes([OP_1 + n - 1])
    return push_data(encode_script_number(n))


# =============================================================================
# Script Construction
# =============================================================================


def script_to_p2wsh_scriptpubkey(script: bytes) -> bytes:
    """
    Create P2WSH scriptPubKey from witness script.

    Args:
        script: Witness script bytes

    Returns:
        34-byte P2WSH scriptPubKey (OP_0 <32-byte-hash>)
    """
    script_hash = sha256(script)
    return bytes([OP_0, 0x20]) + script_hash


def redeemscript_to_scriptpubkey(redeemscript: bytes | str) -> bytes:
    """
    Convert a contract redeem script to the script-pub-key that pays to it.

    Contract outputs are native segwit script hashes, so this is the P2WSH
    script-pub-key of the redeem script.

    Args:
        redeemscript: Redeem script bytes or hex string

    Returns:
        34-byte P2WSH scriptPubKey
    """
    if isinstance(redeemscript, str):
        redeemscript = bytes.fromhex(redeemscript)
    if not redeemscript:
        raise ValueError("Empty redeem script")
    return script_to_p2wsh_scriptpubkey(redeemscript)


def mk_freeze_script(pubkey: bytes | str, locktime: int) -> bytes:
    """
    Create the timelocked fidelity bond script.

    Script: <locktime> OP_CHECKLOCKTIMEVERIFY OP_DROP <pubkey> OP_CHECKSIG

    Args:
        pubkey: 33-byte compressed public key (bytes or hex string)
        locktime: Absolute locktime (block height or unix timestamp)

    Returns:
        Witness script bytes
    """
    if isinstance(pubkey, str):
        pubkey = bytes.fromhex(pubkey)

    if len(pubkey) != 33:
        raise ValueError(f"Invalid compressed pubkey length: {len(pubkey)}")
    if locktime < 0:
        raise ValueError(f"Invalid locktime: {locktime}")

    return (
        push_int(locktime)
        + bytes([OP_CHECKLOCKTIMEVERIFY, OP_DROP])
        + push_data(pubkey)
        + bytes([OP_CHECKSIG])
    )


# =============================================================================
# Network Helpers
# =============================================================================


def network_from_chain(chain: str) -> NetworkType:
    """
    Map a Bitcoin Core chain name (getblockchaininfo 'chain') to a NetworkType.

    Args:
        chain: Chain name, e.g. "main", "test", "signet", "regtest"

    Returns:
        Matching NetworkType

    Raises:
        ValueError: If the chain name is unknown
    """
    try:
        return CHAIN_NAME_MAP[chain.lower()]
    except KeyError:
        raise ValueError(f"Unknown chain name: {chain!r}") from None
