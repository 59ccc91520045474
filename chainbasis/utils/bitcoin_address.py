"""
chainbasis/utils/bitcoin_address.py

Derives the scriptPubKey for a Bitcoin address. Address validation in the
Bitcoin adapter is "can we build the output script", so anything that fails
to decode here is an invalid address.

Supports:
- P2PKH / P2SH base58check (mainnet 1... / 3..., testnet m... n... / 2...)
- SegWit v0 bech32 and v1+ bech32m (bc1... / tb1...), per BIP350: a v0
  program with a bech32m checksum, or a v1+ program with a plain bech32
  checksum, is rejected
"""

import base58
from embit import bech32

# Version byte -> script template, per network
BASE58_VERSIONS = {
    "mainnet": {0x00: "p2pkh", 0x05: "p2sh"},
    "testnet": {0x6F: "p2pkh", 0xC4: "p2sh"},
}

BECH32_HRP = {
    "mainnet": "bc",
    "testnet": "tb",
}

OP_DUP = 0x76
OP_HASH160 = 0xA9
OP_EQUALVERIFY = 0x88
OP_CHECKSIG = 0xAC
OP_EQUAL = 0x87


def _network_key(network) -> str:
    # devnet has no meaning on Bitcoin; treat anything non-mainnet as testnet
    value = str(getattr(network, "value", network)).lower()
    return "mainnet" if value == "mainnet" else "testnet"


def _base58_script(address: str, network: str) -> bytes:
    if not 26 <= len(address) <= 35:
        raise ValueError(f"Base58 address has invalid length {len(address)}")
    payload = base58.b58decode_check(address)
    if len(payload) != 21:
        raise ValueError("Base58 payload must be a version byte plus a 20-byte hash")
    version, hash160 = payload[0], payload[1:]
    kind = BASE58_VERSIONS[network].get(version)
    if kind == "p2pkh":
        return bytes([OP_DUP, OP_HASH160, 20]) + hash160 + bytes([OP_EQUALVERIFY, OP_CHECKSIG])
    if kind == "p2sh":
        return bytes([OP_HASH160, 20]) + hash160 + bytes([OP_EQUAL])
    raise ValueError(f"Unknown base58 version byte 0x{version:02x} for {network}")


def _segwit_script(address: str, network: str) -> bytes:
    if not 42 <= len(address) <= 62:
        raise ValueError(f"Bech32 address has invalid length {len(address)}")
    witver, witprog = bech32.decode(BECH32_HRP[network], address.lower())
    if witver is None:
        raise ValueError("Bech32 checksum, checksum variant or witness program is invalid")
    program = bytes(witprog)
    opcode = 0x00 if witver == 0 else 0x50 + witver
    return bytes([opcode, len(program)]) + program


def address_to_output_script(address: str, network="mainnet") -> bytes:
    """
    Return the output script for `address` on `network`.
    Raises ValueError when the address cannot be decoded for that network.
    """
    if not address or address != address.strip():
        raise ValueError("Empty or padded address")
    net = _network_key(network)
    hrp = BECH32_HRP[net]
    if address.lower().startswith(hrp + "1"):
        if address != address.lower() and address != address.upper():
            raise ValueError("Mixed-case bech32 address")
        return _segwit_script(address, net)
    return _base58_script(address, net)
