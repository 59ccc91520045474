"""
chainbasis/services/blockchain/jupiter.py

Extracts swap legs from Jupiter v6 aggregator transactions.

Jupiter emits one Anchor "event CPI" per routed hop: a self-invocation whose
instruction data is
    EVENT_IX_TAG (8 bytes) | SwapEvent discriminator (8 bytes) | borsh payload
with the payload laid out as
    amm: Pubkey | input_mint: Pubkey | input_amount: u64 | output_mint: Pubkey | output_amount: u64

In a jsonParsed transaction these self-invocations show up, unparsed, under
meta.innerInstructions with base58 instruction data.
"""

import hashlib
import logging
import struct
from typing import List, Optional

import base58
from solders.pubkey import Pubkey

logger = logging.getLogger(__name__)

JUPITER_V6_PROGRAM_ID = "JUP6LkbZbjS1jKKwapdHNy74zcZ3tLUZoi5QNyVTaV4"

EVENT_IX_TAG = bytes.fromhex("e445a52e51cb9a1d")
SWAP_EVENT_DISCRIMINATOR = hashlib.sha256(b"event:SwapEvent").digest()[:8]

SWAP_EVENT_LAYOUT = struct.Struct("<32s32sQ32sQ")


class JupiterDecodeError(ValueError):
    """A Jupiter SwapEvent header matched but its payload could not be decoded."""


def decode_swap_event(data: bytes) -> Optional[dict]:
    """
    Decode one event-CPI instruction payload. Returns None when the payload is
    not a SwapEvent at all, raises JupiterDecodeError when it claims to be one
    but is truncated.
    """
    if data[:8] != EVENT_IX_TAG or data[8:16] != SWAP_EVENT_DISCRIMINATOR:
        return None
    body = data[16:]
    if len(body) < SWAP_EVENT_LAYOUT.size:
        raise JupiterDecodeError(
            f"SwapEvent payload is {len(body)} bytes, expected {SWAP_EVENT_LAYOUT.size}"
        )
    amm, input_mint, input_amount, output_mint, output_amount = SWAP_EVENT_LAYOUT.unpack_from(body)
    return {
        "amm": str(Pubkey.from_bytes(amm)),
        "inputMint": str(Pubkey.from_bytes(input_mint)),
        "inputAmount": str(input_amount),
        "outputMint": str(Pubkey.from_bytes(output_mint)),
        "outputAmount": str(output_amount),
    }


def _program_id(instruction: dict, account_keys: List[str]) -> Optional[str]:
    if instruction.get("programId"):
        return instruction["programId"]
    index = instruction.get("programIdIndex")
    if index is not None and index < len(account_keys):
        return account_keys[index]
    return None


def extract_swap_events(tx: dict, account_keys: List[str]) -> List[dict]:
    """All Jupiter SwapEvents in a jsonParsed transaction, in execution order."""
    meta = tx.get("meta") or {}
    events = []
    for group in meta.get("innerInstructions") or []:
        for instruction in group.get("instructions") or []:
            if _program_id(instruction, account_keys) != JUPITER_V6_PROGRAM_ID:
                continue
            data = instruction.get("data")
            if not isinstance(data, str):
                continue
            event = decode_swap_event(base58.b58decode(data))
            if event is not None:
                events.append(event)
    return events


def summarize_swap(events: List[dict], symbol_for_mint) -> List[dict]:
    """
    Collapse a route into the swap attributes recorded on the transaction:
    what went in on the first hop, what came out of the last hop, and how many
    hops it took. Returns [] when there were no events.
    """
    if not events:
        return []
    first, last = events[0], events[-1]
    return [{
        "inMint": first["inputMint"],
        "inAmount": first["inputAmount"],
        "inSymbol": symbol_for_mint(first["inputMint"]),
        "outMint": last["outputMint"],
        "outAmount": last["outputAmount"],
        "outSymbol": symbol_for_mint(last["outputMint"]),
        "legCount": len(events),
        "legs": events,
    }]
