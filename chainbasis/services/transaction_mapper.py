"""
chainbasis/services/transaction_mapper.py

Bridges adapter output and the cost-basis engine: translates the adapter
vocabulary (transfer, swap, stake, ...) into the cost-basis vocabulary (buy,
sell, swap, ...) and turns a ParsedTransaction into a signed, token-unit
Transaction for one wallet.
"""

import logging
from typing import Optional

from chainbasis.constants import AdapterTxType, ChainType, CostBasisTxType
from chainbasis.schemas.blockchain import ParsedTransaction
from chainbasis.schemas.cost_basis import Transaction
from chainbasis.utils.units import from_wei

logger = logging.getLogger(__name__)

_FIXED_MAPPING = {
    AdapterTxType.SWAP: CostBasisTxType.SWAP,
    AdapterTxType.STAKE: CostBasisTxType.BUY,
    AdapterTxType.DEPOSIT: CostBasisTxType.BUY,
    AdapterTxType.UNSTAKE: CostBasisTxType.SELL,
    AdapterTxType.WITHDRAW: CostBasisTxType.SELL,
    AdapterTxType.MINT: CostBasisTxType.AIRDROP,
    AdapterTxType.CLAIM: CostBasisTxType.AIRDROP,
    AdapterTxType.BURN: CostBasisTxType.FEE,
}

# Rows of these types carry a negative amount when tokens left the wallet
_SIGNED_WHEN_OUTGOING = {CostBasisTxType.SWAP, CostBasisTxType.TRANSFER, CostBasisTxType.FEE}


def map_transaction_type(adapter_type, is_outgoing: bool) -> CostBasisTxType:
    """
    transfer and unknown follow direction (sell out, buy in); everything else
    maps to a fixed cost-basis type.
    """
    adapter_type = AdapterTxType(adapter_type)
    mapped = _FIXED_MAPPING.get(adapter_type)
    if mapped is not None:
        return mapped
    return CostBasisTxType.SELL if is_outgoing else CostBasisTxType.BUY


def is_outgoing_for(parsed: ParsedTransaction, wallet_address: str) -> bool:
    direction = (parsed.metadata or {}).get("direction")
    if direction in ("in", "out"):
        return direction == "out"
    sender = parsed.from_address or ""
    if ChainType(parsed.chain) == ChainType.ETHEREUM:
        return sender.lower() == (wallet_address or "").lower()
    return sender == wallet_address


def to_cost_basis_transaction(parsed: ParsedTransaction, wallet_id, wallet_address: str,
                              id: Optional[str] = None) -> Transaction:
    """
    Build the engine's input row for one wallet. The amount is converted from
    base units to token units and signed: negative for sells and for outgoing
    swap/transfer/fee rows, never for acquisitions.
    """
    outgoing = is_outgoing_for(parsed, wallet_address)
    tx_type = map_transaction_type(parsed.type, outgoing)

    amount = from_wei(parsed.amount, parsed.decimals or 0)
    negative = tx_type == CostBasisTxType.SELL or (outgoing and tx_type in _SIGNED_WHEN_OUTGOING)
    if negative and amount != "0":
        amount = f"-{amount}"

    chain_value = getattr(parsed.chain, "value", parsed.chain)
    return Transaction(
        id=id or f"{chain_value}:{parsed.hash}",
        wallet_id=wallet_id,
        hash=parsed.hash,
        chain=parsed.chain,
        type=tx_type,
        token_symbol=parsed.token_symbol,
        token_address=parsed.token_address,
        amount=amount,
        price_usd=parsed.price_usd,
        timestamp=parsed.timestamp,
        block_number=parsed.block_number,
    )
