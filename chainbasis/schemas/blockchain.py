"""
chainbasis/schemas/blockchain.py

Pydantic (v2) schemas shared by the chain adapters:

- AdapterConfig: endpoint + retry settings handed to initialize()
- TransactionQuery: block/date bounds and paging for get_transactions()
- RawTransaction: chain-native record as fetched, before interpretation
- ParsedTransaction: canonical, chain-agnostic record produced by parse_transaction()
- WalletBalance: native or token balance in base units
- TokenPrice: one USD quote returned by a PriceLookup
- Diagnostic: a swallowed, non-fatal failure recorded during ingestion

Amount fields are base-unit integer strings (wei, lamports, satoshis) and are
validated as such; they never pass through float.
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, Dict, Any
from datetime import datetime, timezone
from decimal import Decimal

from chainbasis.constants import ChainType, TransactionStatus, AdapterTxType, Network

# -------------------------------------------------
# CUSTOM VALIDATORS
# -------------------------------------------------

def validate_base_units(value: Optional[str]) -> Optional[str]:
    """
    Base-unit amounts must be plain integer strings. A leading '-' is allowed
    for raw chain values that carry a signed delta.
    """
    if value is None:
        return None
    digits = value[1:] if value.startswith("-") else value
    if not digits.isdigit():
        raise ValueError(f"Amount must be a base-unit integer string, got {value!r}")
    return value


def force_utc(v: Optional[datetime]) -> Optional[datetime]:
    if v is None:
        return None
    if v.tzinfo is None:
        return v.replace(tzinfo=timezone.utc)
    return v.astimezone(timezone.utc)

# -------------------------------------------------
# ADAPTER SETTINGS
# -------------------------------------------------

class AdapterConfig(BaseModel):
    rpc_url: str
    api_key: Optional[str] = None
    network: Network = Network.MAINNET
    rate_limit_ms: int = Field(default=0, ge=0, description="Delay between successive requests.")
    max_retries: int = Field(default=3, ge=0)
    retry_delay_ms: int = Field(default=750, ge=0)
    timeout_seconds: float = Field(default=30.0, gt=0)


class TransactionQuery(BaseModel):
    """
    Optional bounds for get_transactions(). Ethereum honours block bounds
    directly; Solana and Bitcoin apply date bounds to provider timestamps.
    """
    from_block: Optional[int] = Field(default=None, ge=0)
    to_block: Optional[int] = Field(default=None, ge=0)
    from_date: Optional[datetime] = None
    to_date: Optional[datetime] = None
    limit: Optional[int] = Field(default=None, gt=0)
    offset: int = Field(default=0, ge=0)

    @field_validator("from_date", "to_date")
    def force_utc_dates(cls, v: datetime | None) -> datetime | None:
        return force_utc(v)

# -------------------------------------------------
# TRANSACTIONS
# -------------------------------------------------

class RawTransaction(BaseModel):
    hash: str
    timestamp: int = Field(..., description="Epoch milliseconds.")
    from_address: str = Field(..., alias="from")
    to: Optional[str] = None
    value: Optional[str] = None
    fee: Optional[str] = None
    status: TransactionStatus = TransactionStatus.SUCCESS
    block_number: Optional[int] = None
    raw_data: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @field_validator("value", "fee")
    def validate_amounts(cls, v: str | None) -> str | None:
        return validate_base_units(v)


class ParsedTransaction(BaseModel):
    """
    Canonical record: exactly one per (chain, hash). 'amount' is the
    wallet-relative magnitude in base units; direction lives in
    metadata['direction'] ('in' / 'out') when the adapter knows it.
    """
    hash: str
    chain: ChainType
    type: AdapterTxType
    from_address: str = Field(..., alias="from")
    to: Optional[str] = None
    token_symbol: str
    token_address: Optional[str] = None
    amount: str
    decimals: Optional[int] = None
    price_usd: Optional[Decimal] = None
    fee_amount: Optional[str] = None
    block_number: Optional[int] = None
    timestamp: datetime
    status: TransactionStatus
    metadata: Dict[str, Any] = Field(default_factory=dict)

    class Config:
        populate_by_name = True

    @field_validator("amount")
    def validate_amount(cls, v: str) -> str:
        if v.startswith("-"):
            raise ValueError("Canonical amount is a magnitude; direction goes in metadata.")
        return validate_base_units(v)

    @field_validator("fee_amount")
    def validate_fee_amount(cls, v: str | None) -> str | None:
        return validate_base_units(v)

    @field_validator("timestamp")
    def force_utc_timestamp(cls, v: datetime) -> datetime:
        return force_utc(v)

# -------------------------------------------------
# BALANCES, PRICES, DIAGNOSTICS
# -------------------------------------------------

class WalletBalance(BaseModel):
    address: str
    chain: ChainType
    token_symbol: str
    token_address: Optional[str] = None
    balance: str
    decimals: int
    price_usd: Optional[Decimal] = None
    value_usd: Optional[Decimal] = None

    @field_validator("balance")
    def validate_balance(cls, v: str) -> str:
        return validate_base_units(v)


class TokenPrice(BaseModel):
    symbol: str
    price: Decimal
    timestamp: int
    source: str = "coingecko"


class Diagnostic(BaseModel):
    chain: ChainType
    stage: str  # e.g. "jupiter", "parse", "fetch", "price"
    reference: Optional[str] = None
    message: str
