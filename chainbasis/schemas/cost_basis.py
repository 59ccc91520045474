"""
chainbasis/schemas/cost_basis.py

Input and output shapes of the cost-basis engine.

- Transaction: one mapped economic event (signed token-unit amount)
- CostBasisOptions: method, tax year, jurisdiction
- CostBasisEntry: a lot, or one lot consumption by a disposition
- CostBasisResult: per-token totals plus every entry for that token
"""

from pydantic import BaseModel, Field, field_validator
from typing import Optional, List
from datetime import datetime
from decimal import Decimal, InvalidOperation

from chainbasis.constants import ChainType, CostBasisTxType, CostBasisMethod, Jurisdiction
from chainbasis.schemas.blockchain import force_utc


def validate_decimal_string(value: str) -> str:
    """Token-unit amounts are decimal strings, e.g. '1.0' or '-0.5'."""
    try:
        parsed = Decimal(value)
    except InvalidOperation:
        raise ValueError(f"Not a decimal string: {value!r}")
    if not parsed.is_finite():
        raise ValueError(f"Not a finite decimal: {value!r}")
    return value


class Transaction(BaseModel):
    """
    Cost-basis engine input. Negative 'amount' means tokens left the wallet.
    """
    id: str
    wallet_id: Optional[str] = None
    hash: str
    chain: ChainType
    type: CostBasisTxType
    token_symbol: str
    token_address: Optional[str] = None
    amount: str
    price_usd: Optional[Decimal] = None
    timestamp: datetime
    block_number: Optional[int] = None

    class Config:
        from_attributes = True

    @field_validator("id", "wallet_id", mode="before")
    def coerce_ids(cls, v):
        # ORM rows carry integer primary keys
        return str(v) if v is not None else None

    @field_validator("amount")
    def validate_amount(cls, v: str) -> str:
        return validate_decimal_string(v)

    @field_validator("timestamp")
    def force_utc_timestamp(cls, v: datetime) -> datetime:
        return force_utc(v)


class CostBasisOptions(BaseModel):
    method: CostBasisMethod = CostBasisMethod.FIFO
    tax_year: Optional[int] = None
    jurisdiction: Jurisdiction = Jurisdiction.US


class CostBasisEntry(BaseModel):
    """
    amount > 0: remaining quantity of an open lot.
    amount < 0: quantity one disposition took from one lot; cost_basis_usd is
    then the realized gain/loss of that slice, not a basis.
    """
    id: str
    transaction_id: str
    token_symbol: str
    amount: str
    cost_basis_usd: str
    acquisition_date: datetime
    method: CostBasisMethod
    tax_year: int
    is_disposed: bool = False
    disposal_txn_id: Optional[str] = None


class CostBasisResult(BaseModel):
    token_symbol: str
    total_acquired: str
    total_disposed: str
    remaining_quantity: str
    realized_gain_loss: str
    cost_basis: str
    entries: List[CostBasisEntry] = Field(default_factory=list)
