"""
chainbasis/schemas/wallet.py

Wallet registration/read schemas and the per-wallet outcome of a sync run.
"""

from pydantic import BaseModel, field_validator
from typing import Optional
from datetime import datetime

from chainbasis.constants import ChainType
from chainbasis.schemas.blockchain import force_utc


class WalletCreate(BaseModel):
    chain: ChainType
    address: str
    label: Optional[str] = None

    @field_validator("address")
    def strip_address(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("Wallet address cannot be empty.")
        return v


class WalletRead(BaseModel):
    id: int
    user_id: int
    chain: ChainType
    address: str
    label: Optional[str] = None
    created_at: datetime
    last_synced_at: Optional[datetime] = None

    class Config:
        from_attributes = True

    @field_validator("created_at", "last_synced_at")
    def force_utc_dates(cls, v: datetime | None) -> datetime | None:
        return force_utc(v)


class WalletSyncResult(BaseModel):
    """
    Outcome of syncing one wallet. 'error_code' is the BlockchainError code
    (INVALID_ADDRESS, RATE_LIMIT, NETWORK_ERROR, ...) when status is 'failed',
    or SYNC_ERROR for any other failure.
    """
    wallet_id: int
    chain: ChainType
    address: str
    status: str  # "ok" or "failed"
    error_code: Optional[str] = None
    message: Optional[str] = None
    fetched: int = 0
    created: int = 0
    skipped: int = 0
