"""
transaction.py

Persistence models for the cost-basis side of the pipeline:
1) Transaction (one mapped economic event for one wallet)
2) CostBasisEntry (a lot or a lot consumption produced by the engine)

Token quantities are stored as decimal strings rather than Numeric columns:
ERC-20 amounts carry up to 18 fractional digits and SQLite would round them
through a float.
"""

from datetime import datetime, timezone
from sqlalchemy import (
    Column,
    Integer,
    String,
    Boolean,
    Numeric,
    ForeignKey,
    UniqueConstraint,
)
from sqlalchemy.orm import relationship

from chainbasis.database import Base, UTCDateTime


def _utcnow():
    return datetime.now(timezone.utc)

# ------------------------------------------------------------------------
# TRANSACTION
# ------------------------------------------------------------------------

class Transaction(Base):
    """
    One row per economic event for one wallet, already translated into the
    cost-basis vocabulary ('buy', 'sell', 'swap', 'transfer', 'airdrop',
    'reward', 'fee'). 'amount' is signed: negative means a disposition.

    The same on-chain hash may legitimately appear under several wallets (a
    transfer between two of the user's own wallets), so uniqueness is
    (wallet_id, hash, token_symbol).
    """

    __tablename__ = "transactions"
    __table_args__ = (
        UniqueConstraint("wallet_id", "hash", "token_symbol", name="uq_txn_wallet_hash_token"),
    )

    id = Column(Integer, primary_key=True, index=True)

    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)

    hash = Column(String, nullable=False, doc="Chain-native tx hash or Solana signature.")
    chain = Column(String, nullable=False)

    type = Column(String, nullable=False, doc="Cost-basis type: e.g. 'buy', 'sell', 'swap'")

    token_symbol = Column(String, nullable=False)
    token_address = Column(String, nullable=True, doc="Contract address or SPL mint, if any.")

    amount = Column(
        String,
        nullable=False,
        doc="Signed token-unit decimal string, e.g. '-0.5' for an outgoing leg."
    )

    price_usd = Column(
        Numeric(28, 12),
        nullable=True,
        doc="USD price per token at 'timestamp', when a lookup succeeded."
    )

    timestamp = Column(UTCDateTime, nullable=False)
    block_number = Column(Integer, nullable=True)

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    wallet = relationship(
        "Wallet",
        back_populates="transactions",
        doc="Wallet this event was ingested for."
    )

    def __repr__(self):
        return (
            f"<Transaction(id={self.id}, type={self.type}, token={self.token_symbol}, "
            f"amount={self.amount}, timestamp={self.timestamp})>"
        )

# ------------------------------------------------------------------------
# COST BASIS ENTRY
# ------------------------------------------------------------------------

class CostBasisEntry(Base):
    """
    A persisted engine entry. 'entry_ref' is the engine's own id
    ('acq-12', 'disp-40-0-partial', ...). For an open lot cost_basis_usd is the
    basis of the remaining quantity; for a disposition record it holds the
    realized gain/loss of that slice.
    """

    __tablename__ = "cost_basis_entries"

    id = Column(Integer, primary_key=True)

    wallet_id = Column(Integer, ForeignKey("wallets.id"), nullable=False, index=True)

    entry_ref = Column(String, nullable=False)
    transaction_id = Column(String, nullable=False, doc="Id of the originating Transaction.")

    token_symbol = Column(String, nullable=False)
    amount = Column(String, nullable=False)
    cost_basis_usd = Column(String, nullable=False)

    acquisition_date = Column(UTCDateTime, nullable=False)
    method = Column(String(4), nullable=False, doc="'FIFO' or 'LIFO'")
    tax_year = Column(Integer, nullable=False)

    is_disposed = Column(Boolean, default=False, nullable=False)
    disposal_txn_id = Column(String, nullable=True)

    wallet = relationship(
        "Wallet",
        back_populates="cost_basis_entries",
    )

    def __repr__(self):
        return (
            f"<CostBasisEntry(ref={self.entry_ref}, token={self.token_symbol}, "
            f"amount={self.amount}, basis={self.cost_basis_usd}, disposed={self.is_disposed})>"
        )
