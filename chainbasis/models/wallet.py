"""
chainbasis/models/wallet.py

A Wallet is one on-chain address registered by a user on one chain. The user
itself lives behind the authentication boundary; here we only keep the
already-authenticated user_id that scopes every wallet query.

Wallet => One-to-many => Transaction
Wallet => One-to-many => CostBasisEntry
"""

from datetime import datetime, timezone
from sqlalchemy import Column, Integer, String, UniqueConstraint
from sqlalchemy.orm import relationship

from chainbasis.database import Base, UTCDateTime


def _utcnow():
    return datetime.now(timezone.utc)


class Wallet(Base):
    __tablename__ = "wallets"
    __table_args__ = (
        UniqueConstraint("user_id", "chain", "address", name="uq_wallet_user_chain_address"),
    )

    # ---------------------------------------------------------------------
    # Primary Key & Fields
    # ---------------------------------------------------------------------
    id = Column(Integer, primary_key=True, index=True)

    # Owner, as handed to us by the auth layer
    user_id = Column(Integer, nullable=False, index=True)

    # "ethereum", "solana" or "bitcoin"
    chain = Column(String, nullable=False)

    address = Column(String, nullable=False)

    label = Column(String, nullable=True, doc="Optional display name, e.g. 'Cold storage'.")

    created_at = Column(UTCDateTime, default=_utcnow, nullable=False)

    last_synced_at = Column(
        UTCDateTime,
        nullable=True,
        doc="Set after a successful sync; None until the first one."
    )

    # ---------------------------------------------------------------------
    # Relationships
    # ---------------------------------------------------------------------
    transactions = relationship(
        "Transaction",
        back_populates="wallet",
        cascade="all, delete-orphan",
        doc="Mapped cost-basis transactions ingested for this wallet."
    )

    cost_basis_entries = relationship(
        "CostBasisEntry",
        back_populates="wallet",
        cascade="all, delete-orphan",
        doc="Lot and disposition records from the last cost-basis run."
    )

    def __repr__(self):
        return f"<Wallet(id={self.id}, chain={self.chain}, address={self.address})>"
