"""
chainbasis/services/wallet.py

Wallet registration and lookup, always scoped to an already-authenticated
user_id. Addresses are checked with the chain adapter's is_valid_address(),
which performs no network I/O.
"""

import logging
from datetime import datetime, timezone

from sqlalchemy.orm import Session

from chainbasis.models.wallet import Wallet
from chainbasis.schemas.wallet import WalletCreate
from chainbasis.services.blockchain.base import InvalidAddressError
from chainbasis.services.blockchain.factory import AdapterFactory

logger = logging.getLogger(__name__)


def get_wallets_for_user(db: Session, user_id: int) -> list[Wallet]:
    return (
        db.query(Wallet)
        .filter(Wallet.user_id == user_id)
        .order_by(Wallet.id.asc())
        .all()
    )


def get_wallet_by_id(db: Session, wallet_id: int) -> Wallet | None:
    return db.query(Wallet).filter(Wallet.id == wallet_id).first()


def create_wallet(db: Session, user_id: int, wallet_data: WalletCreate,
                  factory=AdapterFactory) -> Wallet | None:
    """
    Register an address for a user.
    Raises UnsupportedChainError / InvalidAddressError for bad input; returns
    None if the user already registered this address on this chain.
    """
    adapter = factory.create_adapter(wallet_data.chain)
    if not adapter.is_valid_address(wallet_data.address):
        raise InvalidAddressError(wallet_data.address, wallet_data.chain)

    chain = wallet_data.chain.value
    duplicate = (
        db.query(Wallet)
        .filter(
            Wallet.user_id == user_id,
            Wallet.chain == chain,
            Wallet.address == wallet_data.address,
        )
        .first()
    )
    if duplicate:
        return None

    new_wallet = Wallet(
        user_id=user_id,
        chain=chain,
        address=wallet_data.address,
        label=wallet_data.label,
    )
    db.add(new_wallet)
    db.commit()
    db.refresh(new_wallet)
    logger.info(f"Registered {chain} wallet {new_wallet.id} for user {user_id}")
    return new_wallet


def mark_wallet_synced(db: Session, wallet: Wallet, when: datetime = None) -> Wallet:
    wallet.last_synced_at = when or datetime.now(timezone.utc)
    db.commit()
    db.refresh(wallet)
    return wallet
