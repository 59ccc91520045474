"""
chainbasis/services/transaction.py

Persistence for mapped transactions and cost-basis entries.

 - create_transactions() inserts engine-ready rows for one wallet, skipping
   any (hash, token_symbol) the wallet already has, so re-syncing the same
   address range is idempotent.
 - Cost-basis entries are replaced wholesale per wallet: a recalculation
   deletes the previous run's entries before saving the new ones.
"""

import logging
from typing import List, Tuple

from sqlalchemy.orm import Session

from chainbasis.models.transaction import CostBasisEntry, Transaction
from chainbasis.schemas import cost_basis as schemas

logger = logging.getLogger(__name__)


# ------------------------------------------------------------------------------
# Transactions
# ------------------------------------------------------------------------------
def find_transactions_by_wallet(db: Session, wallet_id: int) -> List[Transaction]:
    """
    All Transactions for a wallet in chronological order (id breaks ties).
    """
    return (
        db.query(Transaction)
        .filter(Transaction.wallet_id == wallet_id)
        .order_by(Transaction.timestamp.asc(), Transaction.id.asc())
        .all()
    )


def create_transactions(db: Session, wallet_id: int,
                        transactions: List[schemas.Transaction]) -> Tuple[List[Transaction], int]:
    """
    Insert new rows and return (created_rows, skipped_count). A row is skipped
    when the wallet already holds the same hash for the same token, including
    duplicates inside the batch itself.
    """
    existing = {
        (tx_hash, symbol)
        for tx_hash, symbol in db.query(Transaction.hash, Transaction.token_symbol)
        .filter(Transaction.wallet_id == wallet_id)
        .all()
    }

    created = []
    skipped = 0
    for tx in transactions:
        key = (tx.hash, tx.token_symbol)
        if key in existing:
            skipped += 1
            continue
        existing.add(key)
        row = Transaction(
            wallet_id=wallet_id,
            hash=tx.hash,
            chain=getattr(tx.chain, "value", tx.chain),
            type=getattr(tx.type, "value", tx.type),
            token_symbol=tx.token_symbol,
            token_address=tx.token_address,
            amount=tx.amount,
            price_usd=tx.price_usd,
            timestamp=tx.timestamp,
            block_number=tx.block_number,
        )
        db.add(row)
        created.append(row)

    db.commit()
    for row in created:
        db.refresh(row)

    if skipped:
        logger.info(f"Wallet {wallet_id}: skipped {skipped} already-stored transactions")
    return created, skipped

# ------------------------------------------------------------------------------
# Cost-basis entries
# ------------------------------------------------------------------------------
def save_cost_basis_entries(db: Session, wallet_id: int,
                            entries: List[schemas.CostBasisEntry]) -> List[CostBasisEntry]:
    rows = [
        CostBasisEntry(
            wallet_id=wallet_id,
            entry_ref=entry.id,
            transaction_id=entry.transaction_id,
            token_symbol=entry.token_symbol,
            amount=entry.amount,
            cost_basis_usd=entry.cost_basis_usd,
            acquisition_date=entry.acquisition_date,
            method=getattr(entry.method, "value", entry.method),
            tax_year=entry.tax_year,
            is_disposed=entry.is_disposed,
            disposal_txn_id=entry.disposal_txn_id,
        )
        for entry in entries
    ]
    db.add_all(rows)
    db.commit()
    return rows


def delete_cost_basis_entries_for_wallet(db: Session, wallet_id: int) -> int:
    """
    Remove every stored entry for the wallet; returns how many were deleted.
    """
    count = (
        db.query(CostBasisEntry)
        .filter(CostBasisEntry.wallet_id == wallet_id)
        .delete(synchronize_session=False)
    )
    db.commit()
    logger.debug(f"Deleted {count} cost-basis entries for wallet {wallet_id}")
    return count
