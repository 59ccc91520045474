"""
chainbasis/services/report.py

Runs the cost-basis engine over a wallet's stored transactions and replaces
that wallet's persisted entries with the fresh run.
"""

import logging
from typing import List, Optional

from sqlalchemy.orm import Session

from chainbasis.schemas.cost_basis import CostBasisOptions, CostBasisResult, Transaction
from chainbasis.services.cost_basis import CostBasisEngine
from chainbasis.services.transaction import (
    delete_cost_basis_entries_for_wallet,
    find_transactions_by_wallet,
    save_cost_basis_entries,
)

logger = logging.getLogger(__name__)


def calculate_wallet_cost_basis(db: Session, wallet_id: int,
                                options: Optional[CostBasisOptions] = None,
                                engine: Optional[CostBasisEngine] = None) -> List[CostBasisResult]:
    rows = find_transactions_by_wallet(db, wallet_id)
    transactions = [Transaction.model_validate(row) for row in rows]

    results = (engine or CostBasisEngine()).calculate_cost_basis(transactions, options)

    delete_cost_basis_entries_for_wallet(db, wallet_id)
    for result in results:
        save_cost_basis_entries(db, wallet_id, result.entries)

    logger.info(
        f"Wallet {wallet_id}: cost basis over {len(transactions)} transactions, "
        f"{len(results)} tokens"
    )
    return results
