# FILE: chainbasis/services/cost_basis.py

"""
chainbasis/services/cost_basis.py

Lot-matching cost-basis engine (FIFO / LIFO).

For every token symbol, in the order tokens are first seen:
 - Acquisitions (buy, airdrop, reward, mining) become open lots, ordered
   oldest-first for FIFO or newest-first for LIFO.
 - Dispositions (sell, swap, transfer with a negative amount) consume lots in
   the caller's order. A whole lot consumed yields 'disp-{txid}-{index}', a
   partially consumed lot yields 'disp-{txid}-{index}-partial' and is shrunk
   proportionally.
 - A disposition entry's cost_basis_usd holds the realized gain/loss of that
   slice, so realized_gain_loss is the sum over disposed entries and
   cost_basis is the sum over still-open lots.

Implementation Notes:
 - Everything is Decimal; a missing price counts as 0.
 - Disposing more than is held stops silently once lots run out; the
   requested quantity still counts toward total_disposed.
 - A fully consumed lot is zeroed (amount and basis) when it is marked
   disposed so its original basis is not counted as realized gain.
 - The engine is pure: no I/O and no exceptions for bad economics.
"""

import logging
from collections import OrderedDict
from datetime import datetime, timezone
from decimal import Decimal
from typing import List, Optional

from chainbasis.constants import ACQUISITION_TYPES, DISPOSITION_TYPES, CostBasisMethod
from chainbasis.schemas.cost_basis import (
    CostBasisEntry,
    CostBasisOptions,
    CostBasisResult,
    Transaction,
)
from chainbasis.utils.units import calculate_tax_year, to_plain_string

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


class _Entry:
    """Working copy of a CostBasisEntry with Decimal quantities."""

    __slots__ = ("id", "transaction_id", "token_symbol", "amount", "cost_basis_usd",
                 "acquisition_date", "is_disposed", "disposal_txn_id")

    def __init__(self, id, transaction_id, token_symbol, amount, cost_basis_usd,
                 acquisition_date, is_disposed=False, disposal_txn_id=None):
        self.id = id
        self.transaction_id = transaction_id
        self.token_symbol = token_symbol
        self.amount = amount
        self.cost_basis_usd = cost_basis_usd
        self.acquisition_date = acquisition_date
        self.is_disposed = is_disposed
        self.disposal_txn_id = disposal_txn_id

    def to_model(self, method: CostBasisMethod, tax_year: int) -> CostBasisEntry:
        return CostBasisEntry(
            id=self.id,
            transaction_id=self.transaction_id,
            token_symbol=self.token_symbol,
            amount=to_plain_string(self.amount),
            cost_basis_usd=to_plain_string(self.cost_basis_usd),
            acquisition_date=self.acquisition_date,
            method=method,
            tax_year=tax_year,
            is_disposed=self.is_disposed,
            disposal_txn_id=self.disposal_txn_id,
        )


def _type_of(tx: Transaction) -> str:
    return getattr(tx.type, "value", tx.type)


def _is_acquisition(tx: Transaction) -> bool:
    return _type_of(tx) in ACQUISITION_TYPES


def _is_disposition(tx: Transaction) -> bool:
    return _type_of(tx) in DISPOSITION_TYPES and tx.amount.strip().startswith("-")


class CostBasisEngine:

    def calculate_cost_basis(self, transactions: List[Transaction],
                             options: Optional[CostBasisOptions] = None) -> List[CostBasisResult]:
        """
        One CostBasisResult per distinct token_symbol, in first-seen order.
        """
        options = options or CostBasisOptions()
        tax_year = options.tax_year
        if tax_year is None:
            tax_year = calculate_tax_year(datetime.now(timezone.utc), options.jurisdiction)

        by_token = OrderedDict()
        for tx in transactions:
            by_token.setdefault(tx.token_symbol, []).append(tx)

        results = []
        for token_symbol, token_txs in by_token.items():
            results.append(self._calculate_token(token_symbol, token_txs, options.method, tax_year))
        return results

    # ------------------------------------------------------------------
    # Per-token pass
    # ------------------------------------------------------------------

    def _calculate_token(self, token_symbol: str, transactions: List[Transaction],
                         method: CostBasisMethod, tax_year: int) -> CostBasisResult:
        acquisitions = [tx for tx in transactions if _is_acquisition(tx)]
        dispositions = [tx for tx in transactions if _is_disposition(tx)]

        # sorted() is stable, so same-timestamp lots keep input order either way
        ordered = sorted(
            acquisitions,
            key=lambda tx: tx.timestamp,
            reverse=CostBasisMethod(method) == CostBasisMethod.LIFO,
        )

        entries = self._match_lots(ordered, dispositions)

        total_acquired = sum((abs(Decimal(tx.amount)) for tx in acquisitions), ZERO)
        total_disposed = sum((abs(Decimal(tx.amount)) for tx in dispositions), ZERO)
        realized = sum((e.cost_basis_usd for e in entries if e.is_disposed), ZERO)
        open_basis = sum((e.cost_basis_usd for e in entries if not e.is_disposed), ZERO)

        logger.debug(
            f"{token_symbol}: {len(acquisitions)} lots, {len(dispositions)} dispositions, "
            f"realized={realized}"
        )

        return CostBasisResult(
            token_symbol=token_symbol,
            total_acquired=to_plain_string(total_acquired),
            total_disposed=to_plain_string(total_disposed),
            remaining_quantity=to_plain_string(total_acquired - total_disposed),
            realized_gain_loss=to_plain_string(realized),
            cost_basis=to_plain_string(open_basis),
            entries=[e.to_model(method, tax_year) for e in entries],
        )

    def _match_lots(self, acquisitions: List[Transaction],
                    dispositions: List[Transaction]) -> List[_Entry]:
        entries: List[_Entry] = []
        for acq in acquisitions:
            amount = abs(Decimal(acq.amount))
            price = acq.price_usd or ZERO
            entries.append(_Entry(
                id=f"acq-{acq.id}",
                transaction_id=acq.id,
                token_symbol=acq.token_symbol,
                amount=amount,
                cost_basis_usd=amount * price,
                acquisition_date=acq.timestamp,
            ))

        # Shared across dispositions: lots before this index are used up
        index = 0
        for disp in dispositions:
            remaining = abs(Decimal(disp.amount))
            price = disp.price_usd or ZERO

            while remaining > 0 and index < len(entries):
                lot = entries[index]
                if lot.is_disposed:
                    index += 1
                    continue

                available = lot.amount
                unit_cost = lot.cost_basis_usd / available if available else ZERO

                if available <= remaining:
                    entries.append(_Entry(
                        id=f"disp-{disp.id}-{index}",
                        transaction_id=disp.id,
                        token_symbol=disp.token_symbol,
                        amount=-available,
                        cost_basis_usd=(price - unit_cost) * available,
                        acquisition_date=lot.acquisition_date,
                        is_disposed=True,
                        disposal_txn_id=disp.id,
                    ))
                    lot.amount = ZERO
                    lot.cost_basis_usd = ZERO
                    lot.is_disposed = True
                    lot.disposal_txn_id = disp.id
                    remaining -= available
                    index += 1
                else:
                    entries.append(_Entry(
                        id=f"disp-{disp.id}-{index}-partial",
                        transaction_id=disp.id,
                        token_symbol=disp.token_symbol,
                        amount=-remaining,
                        cost_basis_usd=(price - unit_cost) * remaining,
                        acquisition_date=lot.acquisition_date,
                        is_disposed=True,
                        disposal_txn_id=disp.id,
                    ))
                    lot.amount = available - remaining
                    lot.cost_basis_usd = unit_cost * lot.amount
                    remaining = ZERO

            if remaining > 0:
                logger.info(
                    f"Disposition {disp.id} exceeds held {disp.token_symbol}; "
                    f"{to_plain_string(remaining)} left unmatched"
                )
        return entries
