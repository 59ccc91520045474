"""
chainbasis/services/wallet_sync.py

Pulls on-chain history for every wallet a user registered and stores it as
engine-ready transactions.

For each wallet:
  1) create + initialize the chain adapter (fresh per wallet)
  2) get_transactions() -> parse_transaction() for each raw record
  3) map to signed cost-basis rows, sorted chronologically
  4) insert, skipping rows already stored, then stamp last_synced_at

Any error on one wallet is captured in that wallet's WalletSyncResult
(the BlockchainError code, or SYNC_ERROR for anything else) and the loop
moves on. A single record that fails to parse is reported to the
DiagnosticSink and skipped.
"""

import logging
from typing import Callable, List, Optional

from pydantic import ValidationError
from sqlalchemy.orm import Session

from chainbasis.config import adapter_config_for
from chainbasis.models.wallet import Wallet
from chainbasis.schemas.blockchain import AdapterConfig, TransactionQuery
from chainbasis.schemas.wallet import WalletSyncResult
from chainbasis.services.blockchain.base import BlockchainError, DiagnosticSink, report_diagnostic
from chainbasis.services.blockchain.factory import AdapterFactory
from chainbasis.services.transaction import create_transactions
from chainbasis.services.transaction_mapper import to_cost_basis_transaction
from chainbasis.services.wallet import get_wallets_for_user, mark_wallet_synced

logger = logging.getLogger(__name__)

# error_code for failures that are not a BlockchainError (database, malformed data)
SYNC_ERROR_CODE = "SYNC_ERROR"


async def sync_wallet(db: Session, wallet: Wallet, factory=AdapterFactory, price_lookup=None,
                      diagnostics: Optional[DiagnosticSink] = None,
                      query: Optional[TransactionQuery] = None,
                      config_for: Callable[..., AdapterConfig] = adapter_config_for) -> WalletSyncResult:
    result = WalletSyncResult(
        wallet_id=wallet.id,
        chain=wallet.chain,
        address=wallet.address,
        status="ok",
    )

    adapter = None
    try:
        adapter = factory.create_adapter(wallet.chain, price_lookup=price_lookup, diagnostics=diagnostics)
        await adapter.initialize(config_for(wallet.chain))

        raw_transactions = await adapter.get_transactions(wallet.address, query)
        result.fetched = len(raw_transactions)

        mapped = []
        for raw_tx in raw_transactions:
            try:
                parsed = await adapter.parse_transaction(raw_tx)
                mapped.append(to_cost_basis_transaction(parsed, wallet.id, wallet.address))
            except (ValidationError, KeyError, TypeError, ValueError) as exc:
                report_diagnostic(diagnostics, adapter.chain, "parse", raw_tx.hash, exc)

        mapped.sort(key=lambda tx: tx.timestamp)
        created, skipped = create_transactions(db, wallet.id, mapped)
        result.created = len(created)
        result.skipped = skipped
        mark_wallet_synced(db, wallet)
        logger.info(
            f"Synced {wallet.chain} wallet {wallet.id}: fetched={result.fetched} "
            f"created={result.created} skipped={result.skipped}"
        )
    except BlockchainError as exc:
        db.rollback()
        logger.error(f"Sync failed for {wallet.chain} wallet {wallet.id}: [{exc.code}] {exc.message}")
        result.status = "failed"
        result.error_code = exc.code
        result.message = exc.message
    except Exception as exc:
        db.rollback()
        logger.exception(f"Unexpected error syncing {wallet.chain} wallet {wallet.id}")
        result.status = "failed"
        result.error_code = SYNC_ERROR_CODE
        result.message = str(exc) or exc.__class__.__name__
    finally:
        close = getattr(adapter, "close", None)
        if close is not None:
            await close()

    return result


async def sync_user_wallets(db: Session, user_id: int, factory=AdapterFactory, price_lookup=None,
                            diagnostics: Optional[DiagnosticSink] = None,
                            query: Optional[TransactionQuery] = None,
                            config_for: Callable[..., AdapterConfig] = adapter_config_for
                            ) -> List[WalletSyncResult]:
    """
    Sync every wallet of `user_id`, one at a time, returning one result per
    wallet in registration order.
    """
    results = []
    for wallet in get_wallets_for_user(db, user_id):
        results.append(await sync_wallet(
            db,
            wallet,
            factory=factory,
            price_lookup=price_lookup,
            diagnostics=diagnostics,
            query=query,
            config_for=config_for,
        ))

    failed = sum(1 for r in results if r.status == "failed")
    logger.info(f"User {user_id}: synced {len(results) - failed}/{len(results)} wallets")
    return results
