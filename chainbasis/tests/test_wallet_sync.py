"""
chainbasis/tests/test_wallet_sync.py

sync_wallet / sync_user_wallets with scripted adapters standing in for the
chain providers.
"""

import asyncio
from datetime import datetime, timezone
from decimal import Decimal

import pytest
from sqlalchemy.exc import OperationalError

from chainbasis.constants import AdapterTxType, ChainType, TransactionStatus
from chainbasis.models.wallet import Wallet
from chainbasis.schemas.blockchain import AdapterConfig, ParsedTransaction, RawTransaction
from chainbasis.services.blockchain.base import DiagnosticSink, RateLimitError
from chainbasis.services.transaction import find_transactions_by_wallet
from chainbasis.services import wallet_sync
from chainbasis.services.wallet_sync import SYNC_ERROR_CODE, sync_user_wallets, sync_wallet

ETH_ADDRESS = "0x742d35Cc6634C0532925a3b844Bc454e4438f44e"
BTC_ADDRESS = "1A1zP1eP5QGefi2DMPTfTL5SLmv7DivfNa"
COUNTERPARTY = "0x" + "22" * 20


def raw(tx_hash, sender, day):
    return RawTransaction(
        hash=tx_hash,
        timestamp=int(datetime(2024, 1, day, tzinfo=timezone.utc).timestamp() * 1000),
        from_address=sender,
        value="1000000000000000000",
    )


class ScriptedAdapter:
    """Returns canned raw transactions; hashes listed in `broken` fail to parse."""

    def __init__(self, chain, transactions=None, error=None, broken=()):
        self.chain = chain
        self.transactions = transactions or []
        self.error = error
        self.broken = set(broken)
        self.config = None
        self.closed = False

    async def initialize(self, config):
        self.config = config

    async def get_transactions(self, address, query=None):
        if self.error is not None:
            raise self.error
        return list(self.transactions)

    async def parse_transaction(self, raw_tx):
        if raw_tx.hash in self.broken:
            raise ValueError(f"cannot decode {raw_tx.hash}")
        return ParsedTransaction(
            hash=raw_tx.hash,
            chain=self.chain,
            type=AdapterTxType.TRANSFER,
            from_address=raw_tx.from_address,
            token_symbol="ETH",
            amount=raw_tx.value,
            decimals=18,
            price_usd=Decimal("2000"),
            timestamp=datetime.fromtimestamp(raw_tx.timestamp / 1000, tz=timezone.utc),
            status=TransactionStatus.SUCCESS,
        )

    async def close(self):
        self.closed = True


class ScriptedFactory:
    def __init__(self, adapters):
        self.adapters = adapters
        self.created = []

    def create_adapter(self, chain, price_lookup=None, diagnostics=None):
        adapter = self.adapters[ChainType(chain)]
        self.created.append(adapter)
        return adapter


def fake_config(chain):
    return AdapterConfig(rpc_url=f"https://{chain}.invalid", retry_delay_ms=0)


def run_sync(db, wallet, adapter, diagnostics=None):
    factory = ScriptedFactory({ChainType(wallet.chain): adapter})
    return asyncio.run(sync_wallet(db, wallet, factory=factory, diagnostics=diagnostics, config_for=fake_config))


@pytest.fixture()
def eth_wallet(test_db):
    wallet = Wallet(user_id=1, chain="ethereum", address=ETH_ADDRESS)
    test_db.add(wallet)
    test_db.commit()
    test_db.refresh(wallet)
    return wallet


@pytest.fixture()
def btc_wallet(test_db):
    wallet = Wallet(user_id=1, chain="bitcoin", address=BTC_ADDRESS)
    test_db.add(wallet)
    test_db.commit()
    test_db.refresh(wallet)
    return wallet


class TestSyncWallet:

    def test_stores_mapped_rows(self, test_db, eth_wallet):
        adapter = ScriptedAdapter(ChainType.ETHEREUM, [
            raw("0xb", COUNTERPARTY, day=3),
            raw("0xa", ETH_ADDRESS, day=1),
        ])

        result = run_sync(test_db, eth_wallet, adapter)

        assert result.status == "ok"
        assert (result.fetched, result.created, result.skipped) == (2, 2, 0)
        assert adapter.config.rpc_url == "https://ethereum.invalid"
        assert adapter.closed is True

        rows = find_transactions_by_wallet(test_db, eth_wallet.id)
        assert [(row.hash, row.type, row.amount) for row in rows] == [
            ("0xa", "sell", "-1"),
            ("0xb", "buy", "1"),
        ]
        assert eth_wallet.last_synced_at is not None

    def test_resync_is_idempotent(self, test_db, eth_wallet):
        adapter = ScriptedAdapter(ChainType.ETHEREUM, [raw("0xa", ETH_ADDRESS, day=1)])
        run_sync(test_db, eth_wallet, adapter)
        result = run_sync(test_db, eth_wallet, adapter)

        assert (result.created, result.skipped) == (0, 1)
        assert len(find_transactions_by_wallet(test_db, eth_wallet.id)) == 1

    def test_parse_failure_is_reported_and_skipped(self, test_db, eth_wallet):
        sink = DiagnosticSink()
        adapter = ScriptedAdapter(
            ChainType.ETHEREUM,
            [raw("0xa", ETH_ADDRESS, day=1), raw("0xbad", ETH_ADDRESS, day=2)],
            broken={"0xbad"},
        )

        result = run_sync(test_db, eth_wallet, adapter, diagnostics=sink)

        assert result.status == "ok"
        assert (result.fetched, result.created) == (2, 1)
        (diagnostic,) = sink.for_stage("parse")
        assert diagnostic.reference == "0xbad"

    def test_adapter_error_is_captured(self, test_db, btc_wallet):
        adapter = ScriptedAdapter(ChainType.BITCOIN, error=RateLimitError("GET /addrs: 429", ChainType.BITCOIN))

        result = run_sync(test_db, btc_wallet, adapter)

        assert result.status == "failed"
        assert result.error_code == "RATE_LIMIT"
        assert result.message == "GET /addrs: 429"
        assert adapter.closed is True
        assert btc_wallet.last_synced_at is None

    def test_unexpected_error_is_captured(self, test_db, eth_wallet):
        adapter = ScriptedAdapter(ChainType.ETHEREUM, error=KeyError("transactionHash"))

        result = run_sync(test_db, eth_wallet, adapter)

        assert result.status == "failed"
        assert result.error_code == SYNC_ERROR_CODE
        assert "transactionHash" in result.message
        assert adapter.closed is True
        assert eth_wallet.last_synced_at is None

    def test_database_error_is_captured(self, test_db, eth_wallet, monkeypatch):
        def failing_insert(db, wallet_id, transactions):
            raise OperationalError("INSERT INTO transactions", {}, Exception("database is locked"))

        monkeypatch.setattr(wallet_sync, "create_transactions", failing_insert)
        adapter = ScriptedAdapter(ChainType.ETHEREUM, [raw("0xa", ETH_ADDRESS, day=1)])

        result = run_sync(test_db, eth_wallet, adapter)

        assert result.status == "failed"
        assert result.error_code == SYNC_ERROR_CODE
        assert result.fetched == 1
        assert adapter.closed is True
        assert find_transactions_by_wallet(test_db, eth_wallet.id) == []


class TestSyncUserWallets:

    def test_one_failure_does_not_stop_the_rest(self, test_db, btc_wallet, eth_wallet):
        factory = ScriptedFactory({
            ChainType.BITCOIN: ScriptedAdapter(
                ChainType.BITCOIN, error=RateLimitError("throttled", ChainType.BITCOIN)
            ),
            ChainType.ETHEREUM: ScriptedAdapter(ChainType.ETHEREUM, [raw("0xa", ETH_ADDRESS, day=1)]),
        })

        results = asyncio.run(sync_user_wallets(test_db, 1, factory=factory, config_for=fake_config))

        assert [(r.chain, r.status) for r in results] == [
            (ChainType.BITCOIN, "failed"),
            (ChainType.ETHEREUM, "ok"),
        ]
        assert results[1].created == 1
        assert len(find_transactions_by_wallet(test_db, eth_wallet.id)) == 1

    def test_unexpected_failure_does_not_stop_the_rest(self, test_db, btc_wallet, eth_wallet):
        factory = ScriptedFactory({
            ChainType.BITCOIN: ScriptedAdapter(
                ChainType.BITCOIN, error=TypeError("'NoneType' object is not iterable")
            ),
            ChainType.ETHEREUM: ScriptedAdapter(ChainType.ETHEREUM, [raw("0xa", ETH_ADDRESS, day=1)]),
        })

        results = asyncio.run(sync_user_wallets(test_db, 1, factory=factory, config_for=fake_config))

        assert [(r.chain, r.status, r.error_code) for r in results] == [
            (ChainType.BITCOIN, "failed", SYNC_ERROR_CODE),
            (ChainType.ETHEREUM, "ok", None),
        ]
        assert len(find_transactions_by_wallet(test_db, eth_wallet.id)) == 1

    def test_user_without_wallets(self, test_db):
        factory = ScriptedFactory({})
        assert asyncio.run(sync_user_wallets(test_db, 42, factory=factory, config_for=fake_config)) == []
        assert factory.created == []
