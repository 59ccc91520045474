"""
chainbasis/services/blockchain/bitcoin.py

Read-only Bitcoin adapter over a BlockCypher-style REST indexer:
    GET /addrs/{address}/full     transaction history with inputs/outputs,
                                  paged with hasMore + before={lowest height}
    GET /addrs/{address}/balance  confirmed balance in satoshis
    GET /txs/{hash}               one transaction (404 -> None)
    GET /                         chain tip ('height')

Bitcoin has no single sender/recipient, so each transaction is reduced to the
wallet's net satoshi change: outputs paying the wallet minus inputs it spent.
"""

import logging
from datetime import datetime, timezone
from typing import List, Optional

import httpx
from dateutil import parser as date_parser

from chainbasis.constants import AdapterTxType, BTC_DECIMALS, ChainType, TransactionStatus
from chainbasis.schemas.blockchain import (
    AdapterConfig,
    ParsedTransaction,
    RawTransaction,
    TransactionQuery,
    WalletBalance,
)
from chainbasis.services.blockchain.base import (
    AlreadyInitializedError,
    DiagnosticSink,
    InvalidAddressError,
    NetworkError,
    NotInitializedError,
    RateLimitError,
    fetch_price_usd,
    parse_retry_after,
    report_diagnostic,
    retry_on_rate_limit,
)
from chainbasis.utils.bitcoin_address import address_to_output_script

logger = logging.getLogger(__name__)

DEFAULT_TX_LIMIT = 50


def net_value_for_address(tx: dict, address: str) -> int:
    """Σ outputs to `address` − Σ inputs spent from `address`, in satoshis."""
    received = sum(
        int(output.get("value") or 0)
        for output in tx.get("outputs") or []
        if address in (output.get("addresses") or [])
    )
    spent = sum(
        int(tx_input.get("output_value") or 0)
        for tx_input in tx.get("inputs") or []
        if address in (tx_input.get("addresses") or [])
    )
    return received - spent


def first_foreign_output(tx: dict, address: str) -> Optional[str]:
    for output in tx.get("outputs") or []:
        addresses = output.get("addresses") or []
        if addresses and addresses[0] != address:
            return addresses[0]
    return None


def tx_timestamp_ms(tx: dict) -> int:
    stamp = tx.get("confirmed") or tx.get("received")
    if not stamp:
        return int(datetime.now(timezone.utc).timestamp() * 1000)
    moment = date_parser.isoparse(stamp)
    if moment.tzinfo is None:
        moment = moment.replace(tzinfo=timezone.utc)
    return int(moment.timestamp() * 1000)


class BitcoinAdapter:
    chain = ChainType.BITCOIN

    def __init__(self, price_lookup=None, diagnostics: Optional[DiagnosticSink] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.price_lookup = price_lookup
        self.diagnostics = diagnostics
        self.config: Optional[AdapterConfig] = None
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport

    async def initialize(self, config: AdapterConfig) -> None:
        if self.config is not None:
            raise AlreadyInitializedError(self.chain)
        self.config = config
        headers = {"Accept": "application/json"}
        if config.api_key:
            headers["X-API-Key"] = config.api_key
        self.client = httpx.AsyncClient(
            base_url=config.rpc_url,
            timeout=config.timeout_seconds,
            headers=headers,
            transport=self._transport,
        )

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    def _ensure_initialized(self):
        if self.config is None:
            raise NotInitializedError(self.chain)

    def is_valid_address(self, address: str) -> bool:
        if not isinstance(address, str) or not address or address.startswith("0x"):
            return False
        network = self.config.network if self.config is not None else "mainnet"
        try:
            address_to_output_script(address, network)
        except ValueError:
            return False
        return True

    def _require_address(self, address: str):
        if not self.is_valid_address(address):
            raise InvalidAddressError(address, self.chain)

    async def _get(self, path: str, params: dict = None, allow_404: bool = False):
        """GET against the indexer with 429 retry; returns parsed JSON (None on allowed 404)."""

        async def attempt():
            try:
                response = await self.client.get(path, params=params)
            except httpx.TimeoutException as exc:
                raise NetworkError(f"GET {path} timed out", self.chain, exc) from exc
            except httpx.HTTPError as exc:
                raise NetworkError(f"GET {path} failed: {exc}", self.chain, exc) from exc

            if response.status_code == 429:
                raise RateLimitError(
                    f"GET {path}: 429 Too Many Requests",
                    self.chain,
                    retry_after_ms=parse_retry_after(response.headers),
                )
            if response.status_code == 404 and allow_404:
                return None
            try:
                response.raise_for_status()
                return response.json()
            except (httpx.HTTPStatusError, ValueError) as exc:
                raise NetworkError(f"GET {path} failed: {exc}", self.chain, exc) from exc

        return await retry_on_rate_limit(
            attempt,
            self.chain,
            f"GET {path}",
            max_retries=self.config.max_retries,
            retry_delay_ms=self.config.retry_delay_ms,
        )

    def _build_raw_transaction(self, tx: dict, address: str) -> RawTransaction:
        net = net_value_for_address(tx, address)
        block_height = tx.get("block_height")
        raw_data = dict(tx)
        raw_data["owner"] = address
        raw_data["direction"] = "out" if net < 0 else "in"
        return RawTransaction(
            hash=tx["hash"],
            timestamp=tx_timestamp_ms(tx),
            from_address=address,
            to=first_foreign_output(tx, address),
            value=str(abs(net)),
            fee=str(int(tx.get("fees") or 0)),
            status=TransactionStatus.SUCCESS if int(tx.get("confirmations") or 0) > 0 else TransactionStatus.PENDING,
            block_number=block_height if block_height is not None and block_height >= 0 else None,
            raw_data=raw_data,
        )

    async def get_transactions(self, address: str,
                               query: Optional[TransactionQuery] = None) -> List[RawTransaction]:
        self._require_address(address)
        self._ensure_initialized()
        query = query or TransactionQuery()
        limit = query.limit or DEFAULT_TX_LIMIT
        wanted = query.offset + limit

        params = {"limit": min(wanted, DEFAULT_TX_LIMIT)}
        if query.from_block is not None:
            params["after"] = max(query.from_block - 1, 0)
        if query.to_block is not None:
            params["before"] = query.to_block + 1

        from_ms = query.from_date.timestamp() * 1000 if query.from_date else None
        to_ms = query.to_date.timestamp() * 1000 if query.to_date else None

        transactions = []
        seen_hashes = set()
        # Pages come newest first; the next page starts below the lowest block seen
        while True:
            data = await self._get(f"/addrs/{address}/full", params=dict(params)) or {}
            page = data.get("txs") or []

            for tx in page:
                tx_hash = tx.get("hash")
                if tx_hash is not None:
                    if tx_hash in seen_hashes:
                        continue
                    seen_hashes.add(tx_hash)
                try:
                    raw_tx = self._build_raw_transaction(tx, address)
                except (KeyError, TypeError, ValueError) as exc:
                    report_diagnostic(self.diagnostics, self.chain, "fetch", tx_hash, exc)
                    continue
                if from_ms is not None and raw_tx.timestamp < from_ms:
                    continue
                if to_ms is not None and raw_tx.timestamp > to_ms:
                    continue
                transactions.append(raw_tx)

            if not data.get("hasMore") or not page or len(transactions) >= wanted:
                break
            heights = [
                tx["block_height"] for tx in page
                if isinstance(tx.get("block_height"), int) and tx["block_height"] >= 0
            ]
            if not heights:
                break
            next_before = min(heights)
            if "before" in params and next_before >= params["before"]:
                break
            params["before"] = next_before
            logger.debug(f"Fetching next Bitcoin page for {address} before block {next_before}")

        transactions = transactions[query.offset:wanted]
        logger.info(f"Fetched {len(transactions)} Bitcoin transactions for {address}")
        return transactions

    async def parse_transaction(self, raw_tx: RawTransaction) -> ParsedTransaction:
        metadata = dict(raw_tx.raw_data or {})
        if "direction" not in metadata:
            metadata["direction"] = "out"
        if metadata["direction"] == "out":
            from_address, to_address = raw_tx.from_address, raw_tx.to
        else:
            inputs = metadata.get("inputs") or []
            sender = (inputs[0].get("addresses") or [None])[0] if inputs else None
            from_address, to_address = sender or raw_tx.from_address, raw_tx.from_address

        parsed = ParsedTransaction(
            hash=raw_tx.hash,
            chain=self.chain,
            type=AdapterTxType.TRANSFER,
            from_address=from_address,
            to=to_address,
            token_symbol="BTC",
            amount=raw_tx.value or "0",
            decimals=BTC_DECIMALS,
            fee_amount=raw_tx.fee,
            block_number=raw_tx.block_number,
            timestamp=datetime.fromtimestamp(raw_tx.timestamp / 1000, tz=timezone.utc),
            status=raw_tx.status,
            metadata=metadata,
        )

        if self.price_lookup is not None:
            price = await fetch_price_usd(
                self.price_lookup, self.diagnostics, self.chain, "BTC", raw_tx.timestamp, raw_tx.hash
            )
            if price is not None:
                parsed.price_usd = price.price
                parsed.metadata["priceSource"] = price.source
        return parsed

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> List[WalletBalance]:
        self._require_address(address)
        self._ensure_initialized()
        if token_address:
            return []
        data = await self._get(f"/addrs/{address}/balance") or {}
        return [WalletBalance(
            address=address,
            chain=self.chain,
            token_symbol="BTC",
            balance=str(int(data.get("balance") or 0)),
            decimals=BTC_DECIMALS,
        )]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[RawTransaction]:
        self._ensure_initialized()
        tx = await self._get(f"/txs/{tx_hash}", allow_404=True)
        if tx is None:
            return None
        inputs = tx.get("inputs") or []
        sender = (inputs[0].get("addresses") or [""])[0] if inputs else ""
        return self._build_raw_transaction(tx, sender or "")

    async def get_current_block_number(self) -> int:
        self._ensure_initialized()
        data = await self._get("") or {}
        return int(data.get("height") or 0)
