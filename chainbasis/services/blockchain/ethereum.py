"""
chainbasis/services/blockchain/ethereum.py

Ethereum adapter on top of web3's AsyncWeb3.

Discovery is log based: ERC-20 Transfer logs with the wallet in topic 1
(sender) and, separately, topic 2 (recipient) are pulled in windows of
LOG_CHUNK_BLOCKS blocks. Every transaction hash found that way is then fetched
(tx + receipt, then its block) with at most PROVIDER_CONCURRENCY requests in
flight, and turned into a RawTransaction whose raw_data carries the logs that
parse_transaction() decodes.

Plain ETH sends that emit no Transfer log are not discovered this way; they are
still reachable through get_transaction_by_hash().
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

from web3 import AsyncWeb3, Web3
from web3.exceptions import BlockNotFound, TransactionNotFound

from chainbasis.constants import AdapterTxType, ChainType, ETH_DECIMALS, TransactionStatus
from chainbasis.schemas.blockchain import (
    AdapterConfig,
    ParsedTransaction,
    RawTransaction,
    TransactionQuery,
    WalletBalance,
)
from chainbasis.services.blockchain.base import (
    AlreadyInitializedError,
    BlockchainError,
    DiagnosticSink,
    InvalidAddressError,
    NetworkError,
    NotInitializedError,
    RateLimitError,
    fetch_price_usd,
    is_rate_limit_error,
    report_diagnostic,
    retry_on_rate_limit,
)

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------
LOG_CHUNK_BLOCKS = 1000
DEFAULT_LOOKBACK_BLOCKS = 5000
PROVIDER_CONCURRENCY = 5

TRANSFER_TOPIC = Web3.to_hex(Web3.keccak(text="Transfer(address,address,uint256)"))

ERC20_ABI = [
    {
        "constant": True,
        "inputs": [],
        "name": "symbol",
        "outputs": [{"name": "", "type": "string"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [],
        "name": "decimals",
        "outputs": [{"name": "", "type": "uint8"}],
        "type": "function",
    },
    {
        "constant": True,
        "inputs": [{"name": "owner", "type": "address"}],
        "name": "balanceOf",
        "outputs": [{"name": "", "type": "uint256"}],
        "type": "function",
    },
]

FALLBACK_TOKEN_METADATA = {"symbol": "ERC20", "decimals": 18}

# ------------------------------------------------------------------
# Log helpers
# ------------------------------------------------------------------

def _hex(value) -> str:
    """HexBytes / bytes / hex string -> lowercase 0x-prefixed hex string."""
    if isinstance(value, str):
        value = value.lower()
        return value if value.startswith("0x") else "0x" + value
    return Web3.to_hex(value).lower()


def address_topic(address: str) -> str:
    return "0x" + address[2:].lower().rjust(64, "0")


def normalize_log(log) -> dict:
    """Provider log (AttributeDict with HexBytes) -> plain JSON-friendly dict."""
    return {
        "address": str(log.get("address") or "").lower(),
        "transactionHash": _hex(log["transactionHash"]),
        "blockNumber": int(log.get("blockNumber") or 0),
        "logIndex": int(log.get("logIndex") or 0),
        "data": _hex(log.get("data") or "0x"),
        "topics": [_hex(topic) for topic in (log.get("topics") or [])],
    }


def decode_transfer_log(log: dict) -> Optional[dict]:
    """
    Decode one normalized log as an ERC-20 Transfer. Returns None for any
    other event, for ERC-721 style transfers (value indexed, 4 topics) and for
    malformed payloads.
    """
    topics = log.get("topics") or []
    if len(topics) != 3 or topics[0] != TRANSFER_TOPIC or not log.get("address"):
        return None
    data = log.get("data") or "0x"
    if len(data) != 66:
        return None
    try:
        value = int(data, 16)
    except ValueError:
        return None
    return {
        "address": log["address"].lower(),
        "from": "0x" + topics[1][-40:],
        "to": "0x" + topics[2][-40:],
        "value": str(value),
    }


def chunk_list(values: list, size: int) -> List[list]:
    if size <= 0:
        return [values]
    return [values[i:i + size] for i in range(0, len(values), size)]

# ------------------------------------------------------------------
# Adapter
# ------------------------------------------------------------------

class EthereumAdapter:
    chain = ChainType.ETHEREUM

    def __init__(self, price_lookup=None, diagnostics: Optional[DiagnosticSink] = None, web3=None):
        self.price_lookup = price_lookup
        self.diagnostics = diagnostics
        self.w3 = web3
        self.config: Optional[AdapterConfig] = None
        self._token_metadata_cache: Dict[str, dict] = {}

    async def initialize(self, config: AdapterConfig) -> None:
        if self.config is not None:
            raise AlreadyInitializedError(self.chain)
        if self.w3 is None:
            self.w3 = AsyncWeb3(AsyncWeb3.AsyncHTTPProvider(config.rpc_url))
        self.config = config
        logger.debug(f"Ethereum adapter initialized against {config.rpc_url[:40]}...")

    async def close(self) -> None:
        provider = getattr(self.w3, "provider", None)
        disconnect = getattr(provider, "disconnect", None)
        if disconnect is not None:
            await disconnect()

    def _ensure_initialized(self):
        if self.config is None:
            raise NotInitializedError(self.chain)

    def is_valid_address(self, address: str) -> bool:
        if not isinstance(address, str) or len(address) != 42 or not address.startswith("0x"):
            return False
        return all(c in "0123456789abcdefABCDEF" for c in address[2:])

    def _require_address(self, address: str):
        if not self.is_valid_address(address):
            raise InvalidAddressError(address, self.chain)

    async def _call(self, awaitable, label: str):
        """
        Await one provider call under the configured timeout and translate
        failures into the adapter's error taxonomy. Not-found exceptions pass
        through so callers can map them to None.
        """
        try:
            return await asyncio.wait_for(awaitable, timeout=self.config.timeout_seconds)
        except (TransactionNotFound, BlockNotFound, BlockchainError):
            raise
        except asyncio.TimeoutError as exc:
            raise NetworkError(
                f"{label} timed out after {self.config.timeout_seconds}s", self.chain, exc
            ) from exc
        except Exception as exc:
            if is_rate_limit_error(exc):
                raise RateLimitError(f"{label}: {exc}", self.chain, original_error=exc) from exc
            raise NetworkError(f"{label} failed: {exc}", self.chain, exc) from exc

    # --------------------------------------------------------------
    # Discovery
    # --------------------------------------------------------------

    async def get_transactions(self, address: str,
                               query: Optional[TransactionQuery] = None) -> List[RawTransaction]:
        self._require_address(address)
        self._ensure_initialized()
        query = query or TransactionQuery()
        owner = address.lower()

        latest = query.to_block
        if latest is None:
            latest = await self._call(self.w3.eth.block_number, "eth_blockNumber")
        from_block = await self._resolve_from_block(query, latest)
        to_block = await self._resolve_to_block(query, latest)
        effective_from = max(min(from_block, to_block), 0)

        target = query.offset + query.limit if query.limit else None
        wallet_topic = address_topic(owner)

        grouped_logs: Dict[str, List[dict]] = {}
        seen_logs = set()
        processed: Dict[str, RawTransaction] = {}
        # hashes already fetched, including ones whose fetch failed
        attempted = set()

        logger.info(f"Scanning Ethereum blocks {effective_from}-{to_block} for {owner}")

        chunk_start = effective_from
        while chunk_start <= to_block and (target is None or len(processed) < target):
            chunk_end = min(chunk_start + LOG_CHUNK_BLOCKS - 1, to_block)
            sender_logs, receiver_logs = await asyncio.gather(
                self._fetch_logs({
                    "fromBlock": chunk_start,
                    "toBlock": chunk_end,
                    "topics": [TRANSFER_TOPIC, wallet_topic],
                }),
                self._fetch_logs({
                    "fromBlock": chunk_start,
                    "toBlock": chunk_end,
                    "topics": [TRANSFER_TOPIC, None, wallet_topic],
                }),
            )

            for log in list(sender_logs) + list(receiver_logs):
                normalized = normalize_log(log)
                key = (normalized["transactionHash"], normalized["logIndex"])
                if key in seen_logs:
                    # self-transfers match both queries
                    continue
                seen_logs.add(key)
                grouped_logs.setdefault(normalized["transactionHash"], []).append(normalized)

            new_hashes = [h for h in grouped_logs if h not in attempted]
            for batch in chunk_list(new_hashes, PROVIDER_CONCURRENCY):
                if target is not None and len(processed) >= target:
                    break
                attempted.update(batch)
                results = await asyncio.gather(*[
                    self._fetch_for_batch(tx_hash, grouped_logs[tx_hash], owner)
                    for tx_hash in batch
                ])
                for raw_tx in results:
                    if raw_tx is None:
                        continue
                    processed[raw_tx.hash] = raw_tx
                    if target is not None and len(processed) >= target:
                        break

            chunk_start += LOG_CHUNK_BLOCKS

        transactions = sorted(
            processed.values(),
            key=lambda tx: (tx.block_number or 0, tx.timestamp),
        )
        end = query.offset + query.limit if query.limit else None
        transactions = transactions[query.offset:end]
        logger.info(f"Found {len(transactions)} Ethereum transactions for {owner}")
        return transactions

    async def _fetch_logs(self, filter_params: dict) -> list:
        label = f"eth_getLogs {filter_params['fromBlock']}-{filter_params['toBlock']}"

        async def attempt():
            try:
                return await asyncio.wait_for(
                    self.w3.eth.get_logs(filter_params), timeout=self.config.timeout_seconds
                )
            except asyncio.TimeoutError as exc:
                raise NetworkError(f"{label} timed out", self.chain, exc) from exc
            except Exception as exc:
                if "range is too large" in str(exc).lower():
                    raise NetworkError(
                        "Block range too large for provider", self.chain, exc
                    ) from exc
                raise

        try:
            return await retry_on_rate_limit(
                attempt,
                self.chain,
                label,
                max_retries=self.config.max_retries,
                retry_delay_ms=self.config.retry_delay_ms,
            )
        except BlockchainError:
            raise
        except Exception as exc:
            raise NetworkError(f"{label} failed: {exc}", self.chain, exc) from exc

    async def _fetch_for_batch(self, tx_hash: str, logs: List[dict], owner: str) -> Optional[RawTransaction]:
        try:
            return await self._fetch_raw_transaction(tx_hash, logs=logs, owner=owner)
        except RateLimitError:
            raise
        except BlockchainError as exc:
            report_diagnostic(self.diagnostics, self.chain, "fetch", tx_hash, exc)
            return None

    async def _fetch_raw_transaction(self, tx_hash: str, logs: Optional[List[dict]] = None,
                                     owner: Optional[str] = None) -> Optional[RawTransaction]:
        """
        tx + receipt concurrently, then the block. Any of the three missing
        means None. When `logs` is None the receipt's own logs are used.
        """
        try:
            tx, receipt = await asyncio.gather(
                self._call(self.w3.eth.get_transaction(tx_hash), f"eth_getTransactionByHash {tx_hash}"),
                self._call(self.w3.eth.get_transaction_receipt(tx_hash), f"eth_getTransactionReceipt {tx_hash}"),
            )
        except TransactionNotFound:
            return None
        if not tx or not receipt:
            return None

        block_number = receipt.get("blockNumber")
        if block_number is None:
            block_number = tx.get("blockNumber")
        if block_number is None:
            return None
        block_number = int(block_number)

        try:
            block = await self._call(self.w3.eth.get_block(block_number), f"eth_getBlockByNumber {block_number}")
        except BlockNotFound:
            return None
        if not block:
            return None

        receipt_logs = [normalize_log(log) for log in (receipt.get("logs") or [])]
        if logs is None:
            logs = receipt_logs
        token_metadata = await self._resolve_token_metadata([log["address"] for log in logs])

        gas_used = int(receipt.get("gasUsed") or 0)
        gas_price = int(receipt.get("effectiveGasPrice") or tx.get("gasPrice") or 0)
        fee = gas_used * gas_price

        raw_data = {
            "logs": logs,
            "receiptLogs": receipt_logs,
            "gasUsed": str(gas_used),
            "gasPrice": str(gas_price),
            "tokenMetadata": token_metadata,
        }
        if owner:
            raw_data["owner"] = owner

        to_address = tx.get("to")
        return RawTransaction(
            hash=_hex(tx.get("hash") or tx_hash),
            timestamp=int(block["timestamp"]) * 1000,
            from_address=str(tx.get("from") or "").lower(),
            to=str(to_address).lower() if to_address else None,
            value=str(int(tx.get("value") or 0)),
            fee=str(fee),
            status=TransactionStatus.SUCCESS if receipt.get("status") == 1 else TransactionStatus.FAILED,
            block_number=block_number,
            raw_data=raw_data,
        )

    async def _resolve_token_metadata(self, addresses: List[str]) -> Dict[str, dict]:
        metadata = {}
        for token_address in dict.fromkeys(a.lower() for a in addresses if a):
            if token_address not in self._token_metadata_cache:
                self._token_metadata_cache[token_address] = await self._load_token_metadata(token_address)
            metadata[token_address] = self._token_metadata_cache[token_address]
        return metadata

    async def _load_token_metadata(self, token_address: str) -> dict:
        try:
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
        except Exception as exc:
            logger.debug(f"Cannot build ERC-20 contract for {token_address}: {exc}")
            return dict(FALLBACK_TOKEN_METADATA)
        symbol, decimals = await asyncio.gather(
            self._contract_call_or_default(contract.functions.symbol(), "ERC20"),
            self._contract_call_or_default(contract.functions.decimals(), 18),
        )
        return {"symbol": str(symbol), "decimals": int(decimals)}

    async def _contract_call_or_default(self, function_call, default):
        # Non-standard tokens (bytes32 symbols, missing decimals) fall back quietly
        try:
            return await asyncio.wait_for(function_call.call(), timeout=self.config.timeout_seconds)
        except Exception as exc:
            logger.debug(f"ERC-20 metadata call failed, using {default!r}: {exc}")
            return default

    async def _resolve_from_block(self, query: TransactionQuery, latest: int) -> int:
        if query.from_block is not None:
            return query.from_block
        if query.from_date is not None:
            return await self._get_block_for_timestamp(int(query.from_date.timestamp()), latest)
        return max(latest - DEFAULT_LOOKBACK_BLOCKS, 0)

    async def _resolve_to_block(self, query: TransactionQuery, latest: int) -> int:
        resolved = query.to_block if query.to_block is not None else latest
        if query.to_date is not None:
            block_for_date = await self._get_block_for_timestamp(int(query.to_date.timestamp()), latest)
            resolved = min(resolved, block_for_date)
        return resolved

    async def _get_block_for_timestamp(self, target: int, latest: int) -> int:
        """Highest block at or below `latest` whose timestamp is <= target (binary search)."""
        low, high, candidate = 0, latest, 0
        while low <= high:
            mid = (low + high) // 2
            try:
                block = await self._call(self.w3.eth.get_block(mid), f"eth_getBlockByNumber {mid}")
            except BlockNotFound:
                block = None
            if not block or block.get("timestamp") is None:
                high = mid - 1
                continue
            if int(block["timestamp"]) <= target:
                candidate = mid
                low = mid + 1
            else:
                high = mid - 1
        return candidate

    # --------------------------------------------------------------
    # Parsing
    # --------------------------------------------------------------

    async def parse_transaction(self, raw_tx: RawTransaction) -> ParsedTransaction:
        raw_data = dict(raw_tx.raw_data or {})
        transfers = [t for t in (decode_transfer_log(log) for log in raw_data.get("logs") or []) if t]

        tx_type = AdapterTxType.TRANSFER
        from_address = raw_tx.from_address
        to_address = raw_tx.to
        token_symbol = "ETH"
        token_address = None
        amount = raw_tx.value or "0"
        decimals = ETH_DECIMALS
        metadata = raw_data

        if transfers:
            primary = transfers[0]
            tx_type = AdapterTxType.SWAP if len(transfers) > 1 else AdapterTxType.TRANSFER
            from_address = primary["from"]
            to_address = primary["to"]
            amount = primary["value"]
            token_address = primary["address"]

            token_info = (raw_data.get("tokenMetadata") or {}).get(primary["address"])
            if token_info:
                token_symbol = token_info["symbol"]
                decimals = int(token_info["decimals"])
            elif raw_tx.to and raw_tx.to != to_address:
                token_symbol = "ERC20"
                decimals = FALLBACK_TOKEN_METADATA["decimals"]

            metadata["decodedTransfers"] = transfers

        owner = raw_data.get("owner")
        if owner:
            metadata["direction"] = "out" if from_address.lower() == owner.lower() else "in"

        parsed = ParsedTransaction(
            hash=raw_tx.hash,
            chain=self.chain,
            type=tx_type,
            from_address=from_address,
            to=to_address,
            token_symbol=token_symbol,
            token_address=token_address,
            amount=amount,
            decimals=decimals,
            fee_amount=raw_tx.fee,
            block_number=raw_tx.block_number,
            timestamp=datetime.fromtimestamp(raw_tx.timestamp / 1000, tz=timezone.utc),
            status=raw_tx.status,
            metadata=metadata,
        )

        if self.price_lookup is not None:
            price = await fetch_price_usd(
                self.price_lookup, self.diagnostics, self.chain, token_symbol, raw_tx.timestamp, raw_tx.hash
            )
            if price is not None:
                parsed.price_usd = price.price
                parsed.metadata["priceSource"] = price.source
        return parsed

    # --------------------------------------------------------------
    # Balances & lookups
    # --------------------------------------------------------------

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> List[WalletBalance]:
        self._require_address(address)
        self._ensure_initialized()
        checksum = Web3.to_checksum_address(address)

        if not token_address:
            balance = await self._call(self.w3.eth.get_balance(checksum), f"eth_getBalance {address}")
            return [WalletBalance(
                address=address,
                chain=self.chain,
                token_symbol="ETH",
                balance=str(int(balance)),
                decimals=ETH_DECIMALS,
            )]

        self._require_address(token_address)
        try:
            contract = self.w3.eth.contract(address=Web3.to_checksum_address(token_address), abi=ERC20_ABI)
            balance, decimals, symbol = await asyncio.gather(
                self._call(contract.functions.balanceOf(checksum).call(), "balanceOf"),
                self._call(contract.functions.decimals().call(), "decimals"),
                self._call(contract.functions.symbol().call(), "symbol"),
            )
        except RateLimitError:
            raise
        except Exception as exc:
            raise NetworkError(f"Failed to get token balance: {exc}", self.chain, exc) from exc

        return [WalletBalance(
            address=address,
            chain=self.chain,
            token_symbol=str(symbol) or "ERC20",
            token_address=token_address.lower(),
            balance=str(int(balance)),
            decimals=int(decimals),
        )]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[RawTransaction]:
        self._ensure_initialized()
        return await self._fetch_raw_transaction(tx_hash)

    async def get_current_block_number(self) -> int:
        self._ensure_initialized()
        return int(await self._call(self.w3.eth.block_number, "eth_blockNumber"))
