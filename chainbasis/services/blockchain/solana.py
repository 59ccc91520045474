"""
chainbasis/services/blockchain/solana.py

Solana adapter speaking JSON-RPC over httpx.

Discovery: getSignaturesForAddress (newest first), then getTransaction in
jsonParsed encoding for each signature, one at a time with an optional
politeness delay (rate_limit_ms) between fetches.

parse_transaction() picks the first of these that applies:
1) Jupiter SwapEvents decoded from inner instructions -> swap
2) a Raydium AMM program among the account keys      -> swap (SOL leg only)
3) an SPL token balance change for the owner          -> token transfer
4) the owner's lamport change                          -> SOL transfer
"""

import asyncio
import logging
from datetime import datetime, timezone
from typing import Dict, List, Optional

import httpx
from solders.pubkey import Pubkey

from chainbasis.constants import AdapterTxType, ChainType, SOL_DECIMALS, TransactionStatus
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
    parse_retry_after,
    report_diagnostic,
    retry_on_rate_limit,
)
from chainbasis.services.blockchain.jupiter import extract_swap_events, summarize_swap

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Constants
# ------------------------------------------------------------------
BASE58_ALPHABET = set("123456789ABCDEFGHJKLMNPQRSTUVWXYZabcdefghijkmnopqrstuvwxyz")

SYSTEM_PROGRAM_ID = "11111111111111111111111111111111"

RAYDIUM_PROGRAM_IDS = {
    "675kPX9MHTjS2zt1qfr1NYHuzeLXfQM9H24wFSUt1Nd",  # AMM v4
    "RVKd61ztZW9JU7V2aU7D1JQjoXnR8nDzWnRmN7bP2Ce",
}

DEFAULT_SIGNATURE_LIMIT = 50
MAX_SIGNATURE_PAGE = 1000

# mint -> (symbol, decimals)
KNOWN_MINTS = {
    "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v": ("USDC", 6),
    "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB": ("USDT", 6),
    "So11111111111111111111111111111111111111112": ("SOL", 9),
    "DezXAZ8z7PnrnRJjz3wXBoRgixCa6xjnB7YaB1pPB263": ("BONK", 5),
    "JUPyiwrYJFskUPiHa7hkeR8VUtAeFoSYbKedZNsDvCN": ("JUP", 6),
    "4k3Dyjzvzp8eMZWUXbBCjEvwSkkk59S5iCNLY3QrkX6R": ("RAY", 6),
}


def symbol_for_mint(mint: Optional[str]) -> str:
    if mint in KNOWN_MINTS:
        return KNOWN_MINTS[mint][0]
    return "SPL"

# ------------------------------------------------------------------
# jsonParsed helpers
# ------------------------------------------------------------------

def account_keys_of(tx: dict) -> List[str]:
    message = ((tx.get("transaction") or {}).get("message")) or {}
    keys = []
    for entry in message.get("accountKeys") or []:
        key = entry.get("pubkey") if isinstance(entry, dict) else entry
        if key:
            keys.append(str(key))
    return keys


def lamport_delta(tx: dict, owner: str) -> Optional[int]:
    """post - pre lamports at the owner's account index, None if not present."""
    meta = tx.get("meta")
    if not meta:
        return None
    keys = account_keys_of(tx)
    if owner not in keys:
        return None
    index = keys.index(owner)
    pre = meta.get("preBalances") or []
    post = meta.get("postBalances") or []
    if index >= len(pre) or index >= len(post):
        return None
    return int(post[index]) - int(pre[index])


def derive_destination(account_keys: List[str], owner: str) -> Optional[str]:
    for key in account_keys:
        if key != owner:
            return key
    return None


def _token_amount(balance: dict) -> int:
    return int(((balance.get("uiTokenAmount") or {}).get("amount")) or 0)


def _owner_mint_total(balances: List[dict], owner: str, mint: str) -> int:
    return sum(_token_amount(b) for b in balances if b.get("owner") == owner and b.get("mint") == mint)


def spl_token_delta(meta: dict, owner: str) -> Optional[dict]:
    """
    First non-zero SPL balance change for `owner`, matched by (owner, mint).
    A token account closed in this transaction only appears in the pre
    balances, so mints are collected from both sides.
    """
    pre = meta.get("preTokenBalances") or []
    post = meta.get("postTokenBalances") or []

    mints = []
    for balance in list(post) + list(pre):
        if balance.get("owner") == owner and balance.get("mint") not in mints:
            mints.append(balance.get("mint"))

    for mint in mints:
        delta = _owner_mint_total(post, owner, mint) - _owner_mint_total(pre, owner, mint)
        if delta == 0:
            continue

        decimals = 0
        for balance in list(post) + list(pre):
            if balance.get("mint") == mint and balance.get("uiTokenAmount"):
                decimals = int(balance["uiTokenAmount"].get("decimals") or 0)
                break

        counterparty = None
        other_owners = []
        for balance in list(post) + list(pre):
            other = balance.get("owner")
            if balance.get("mint") == mint and other and other != owner and other not in other_owners:
                other_owners.append(other)
        for other in other_owners:
            other_delta = _owner_mint_total(post, other, mint) - _owner_mint_total(pre, other, mint)
            if other_delta != 0 and (other_delta > 0) != (delta > 0):
                counterparty = other
                break

        return {
            "mint": mint,
            "amount": str(abs(delta)),
            "symbol": symbol_for_mint(mint),
            "decimals": decimals,
            "counterparty": counterparty,
            "direction": "out" if delta < 0 else "in",
        }
    return None


def mint_decimals(meta: dict, mint: Optional[str]) -> Optional[int]:
    if mint in KNOWN_MINTS:
        return KNOWN_MINTS[mint][1]
    for balance in list(meta.get("postTokenBalances") or []) + list(meta.get("preTokenBalances") or []):
        if balance.get("mint") == mint and balance.get("uiTokenAmount"):
            return int(balance["uiTokenAmount"].get("decimals") or 0)
    return None

# ------------------------------------------------------------------
# Adapter
# ------------------------------------------------------------------

class SolanaAdapter:
    chain = ChainType.SOLANA

    def __init__(self, price_lookup=None, diagnostics: Optional[DiagnosticSink] = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None):
        self.price_lookup = price_lookup
        self.diagnostics = diagnostics
        self.config: Optional[AdapterConfig] = None
        self.client: Optional[httpx.AsyncClient] = None
        self._transport = transport
        self._request_id = 0

    async def initialize(self, config: AdapterConfig) -> None:
        if self.config is not None:
            raise AlreadyInitializedError(self.chain)
        self.config = config
        self.client = httpx.AsyncClient(timeout=config.timeout_seconds, transport=self._transport)
        logger.debug(f"Solana adapter initialized against {config.rpc_url[:40]}...")

    async def close(self) -> None:
        if self.client is not None:
            await self.client.aclose()

    def _ensure_initialized(self):
        if self.config is None:
            raise NotInitializedError(self.chain)

    def is_valid_address(self, address: str) -> bool:
        if not isinstance(address, str) or not 32 <= len(address) <= 44:
            return False
        if address.startswith("0x") or not set(address) <= BASE58_ALPHABET:
            return False
        if address == SYSTEM_PROGRAM_ID:
            return True
        if len(set(address)) == 1:
            return False
        try:
            pubkey = Pubkey.from_string(address)
        except ValueError:
            return False
        return pubkey.is_on_curve()

    def _require_address(self, address: str):
        if not self.is_valid_address(address):
            raise InvalidAddressError(address, self.chain)

    # --------------------------------------------------------------
    # JSON-RPC
    # --------------------------------------------------------------

    async def _rpc(self, method: str, params: list):
        self._request_id += 1
        payload = {"jsonrpc": "2.0", "id": self._request_id, "method": method, "params": params}

        async def attempt():
            try:
                response = await self.client.post(self.config.rpc_url, json=payload)
            except httpx.TimeoutException as exc:
                raise NetworkError(f"{method} timed out", self.chain, exc) from exc
            except httpx.HTTPError as exc:
                raise NetworkError(f"{method} failed: {exc}", self.chain, exc) from exc

            if response.status_code == 429:
                raise RateLimitError(
                    f"{method}: 429 Too Many Requests",
                    self.chain,
                    retry_after_ms=parse_retry_after(response.headers),
                )
            try:
                response.raise_for_status()
                body = response.json()
            except (httpx.HTTPStatusError, ValueError) as exc:
                raise NetworkError(f"{method} failed: {exc}", self.chain, exc) from exc

            error = body.get("error")
            if error:
                message = f"{method} RPC error {error.get('code')}: {error.get('message')}"
                if error.get("code") == 429 or is_rate_limit_error(Exception(message)):
                    raise RateLimitError(message, self.chain)
                raise NetworkError(message, self.chain)
            return body.get("result")

        return await retry_on_rate_limit(
            attempt,
            self.chain,
            method,
            max_retries=self.config.max_retries,
            retry_delay_ms=self.config.retry_delay_ms,
        )

    async def _get_parsed_transaction(self, signature: str) -> Optional[dict]:
        return await self._rpc("getTransaction", [
            signature,
            {"encoding": "jsonParsed", "maxSupportedTransactionVersion": 0, "commitment": "confirmed"},
        ])

    # --------------------------------------------------------------
    # Discovery
    # --------------------------------------------------------------

    async def get_transactions(self, address: str,
                               query: Optional[TransactionQuery] = None) -> List[RawTransaction]:
        self._require_address(address)
        self._ensure_initialized()
        query = query or TransactionQuery()
        limit = query.limit or DEFAULT_SIGNATURE_LIMIT

        signatures = await self._rpc("getSignaturesForAddress", [
            address,
            {"limit": min(limit + query.offset, MAX_SIGNATURE_PAGE)},
        ]) or []

        from_ts = query.from_date.timestamp() if query.from_date else None
        to_ts = query.to_date.timestamp() if query.to_date else None
        selected = []
        for info in signatures:
            block_time = info.get("blockTime")
            if block_time is not None:
                if from_ts is not None and block_time < from_ts:
                    continue
                if to_ts is not None and block_time > to_ts:
                    continue
            selected.append(info)
        selected = selected[query.offset:query.offset + limit]

        transactions = []
        for index, info in enumerate(selected):
            if index and self.config.rate_limit_ms:
                await asyncio.sleep(self.config.rate_limit_ms / 1000)

            signature = info["signature"]
            try:
                tx = await self._get_parsed_transaction(signature)
                if not tx:
                    continue
                transactions.append(
                    self._build_raw_transaction(signature, tx, address, info.get("blockTime"))
                )
            except RateLimitError:
                raise
            except (BlockchainError, KeyError, TypeError, ValueError) as exc:
                report_diagnostic(self.diagnostics, self.chain, "fetch", signature, exc)

        logger.info(f"Fetched {len(transactions)} of {len(selected)} Solana transactions for {address}")
        return transactions

    def _build_raw_transaction(self, signature: str, tx: dict, owner: str,
                               fallback_block_time: Optional[int] = None) -> RawTransaction:
        meta = tx.get("meta") or {}
        account_keys = account_keys_of(tx)
        swap_attributes = self._extract_jupiter(signature, tx, account_keys)

        block_time = tx.get("blockTime") or fallback_block_time
        if block_time is None:
            block_time = int(datetime.now(timezone.utc).timestamp())

        delta = lamport_delta(tx, owner)
        return RawTransaction(
            hash=signature,
            timestamp=int(block_time) * 1000,
            from_address=owner,
            to=derive_destination(account_keys, owner),
            value=str(delta) if delta is not None else None,
            fee=str(meta["fee"]) if meta.get("fee") is not None else None,
            status=TransactionStatus.FAILED if meta.get("err") else TransactionStatus.SUCCESS,
            block_number=tx.get("slot"),
            raw_data={
                "owner": owner,
                "slot": tx.get("slot"),
                "meta": meta,
                "transaction": tx.get("transaction"),
                "programIds": account_keys,
                "swapAttributes": swap_attributes,
            },
        )

    def _extract_jupiter(self, signature: str, tx: dict, account_keys: List[str]) -> List[dict]:
        try:
            return summarize_swap(extract_swap_events(tx, account_keys), symbol_for_mint)
        except Exception as exc:
            report_diagnostic(self.diagnostics, self.chain, "jupiter", signature, exc)
            return []

    # --------------------------------------------------------------
    # Parsing
    # --------------------------------------------------------------

    async def parse_transaction(self, raw_tx: RawTransaction) -> ParsedTransaction:
        raw_data = dict(raw_tx.raw_data or {})
        meta = raw_data.get("meta") or {}
        owner = raw_data.get("owner") or raw_tx.from_address
        lamports = int(raw_tx.value or 0)
        lamport_direction = "out" if lamports < 0 else "in"

        fields = {
            "type": AdapterTxType.TRANSFER,
            "token_symbol": "SOL",
            "token_address": None,
            "amount": str(abs(lamports)),
            "decimals": SOL_DECIMALS,
        }
        direction = lamport_direction
        metadata = raw_data
        swap_attributes = raw_data.get("swapAttributes") or []

        if swap_attributes:
            primary = swap_attributes[0]
            out_mint = primary.get("outMint") or primary.get("inMint")
            fields.update(
                type=AdapterTxType.SWAP,
                token_symbol=primary.get("outSymbol") or primary.get("inSymbol") or "SWAP",
                token_address=out_mint,
                amount=str(primary.get("outAmount") or fields["amount"]),
                decimals=mint_decimals(meta, out_mint),
            )
            # the wallet receives the output side of its own swap
            direction = "in"
            metadata["jupiter"] = [
                {
                    "inSymbol": attr.get("inSymbol"),
                    "outSymbol": attr.get("outSymbol"),
                    "inAmount": attr.get("inAmount"),
                    "outAmount": attr.get("outAmount"),
                    "inMint": attr.get("inMint"),
                    "outMint": attr.get("outMint"),
                    "legCount": attr.get("legCount"),
                }
                for attr in swap_attributes
            ]
        elif RAYDIUM_PROGRAM_IDS & set(raw_data.get("programIds") or []):
            fields["type"] = AdapterTxType.SWAP
            metadata["raydium"] = {
                "note": "Detected Raydium program interaction",
                "programIds": sorted(RAYDIUM_PROGRAM_IDS & set(raw_data["programIds"])),
            }
        else:
            token_change = spl_token_delta(meta, owner) if meta else None
            if token_change:
                fields.update(
                    token_symbol=token_change["symbol"],
                    token_address=token_change["mint"],
                    amount=token_change["amount"],
                    decimals=token_change["decimals"],
                )
                direction = token_change["direction"]
                metadata["tokenChange"] = token_change

        counterparty = raw_tx.to
        if metadata.get("tokenChange", {}).get("counterparty"):
            counterparty = metadata["tokenChange"]["counterparty"]
        if direction == "out":
            from_address, to_address = owner, counterparty
        else:
            from_address, to_address = counterparty or owner, owner
        metadata["direction"] = direction

        parsed = ParsedTransaction(
            hash=raw_tx.hash,
            chain=self.chain,
            from_address=from_address,
            to=to_address,
            fee_amount=raw_tx.fee,
            block_number=raw_tx.block_number,
            timestamp=datetime.fromtimestamp(raw_tx.timestamp / 1000, tz=timezone.utc),
            status=raw_tx.status,
            metadata=metadata,
            **fields,
        )

        if self.price_lookup is not None:
            price = await fetch_price_usd(
                self.price_lookup, self.diagnostics, self.chain, parsed.token_symbol,
                raw_tx.timestamp, raw_tx.hash,
            )
            if price is not None:
                parsed.price_usd = price.price
                parsed.metadata["priceData"] = {
                    "price": str(price.price),
                    "timestamp": price.timestamp,
                    "source": price.source,
                }
        return parsed

    # --------------------------------------------------------------
    # Balances & lookups
    # --------------------------------------------------------------

    async def get_balance(self, address: str, token_address: Optional[str] = None) -> List[WalletBalance]:
        self._require_address(address)
        self._ensure_initialized()

        if not token_address:
            result = await self._rpc("getBalance", [address, {"commitment": "confirmed"}])
            lamports = result.get("value", 0) if isinstance(result, dict) else result
            return [WalletBalance(
                address=address,
                chain=self.chain,
                token_symbol="SOL",
                balance=str(int(lamports or 0)),
                decimals=SOL_DECIMALS,
            )]

        try:
            Pubkey.from_string(token_address)
        except ValueError:
            raise InvalidAddressError(token_address, self.chain)

        result = await self._rpc("getTokenAccountsByOwner", [
            address,
            {"mint": token_address},
            {"encoding": "jsonParsed"},
        ])
        total = 0
        decimals = KNOWN_MINTS.get(token_address, (None, 0))[1]
        for account in (result or {}).get("value") or []:
            info = (((account.get("account") or {}).get("data") or {}).get("parsed") or {}).get("info") or {}
            token_amount = info.get("tokenAmount")
            if not token_amount:
                continue
            total += int(token_amount.get("amount") or 0)
            decimals = int(token_amount.get("decimals", decimals))

        return [WalletBalance(
            address=address,
            chain=self.chain,
            token_symbol=symbol_for_mint(token_address),
            token_address=token_address,
            balance=str(total),
            decimals=decimals,
        )]

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[RawTransaction]:
        self._ensure_initialized()
        tx = await self._get_parsed_transaction(tx_hash)
        if not tx:
            return None
        account_keys = account_keys_of(tx)
        # without a wallet in hand, the fee payer is the transaction's owner
        fee_payer = account_keys[0] if account_keys else ""
        return self._build_raw_transaction(tx_hash, tx, fee_payer)

    async def get_current_block_number(self) -> int:
        self._ensure_initialized()
        return int(await self._rpc("getSlot", [{"commitment": "confirmed"}]))
