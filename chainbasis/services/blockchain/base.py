"""
chainbasis/services/blockchain/base.py

Contract shared by the chain adapters plus the error taxonomy they raise.

The three adapters (Ethereum, Solana, Bitcoin) have no implementation in
common, so ChainAdapter is a typing.Protocol rather than a base class. What
they do share lives here as plain functions:
- rate-limit detection and the bounded retry loop
- the DiagnosticSink that records failures an adapter chose to swallow
"""

import asyncio
import logging
from typing import Awaitable, Callable, List, Optional, Protocol, TypeVar, runtime_checkable

from chainbasis.constants import ChainType
from chainbasis.schemas.blockchain import (
    AdapterConfig,
    Diagnostic,
    ParsedTransaction,
    RawTransaction,
    TokenPrice,
    TransactionQuery,
    WalletBalance,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

# ------------------------------------------------------------------
# Errors
# ------------------------------------------------------------------

class BlockchainError(Exception):
    """
    Root of every adapter error. Always carries the chain and a stable
    machine-readable code so callers (and sync reports) can tell a throttled
    provider from a bad address.
    """
    default_code = "BLOCKCHAIN_ERROR"

    def __init__(self, message: str, chain=None, code: str = None, original_error: Exception = None):
        super().__init__(message)
        self.message = message
        self.chain = chain
        self.code = code or self.default_code
        self.original_error = original_error

    def __str__(self):
        return self.message


class InvalidAddressError(BlockchainError):
    default_code = "INVALID_ADDRESS"

    def __init__(self, address: str, chain=None):
        super().__init__(f"Invalid {getattr(chain, 'value', chain)} address: {address}", chain)
        self.address = address


class RateLimitError(BlockchainError):
    default_code = "RATE_LIMIT"

    def __init__(self, message: str, chain=None, retry_after_ms: int = None,
                 original_error: Exception = None):
        super().__init__(message, chain, original_error=original_error)
        self.retry_after_ms = retry_after_ms


class NetworkError(BlockchainError):
    default_code = "NETWORK_ERROR"

    def __init__(self, message: str, chain=None, original_error: Exception = None):
        super().__init__(message, chain, original_error=original_error)


class AlreadyInitializedError(BlockchainError):
    default_code = "ALREADY_INITIALIZED"

    def __init__(self, chain=None):
        super().__init__(f"{getattr(chain, 'value', chain)} adapter is already initialized", chain)


class NotInitializedError(BlockchainError):
    default_code = "NOT_INITIALIZED"

    def __init__(self, chain=None):
        super().__init__(f"{getattr(chain, 'value', chain)} adapter is not initialized", chain)


class UnsupportedChainError(BlockchainError):
    default_code = "UNSUPPORTED_CHAIN"

    def __init__(self, chain):
        super().__init__(f"Unsupported blockchain: {getattr(chain, 'value', chain)}", chain)

# ------------------------------------------------------------------
# Adapter contract
# ------------------------------------------------------------------

@runtime_checkable
class ChainAdapter(Protocol):
    chain: ChainType

    async def initialize(self, config: AdapterConfig) -> None: ...

    def is_valid_address(self, address: str) -> bool: ...

    async def get_transactions(self, address: str,
                               query: Optional[TransactionQuery] = None) -> List[RawTransaction]: ...

    async def parse_transaction(self, raw_tx: RawTransaction) -> ParsedTransaction: ...

    async def get_balance(self, address: str,
                          token_address: Optional[str] = None) -> List[WalletBalance]: ...

    async def get_transaction_by_hash(self, tx_hash: str) -> Optional[RawTransaction]: ...

    async def get_current_block_number(self) -> int: ...

# ------------------------------------------------------------------
# Diagnostics side channel
# ------------------------------------------------------------------

class DiagnosticSink:
    """
    Collects non-fatal failures (a Jupiter decode that blew up, a single
    transaction that failed to parse, a price lookup that errored) so callers
    and tests can inspect degraded paths without scraping logs.
    """

    def __init__(self):
        self.diagnostics: List[Diagnostic] = []

    def record(self, chain, stage: str, reference: Optional[str], message: str) -> Diagnostic:
        diagnostic = Diagnostic(chain=chain, stage=stage, reference=reference, message=message)
        self.diagnostics.append(diagnostic)
        return diagnostic

    def for_stage(self, stage: str) -> List[Diagnostic]:
        return [d for d in self.diagnostics if d.stage == stage]

    def clear(self) -> None:
        self.diagnostics.clear()

    def __len__(self):
        return len(self.diagnostics)


def report_diagnostic(sink: Optional[DiagnosticSink], chain, stage: str,
                      reference: Optional[str], error) -> None:
    """Log a swallowed failure and, when a sink was injected, record it."""
    message = str(error) or error.__class__.__name__
    logger.warning(f"[{getattr(chain, 'value', chain)}] {stage} failed for {reference}: {message}")
    if sink is not None:
        sink.record(chain, stage, reference, message)


async def fetch_price_usd(price_lookup, sink: Optional[DiagnosticSink], chain, symbol: str,
                          timestamp_ms: int, reference: Optional[str]) -> Optional[TokenPrice]:
    """
    Ask the injected PriceLookup for a historical USD quote. A lookup that
    raises is reported and treated like a missing price.
    """
    try:
        return await price_lookup.get_historical_price(symbol, timestamp_ms, chain)
    except Exception as exc:
        report_diagnostic(sink, chain, "price", reference, exc)
        return None

# ------------------------------------------------------------------
# Retry helpers
# ------------------------------------------------------------------

RATE_LIMIT_MARKERS = ("rate limit", "too many requests", "429")


def parse_retry_after(headers) -> Optional[int]:
    """Retry-After header (seconds) -> milliseconds, None if absent or a date."""
    value = headers.get("retry-after") if headers is not None else None
    if not value:
        return None
    try:
        return int(float(value) * 1000)
    except ValueError:
        return None


def is_rate_limit_error(error: Exception) -> bool:
    if isinstance(error, RateLimitError):
        return True
    text = str(error).lower()
    return any(marker in text for marker in RATE_LIMIT_MARKERS)


async def retry_on_rate_limit(operation: Callable[[], Awaitable[T]], chain, label: str,
                              max_retries: int, retry_delay_ms: int) -> T:
    """
    Await `operation()` and retry it while it fails with a rate-limit error,
    sleeping retry_delay_ms * attempt between tries (linear backoff). After
    max_retries retries the failure surfaces as RateLimitError. Any other
    exception propagates unchanged on the first occurrence.
    """
    attempt = 0
    while True:
        try:
            return await operation()
        except Exception as exc:
            if not is_rate_limit_error(exc):
                raise
            if attempt >= max_retries:
                if isinstance(exc, RateLimitError):
                    raise
                raise RateLimitError(
                    f"{label}: rate limited after {max_retries} retries",
                    chain,
                    original_error=exc,
                ) from exc
            attempt += 1
            logger.info(f"{label}: rate limited, retry {attempt}/{max_retries}")
            await asyncio.sleep(retry_delay_ms * attempt / 1000)
