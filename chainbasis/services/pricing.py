"""
chainbasis/services/pricing.py

USD price lookups for adapter enrichment.

PriceLookup is the interface the adapters depend on; PriceService is the
CoinGecko-backed implementation:
    GET /coins/{id}/history?date=DD-MM-YYYY   -> market_data.current_price.usd
    GET /simple/price?ids={id}&vs_currencies=usd

Historical quotes are cached per (coin id, UTC day) for PRICE_CACHE_TTL_SECONDS.
Unknown symbols and provider failures yield None rather than raising, so a
missing price never aborts transaction ingestion.
"""

import logging
import time
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from typing import Dict, Optional, Protocol, Tuple, runtime_checkable

import httpx

from chainbasis import config
from chainbasis.constants import ChainType
from chainbasis.schemas.blockchain import TokenPrice

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# Interface
# ------------------------------------------------------------------

@runtime_checkable
class PriceLookup(Protocol):
    async def get_historical_price(self, symbol: str, timestamp_ms: int,
                                   chain: Optional[ChainType] = None) -> Optional[TokenPrice]: ...

    async def get_current_price(self, symbol: str,
                                chain: Optional[ChainType] = None) -> Optional[TokenPrice]: ...

# ------------------------------------------------------------------
# Symbol -> CoinGecko id tables
# ------------------------------------------------------------------

NATIVE_COIN_IDS = {
    ChainType.ETHEREUM: {"ETH": "ethereum", "WETH": "weth"},
    ChainType.SOLANA: {"SOL": "solana", "WSOL": "solana"},
    ChainType.BITCOIN: {"BTC": "bitcoin"},
}

ERC20_COIN_IDS = {
    "USDT": "tether",
    "USDC": "usd-coin",
    "DAI": "dai",
    "WBTC": "wrapped-bitcoin",
    "UNI": "uniswap",
    "LINK": "chainlink",
    "AAVE": "aave",
    "MKR": "maker",
    "SNX": "synthetix-network-token",
    "COMP": "compound-governance-token",
    "YFI": "yearn-finance",
    "SUSHI": "sushi",
    "CRV": "curve-dao-token",
    "1INCH": "1inch",
    "BAL": "balancer",
    "LRC": "loopring",
    "ZRX": "0x",
    "BAT": "basic-attention-token",
    "GRT": "the-graph",
    "MANA": "decentraland",
    "SAND": "the-sandbox",
    "ENJ": "enjincoin",
    "AXS": "axie-infinity",
    "CHZ": "chiliz",
    "SHIB": "shiba-inu",
    "PEPE": "pepe",
    "LDO": "lido-dao",
    "MATIC": "matic-network",
}

SPL_COIN_IDS = {
    "USDC": "usd-coin",
    "USDT": "tether",
    "RAY": "raydium",
    "SRM": "serum",
    "FIDA": "bonfida",
    "ORCA": "orca",
    "SAMO": "samoyedcoin",
    "BONK": "bonk",
    "JUP": "jupiter-exchange-solana",
    "WETH": "weth",
    "WBTC": "wrapped-bitcoin",
}

TOKEN_COIN_IDS = {
    ChainType.ETHEREUM: ERC20_COIN_IDS,
    ChainType.SOLANA: SPL_COIN_IDS,
}


def coin_id_for(symbol: str, chain: Optional[ChainType] = None) -> Optional[str]:
    """
    Resolve a token symbol to a CoinGecko id. Token tables are scoped to
    their chain; without a chain only native assets are recognised.
    """
    symbol = (symbol or "").upper()
    chains = [ChainType(chain)] if chain is not None else list(NATIVE_COIN_IDS)
    for candidate in chains:
        coin_id = NATIVE_COIN_IDS[candidate].get(symbol)
        if coin_id:
            return coin_id
    if chain is not None:
        return TOKEN_COIN_IDS.get(ChainType(chain), {}).get(symbol)
    return None


def history_date(timestamp_ms: int) -> str:
    """Epoch ms -> CoinGecko history date (DD-MM-YYYY, UTC day)."""
    return datetime.fromtimestamp(timestamp_ms / 1000, tz=timezone.utc).strftime("%d-%m-%Y")

# ------------------------------------------------------------------
# CoinGecko implementation
# ------------------------------------------------------------------

class PriceService:
    """CoinGecko price lookups with an in-memory TTL cache for daily quotes."""

    def __init__(self, base_url: str = None, api_key: str = None, ttl_seconds: int = None,
                 transport: Optional[httpx.AsyncBaseTransport] = None, clock=time.monotonic):
        headers = {"Accept": "application/json"}
        if api_key:
            headers["x-cg-demo-api-key"] = api_key
        self.client = httpx.AsyncClient(
            base_url=base_url or config.COINGECKO_BASE_URL,
            timeout=config.REQUEST_TIMEOUT_SECONDS,
            headers=headers,
            transport=transport,
        )
        self.ttl_seconds = config.PRICE_CACHE_TTL_SECONDS if ttl_seconds is None else ttl_seconds
        self._clock = clock
        self._cache: Dict[Tuple[str, str], Tuple[float, Decimal]] = {}

    async def close(self) -> None:
        await self.client.aclose()

    def clear_cache(self) -> None:
        self._cache.clear()

    def _cached(self, key: Tuple[str, str]) -> Optional[Decimal]:
        hit = self._cache.get(key)
        if hit is None:
            return None
        stored_at, price = hit
        if self._clock() - stored_at > self.ttl_seconds:
            del self._cache[key]
            return None
        return price

    async def _get_json(self, path: str, params: dict) -> Optional[dict]:
        try:
            resp = await self.client.get(path, params=params)
            resp.raise_for_status()
            return resp.json()
        except (httpx.HTTPError, ValueError) as exc:
            logger.warning(f"CoinGecko request {path} failed: {exc}")
            return None

    async def get_historical_price(self, symbol: str, timestamp_ms: int,
                                   chain: Optional[ChainType] = None) -> Optional[TokenPrice]:
        coin_id = coin_id_for(symbol, chain)
        if coin_id is None:
            logger.debug(f"No CoinGecko id for {symbol} on {chain}")
            return None

        day = history_date(timestamp_ms)
        key = (coin_id, day)
        cached = self._cached(key)
        if cached is not None:
            return TokenPrice(symbol=symbol, price=cached, timestamp=timestamp_ms, source="coingecko-cache")

        data = await self._get_json(f"/coins/{coin_id}/history", {"date": day, "localization": "false"})
        if not data:
            return None
        usd = ((data.get("market_data") or {}).get("current_price") or {}).get("usd")
        price = _to_decimal(usd)
        if price is None:
            logger.info(f"CoinGecko has no USD price for {coin_id} on {day}")
            return None

        self._cache[key] = (self._clock(), price)
        return TokenPrice(symbol=symbol, price=price, timestamp=timestamp_ms, source="coingecko")

    async def get_current_price(self, symbol: str,
                                chain: Optional[ChainType] = None) -> Optional[TokenPrice]:
        coin_id = coin_id_for(symbol, chain)
        if coin_id is None:
            return None
        data = await self._get_json("/simple/price", {"ids": coin_id, "vs_currencies": "usd"})
        if not data:
            return None
        price = _to_decimal((data.get(coin_id) or {}).get("usd"))
        if price is None:
            return None
        now_ms = int(datetime.now(timezone.utc).timestamp() * 1000)
        return TokenPrice(symbol=symbol, price=price, timestamp=now_ms, source="coingecko")


def _to_decimal(value) -> Optional[Decimal]:
    if value is None:
        return None
    try:
        return Decimal(str(value))
    except InvalidOperation:
        return None
