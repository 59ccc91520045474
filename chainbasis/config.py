"""
chainbasis/config.py

Environment-driven settings for chainbasis.

Loads a .env file from the project root (if present) and exposes the RPC / API
endpoints each chain adapter talks to, plus database and pricing settings.
Nothing here performs network I/O; adapters receive an AdapterConfig built by
adapter_config_for() and open their own clients in initialize().
"""

import os
import logging
from dotenv import load_dotenv

from chainbasis.constants import ChainType
from chainbasis.schemas.blockchain import AdapterConfig

logger = logging.getLogger(__name__)

# ------------------------------------------------------------------
# 1) Environment Setup
# ------------------------------------------------------------------
BASE_DIR = os.path.dirname(os.path.abspath(__file__))
PROJECT_ROOT = os.path.dirname(BASE_DIR)

dotenv_path = os.path.join(PROJECT_ROOT, ".env")
load_dotenv(dotenv_path=dotenv_path)

# ------------------------------------------------------------------
# 2) Chain endpoints
# ------------------------------------------------------------------
ETHEREUM_RPC_URL = os.getenv("ETHEREUM_RPC_URL", "https://eth.llamarpc.com")
SOLANA_RPC_URL = os.getenv("SOLANA_RPC_URL", "https://api.mainnet-beta.solana.com")
BITCOIN_API_URL = os.getenv("BITCOIN_API_URL", "https://api.blockcypher.com/v1/btc/main")

ETHEREUM_API_KEY = os.getenv("ETHEREUM_API_KEY")
SOLANA_API_KEY = os.getenv("SOLANA_API_KEY")
BITCOIN_API_KEY = os.getenv("BITCOIN_API_KEY")

NETWORK = os.getenv("CHAIN_NETWORK", "mainnet")

# Per-request politeness delay, mostly relevant for public Solana RPC nodes
RATE_LIMIT_MS = int(os.getenv("RATE_LIMIT_MS", "0"))
SOLANA_RATE_LIMIT_MS = int(os.getenv("SOLANA_RATE_LIMIT_MS", str(RATE_LIMIT_MS)))

MAX_RETRIES = int(os.getenv("RPC_MAX_RETRIES", "3"))
RETRY_DELAY_MS = int(os.getenv("RPC_RETRY_DELAY_MS", "750"))
REQUEST_TIMEOUT_SECONDS = float(os.getenv("RPC_TIMEOUT_SECONDS", "30"))

# ------------------------------------------------------------------
# 3) Pricing & persistence
# ------------------------------------------------------------------
COINGECKO_BASE_URL = os.getenv("COINGECKO_BASE_URL", "https://api.coingecko.com/api/v3")
PRICE_CACHE_TTL_SECONDS = int(os.getenv("PRICE_CACHE_TTL_SECONDS", "300"))

DATABASE_FILE_ENV = os.getenv("DATABASE_FILE", "chainbasis/chainbasis.db")
DATABASE_FILE = (
    DATABASE_FILE_ENV if os.path.isabs(DATABASE_FILE_ENV)
    else os.path.join(PROJECT_ROOT, DATABASE_FILE_ENV)
)
DATABASE_URL = os.getenv("DATABASE_URL", f"sqlite:///{DATABASE_FILE}")

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO")

_CHAIN_SETTINGS = {
    ChainType.ETHEREUM: (ETHEREUM_RPC_URL, ETHEREUM_API_KEY, RATE_LIMIT_MS),
    ChainType.SOLANA: (SOLANA_RPC_URL, SOLANA_API_KEY, SOLANA_RATE_LIMIT_MS),
    ChainType.BITCOIN: (BITCOIN_API_URL, BITCOIN_API_KEY, RATE_LIMIT_MS),
}


def adapter_config_for(chain: ChainType) -> AdapterConfig:
    """
    Build the AdapterConfig for a chain from environment settings.
    Raises KeyError for chains without configured endpoints.
    """
    rpc_url, api_key, rate_limit_ms = _CHAIN_SETTINGS[ChainType(chain)]
    logger.debug(f"Adapter config for {chain}: rpc_url={rpc_url[:40]}...")
    return AdapterConfig(
        rpc_url=rpc_url,
        api_key=api_key,
        network=NETWORK,
        rate_limit_ms=rate_limit_ms,
        max_retries=MAX_RETRIES,
        retry_delay_ms=RETRY_DELAY_MS,
        timeout_seconds=REQUEST_TIMEOUT_SECONDS,
    )
