"""
Shared enums and fixed values used across adapters, the mapper and the
cost-basis engine.
"""

from enum import Enum


class ChainType(str, Enum):
    ETHEREUM = "ethereum"
    SOLANA = "solana"
    BITCOIN = "bitcoin"


class TransactionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"
    PENDING = "pending"


class AdapterTxType(str, Enum):
    """Adapter-level transaction vocabulary (what a chain says happened)."""
    TRANSFER = "transfer"
    SWAP = "swap"
    STAKE = "stake"
    UNSTAKE = "unstake"
    MINT = "mint"
    BURN = "burn"
    DEPOSIT = "deposit"
    WITHDRAW = "withdraw"
    CLAIM = "claim"
    UNKNOWN = "unknown"


class CostBasisTxType(str, Enum):
    """Cost-basis vocabulary (what the event means for tax lots)."""
    BUY = "buy"
    SELL = "sell"
    SWAP = "swap"
    TRANSFER = "transfer"
    AIRDROP = "airdrop"
    REWARD = "reward"
    FEE = "fee"


class CostBasisMethod(str, Enum):
    FIFO = "FIFO"
    LIFO = "LIFO"


class Jurisdiction(str, Enum):
    US = "US"
    UK = "UK"
    AU = "AU"


class Network(str, Enum):
    MAINNET = "mainnet"
    TESTNET = "testnet"
    DEVNET = "devnet"


# "mining" never comes out of the mapper but may arrive from imported rows
ACQUISITION_TYPES = {"buy", "airdrop", "reward", "mining"}
DISPOSITION_TYPES = {"sell", "swap", "transfer"}

# Native asset decimals
ETH_DECIMALS = 18
SOL_DECIMALS = 9
BTC_DECIMALS = 8

NATIVE_SYMBOLS = {
    ChainType.ETHEREUM: "ETH",
    ChainType.SOLANA: "SOL",
    ChainType.BITCOIN: "BTC",
}
