"""
chainbasis/services/blockchain/factory.py

Registry mapping each supported ChainType to its adapter class. Every call to
create_adapter() returns a fresh, uninitialized adapter; callers own its
lifecycle (initialize, use, close).
"""

import logging
from typing import Dict, List, Optional

from chainbasis.constants import ChainType
from chainbasis.services.blockchain.base import ChainAdapter, DiagnosticSink, UnsupportedChainError
from chainbasis.services.blockchain.bitcoin import BitcoinAdapter
from chainbasis.services.blockchain.ethereum import EthereumAdapter
from chainbasis.services.blockchain.solana import SolanaAdapter

logger = logging.getLogger(__name__)


class AdapterFactory:
    registry: Dict[ChainType, type] = {
        ChainType.ETHEREUM: EthereumAdapter,
        ChainType.SOLANA: SolanaAdapter,
        ChainType.BITCOIN: BitcoinAdapter,
    }

    @classmethod
    def _lookup(cls, chain) -> Optional[type]:
        try:
            return cls.registry.get(ChainType(chain))
        except ValueError:
            return None

    @classmethod
    def create_adapter(cls, chain, price_lookup=None,
                       diagnostics: Optional[DiagnosticSink] = None) -> ChainAdapter:
        adapter_cls = cls._lookup(chain)
        if adapter_cls is None:
            raise UnsupportedChainError(chain)
        logger.debug(f"Creating {adapter_cls.__name__} for {chain}")
        return adapter_cls(price_lookup=price_lookup, diagnostics=diagnostics)

    @classmethod
    def is_chain_supported(cls, chain) -> bool:
        return cls._lookup(chain) is not None

    @classmethod
    def get_supported_chains(cls) -> List[ChainType]:
        return list(cls.registry)
