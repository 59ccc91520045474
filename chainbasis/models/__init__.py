# chainbasis/models/__init__.py

"""
Centralizes model imports so Base.metadata knows about every table once
chainbasis.models is imported.
"""

from chainbasis.database import Base

from .wallet import Wallet

from .transaction import Transaction, CostBasisEntry
