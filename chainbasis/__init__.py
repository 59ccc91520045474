"""
chainbasis: multi-chain transaction ingestion and FIFO/LIFO cost-basis accounting.
"""

__version__ = "0.1.0"
