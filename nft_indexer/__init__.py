"""
NFT Indexer: off-chain view of an NFT minting program on Solana.

Runs 24/7 to discover program transactions, decode mint and buyback events
from their logs, and record them idempotently in a relational store. A
separate reconciliation loop re-verifies ownership and prunes burned items.
Modular architecture with clear separation between ledger reader, event
decoder, record store, and agent worker.
"""

__version__ = "0.1.0"
