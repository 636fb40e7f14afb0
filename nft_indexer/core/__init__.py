"""
Core utilities: error taxonomy and cross-cutting concerns.

Shared by the ledger reader, event decoder, record store, and agent worker.
"""

from nft_indexer.core.exceptions import (
    ConfigError,
    DecodeFailure,
    IndexerError,
    RpcError,
    StorageError,
    TransientRpcError,
    ValidationError,
)

__all__ = [
    "ConfigError",
    "DecodeFailure",
    "IndexerError",
    "RpcError",
    "StorageError",
    "TransientRpcError",
    "ValidationError",
]
