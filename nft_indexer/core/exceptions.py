"""
Application-level exceptions.

Error taxonomy for the ingestion pipeline. The coordinator decides retry
policy from the exception type alone:

- TransientRpcError: network/endpoint failure; retried with backoff.
- DecodeFailure: malformed or unusable transaction payload; not retried.
- ValidationError: write rejected (e.g. ownership mismatch); not retried.
- StorageError: database unavailable or failing; retried at the caller's discretion.
"""

from __future__ import annotations


class IndexerError(Exception):
    """Base class for all indexer errors."""

    retryable: bool = False

    def __init__(self, message: str, *, signature: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        self.signature = signature

    def __str__(self) -> str:
        if self.signature:
            return f"{self.message} (signature={self.signature})"
        return self.message


class ConfigError(IndexerError):
    """Invalid or missing configuration at startup."""


class RpcError(IndexerError):
    """Failure talking to the Solana RPC endpoint."""


class TransientRpcError(RpcError):
    """Endpoint unreachable, timed out, returned an error status, or does not know the signature yet."""

    retryable = True


class DecodeFailure(IndexerError):
    """Transaction payload could not be turned into events; skip it."""


class ValidationError(IndexerError):
    """Candidate record rejected by the store (e.g. owner no longer holds the item)."""


class StorageError(IndexerError):
    """Database unavailable or a statement failed."""

    retryable = True
