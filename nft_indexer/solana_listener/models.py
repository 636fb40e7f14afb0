"""
Data models for ledger reader output.

- SignatureInfo: one getSignaturesForAddress entry.
- LedgerTransaction: the parts of a getTransaction result the indexer needs
  (signature, slot, block_time, log lines, account keys, err).
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

from nft_indexer.core.exceptions import DecodeFailure


@dataclass(frozen=True)
class SignatureInfo:
    """
    Normalized transaction signature info from getSignaturesForAddress.

    Mirrors Solana RPC response fields; used as the unit of work
    handed from the ledger reader to the ingestion coordinator.
    """

    signature: str
    slot: int
    err: Any  # None if success; dict/object from RPC if failed
    block_time: int | None  # Unix timestamp; None if not available
    memo: str | None
    confirmation_status: str | None  # processed | confirmed | finalized

    @classmethod
    def from_rpc_item(cls, item: dict[str, Any]) -> "SignatureInfo":
        """Build from a single getSignaturesForAddress result item."""
        return cls(
            signature=item["signature"],
            slot=int(item["slot"]),
            err=item.get("err"),
            block_time=item.get("blockTime"),
            memo=item.get("memo"),
            confirmation_status=item.get("confirmationStatus"),
        )


def _account_key_str(key: Any) -> str | None:
    # json encoding gives plain strings; jsonParsed gives {"pubkey": ..., "signer": ...}
    if isinstance(key, str):
        return key
    if isinstance(key, dict) and isinstance(key.get("pubkey"), str):
        return key["pubkey"]
    return None


@dataclass(frozen=True)
class LedgerTransaction:
    """A confirmed transaction as returned by getTransaction."""

    signature: str
    slot: int
    block_time: int | None
    logs: list[str] = field(default_factory=list)
    account_keys: list[str] = field(default_factory=list)
    err: Any = None

    @property
    def succeeded(self) -> bool:
        return self.err is None

    @classmethod
    def from_rpc_result(cls, signature: str, result: dict[str, Any]) -> "LedgerTransaction":
        """
        Build from a getTransaction result object.

        Raises DecodeFailure when the record has no usable meta section
        (nothing to decode; retrying will not change that).
        """
        if not isinstance(result, dict):
            raise DecodeFailure("transaction result is not an object", signature=signature)
        meta = result.get("meta")
        if not isinstance(meta, dict):
            raise DecodeFailure("transaction has no meta", signature=signature)

        logs = [line for line in (meta.get("logMessages") or []) if isinstance(line, str)]

        tx = result.get("transaction")
        message = tx.get("message") if isinstance(tx, dict) else None
        if not isinstance(message, dict):
            message = {}
        keys: list[str] = []
        for key in message.get("accountKeys") or []:
            key_str = _account_key_str(key)
            if key_str:
                keys.append(key_str)
        # v0 transactions: addresses loaded from lookup tables follow the static keys
        loaded = meta.get("loadedAddresses") or {}
        for group in ("writable", "readonly"):
            keys.extend(k for k in (loaded.get(group) or []) if isinstance(k, str))

        block_time = result.get("blockTime")
        return cls(
            signature=signature,
            slot=int(result.get("slot") or 0),
            block_time=int(block_time) if block_time is not None else None,
            logs=logs,
            account_keys=keys,
            err=meta.get("err"),
        )
