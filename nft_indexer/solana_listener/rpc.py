"""
Ledger reader: blocking Solana JSON-RPC calls over httpx.

Every call carries a bounded timeout. Transport errors, timeouts, HTTP error
statuses, JSON-RPC error objects and unknown signatures all raise
TransientRpcError. No retry or caching here; the coordinator owns that policy.
"""

from __future__ import annotations

import itertools
from typing import Any, NoReturn

import httpx
from solders.pubkey import Pubkey

from nft_indexer.core.exceptions import TransientRpcError
from nft_indexer.indexer_logging import get_logger
from nft_indexer.solana_listener.models import LedgerTransaction, SignatureInfo

logger = get_logger(__name__)

TOKEN_PROGRAM_ID = Pubkey.from_string("TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA")
ASSOCIATED_TOKEN_PROGRAM_ID = Pubkey.from_string("ATokenGPvbdGVxr1b2hvZbsiqW5xWAC5CJ4MzBdFSuz")

DEFAULT_TIMEOUT_SEC = 15.0
MAX_SIGNATURES_LIMIT = 1000


def derive_associated_token_account(owner: str, mint: str) -> Pubkey:
    """Associated token account of `owner` for `mint` (SPL Token program)."""
    owner_pk = Pubkey.from_string(owner)
    mint_pk = Pubkey.from_string(mint)
    address, _bump = Pubkey.find_program_address(
        [bytes(owner_pk), bytes(TOKEN_PROGRAM_ID), bytes(mint_pk)],
        ASSOCIATED_TOKEN_PROGRAM_ID,
    )
    return address


def _is_account_not_found(error: dict[str, Any]) -> bool:
    message = str(error.get("message", "")).lower()
    return "could not find account" in message or "account not found" in message


class LedgerReader:
    """
    Thin synchronous JSON-RPC client for the three primitives the indexer needs.

    Pass `client` to inject an httpx.Client (e.g. with httpx.MockTransport in tests);
    otherwise one is created and owned by the reader.
    """

    def __init__(
        self,
        rpc_url: str,
        *,
        timeout_sec: float = DEFAULT_TIMEOUT_SEC,
        commitment: str = "confirmed",
        client: httpx.Client | None = None,
    ) -> None:
        if not rpc_url or not rpc_url.strip():
            raise ValueError("rpc_url must be non-empty")
        self._rpc_url = rpc_url.strip()
        self._commitment = commitment
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=httpx.Timeout(timeout_sec))
        self._ids = itertools.count(1)

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> "LedgerReader":
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def _call(self, method: str, params: list[Any]) -> dict[str, Any]:
        """POST one JSON-RPC request; return the decoded envelope. Raises TransientRpcError on transport/HTTP failure."""
        body = {"jsonrpc": "2.0", "id": next(self._ids), "method": method, "params": params}
        try:
            resp = self._client.post(self._rpc_url, json=body)
            resp.raise_for_status()
            data = resp.json()
        except httpx.TimeoutException as e:
            raise TransientRpcError(f"{method} timed out: {e}") from e
        except httpx.HTTPStatusError as e:
            raise TransientRpcError(f"{method} returned HTTP {e.response.status_code}") from e
        except httpx.HTTPError as e:
            raise TransientRpcError(f"{method} transport error: {e}") from e
        except ValueError as e:
            raise TransientRpcError(f"{method} returned invalid JSON") from e
        if not isinstance(data, dict):
            raise TransientRpcError(f"{method} returned a non-object response")
        return data

    @staticmethod
    def _raise_rpc_error(method: str, error: Any, signature: str | None = None) -> NoReturn:
        if isinstance(error, dict):
            message = f"Solana RPC error: {error.get('message', error)} (code={error.get('code')})"
        else:
            message = f"Solana RPC error: {error}"
        raise TransientRpcError(f"{method}: {message}", signature=signature)

    def list_recent_signatures(self, program_id: str, limit: int = 20) -> list[SignatureInfo]:
        """getSignaturesForAddress for the program; newest first."""
        limit = max(1, min(int(limit), MAX_SIGNATURES_LIMIT))
        data = self._call(
            "getSignaturesForAddress",
            [program_id, {"limit": limit, "commitment": self._commitment}],
        )
        if "error" in data:
            self._raise_rpc_error("getSignaturesForAddress", data["error"])
        result = data.get("result")
        if not isinstance(result, list):
            raise TransientRpcError("getSignaturesForAddress returned no result")
        infos: list[SignatureInfo] = []
        for item in result:
            if not isinstance(item, dict) or "signature" not in item:
                continue
            try:
                infos.append(SignatureInfo.from_rpc_item(item))
            except (KeyError, TypeError, ValueError) as e:
                logger.debug("ledger_skip_invalid_signature_item", error=str(e))
        return infos

    def fetch_transaction(self, signature: str) -> LedgerTransaction:
        """getTransaction (json encoding, v0 supported). Unknown signature -> TransientRpcError."""
        data = self._call(
            "getTransaction",
            [
                signature,
                {
                    "encoding": "json",
                    "commitment": self._commitment,
                    "maxSupportedTransactionVersion": 0,
                },
            ],
        )
        if "error" in data:
            self._raise_rpc_error("getTransaction", data["error"], signature)
        result = data.get("result")
        if result is None:
            # Not yet visible at this commitment (or never existed); caller may retry
            raise TransientRpcError("transaction not found", signature=signature)
        return LedgerTransaction.from_rpc_result(signature, result)

    def is_owned_by(self, mint: str, owner: str) -> bool:
        """
        True iff `owner`'s associated token account for `mint` holds a positive balance.

        A missing token account means not owned. Any other failure raises
        TransientRpcError so callers can tell "no" from "don't know".
        """
        try:
            ata = derive_associated_token_account(owner, mint)
        except ValueError as e:
            logger.warning("ledger_ownership_invalid_address", mint=mint, owner=owner, error=str(e))
            return False
        data = self._call("getTokenAccountBalance", [str(ata), {"commitment": self._commitment}])
        if "error" in data:
            if isinstance(data["error"], dict) and _is_account_not_found(data["error"]):
                return False
            self._raise_rpc_error("getTokenAccountBalance", data["error"])
        result = data.get("result")
        if not isinstance(result, dict) or not isinstance(result.get("value"), dict):
            raise TransientRpcError(f"getTokenAccountBalance returned no value for {ata}")
        try:
            amount = int(result["value"].get("amount", "0"))
        except (TypeError, ValueError) as e:
            raise TransientRpcError(f"getTokenAccountBalance returned invalid amount for {ata}") from e
        return amount > 0
