"""
Fakes and payload builders shared by the indexer tests.
"""

from __future__ import annotations

import base64
import threading
from typing import Any

from nft_indexer.core.exceptions import TransientRpcError
from nft_indexer.events.borsh import encode_buyback_event, encode_mint_event
from nft_indexer.events.decoder import BUYBACK_EVENT_TAG, MINT_EVENT_TAG
from nft_indexer.events.models import BuybackEventData, MintEvent
from nft_indexer.solana_listener.models import LedgerTransaction, SignatureInfo

PROGRAM_ID = "56cKjpFg9QjDsRCPrHnj1efqZaw2cvfodNhz4ramoXxt"

# Valid Solana pubkeys (base58, 32 bytes)
WALLET_1 = "9QCfNuQuxct1Xk9ytFYgxc5fThmTzL4pHQnSjjrVUrka"
WALLET_2 = "7F1WzVNQ1Qpurqxxdyv3UrFQR3uoNepULVW9A4bAJ5nZ"
MINT_1 = "So11111111111111111111111111111111111111112"
MINT_2 = "EPjFWdd5AufqSSqeM2qN1xzybapC8G4wEGGkZwyTDt1v"
MINT_3 = "Es9vMFrzaCERmJfrF4H2FYD4KCoNkY11McCe8BenwNYB"

START_TIME = 1_700_000_000
DAY_SEC = 24 * 3600


class FakeClock:
    """Manually advanced Unix clock."""

    def __init__(self, start: float = START_TIME) -> None:
        self.now = float(start)

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeOwnership:
    """Ownership verifier backed by a dict. Unknown pairs are owned; exceptions are raised."""

    def __init__(self) -> None:
        self.answers: dict[tuple[str, str], Any] = {}
        self.calls: list[tuple[str, str]] = []

    def set(self, mint: str, owner: str, answer: Any) -> None:
        self.answers[(mint, owner)] = answer

    def is_owned_by(self, mint: str, owner: str) -> bool:
        self.calls.append((mint, owner))
        answer = self.answers.get((mint, owner), True)
        if isinstance(answer, Exception):
            raise answer
        return bool(answer)


class FakeLedger:
    """
    In-process ledger. `transactions[sig]` is a LedgerTransaction; `failures[sig]`
    is a list of exceptions raised (in order) before the transaction is returned.
    """

    def __init__(self) -> None:
        self.signatures: list[str] = []
        self.transactions: dict[str, LedgerTransaction] = {}
        self.failures: dict[str, list[Exception]] = {}
        self.fetch_calls: list[str] = []
        self.list_error: Exception | None = None
        self._lock = threading.Lock()

    def add(self, tx: LedgerTransaction) -> None:
        # newest first, like getSignaturesForAddress
        self.signatures.insert(0, tx.signature)
        self.transactions[tx.signature] = tx

    def list_recent_signatures(self, program_id: str, limit: int = 20) -> list[SignatureInfo]:
        if self.list_error is not None:
            raise self.list_error
        return [
            SignatureInfo(signature=s, slot=100, err=None, block_time=START_TIME, memo=None, confirmation_status="confirmed")
            for s in self.signatures[:limit]
        ]

    def fetch_transaction(self, signature: str) -> LedgerTransaction:
        with self._lock:
            self.fetch_calls.append(signature)
            pending = self.failures.get(signature)
            if pending:
                raise pending.pop(0)
        tx = self.transactions.get(signature)
        if tx is None:
            raise TransientRpcError("transaction not found", signature=signature)
        return tx


def program_data_line(tag: bytes, body: bytes) -> str:
    return "Program data: " + base64.b64encode(tag + body).decode("ascii")


def mint_logs(event: MintEvent, program_id: str = PROGRAM_ID, tag: bytes = MINT_EVENT_TAG) -> list[str]:
    return [
        f"Program {program_id} invoke [1]",
        "Program log: Instruction: MintNft",
        program_data_line(tag, encode_mint_event(event)),
        f"Program {program_id} consumed 45000 of 200000 compute units",
        f"Program {program_id} success",
    ]


def buyback_logs(event: BuybackEventData, program_id: str = PROGRAM_ID, tag: bytes = BUYBACK_EVENT_TAG) -> list[str]:
    return [
        f"Program {program_id} invoke [1]",
        "Program log: Instruction: Buyback",
        program_data_line(tag, encode_buyback_event(event)),
        f"Program {program_id} success",
    ]


def mint_tx(signature: str, mint: str, owner: str, name: str = "Item", slot: int = 100) -> LedgerTransaction:
    event = MintEvent(minter=owner, mint=mint, name=name, symbol="ITM", uri=f"https://meta/{name}.json", timestamp=START_TIME)
    return LedgerTransaction(
        signature=signature,
        slot=slot,
        block_time=START_TIME,
        logs=mint_logs(event),
        account_keys=[owner, mint],
        err=None,
    )


