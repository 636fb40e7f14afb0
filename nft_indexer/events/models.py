"""
Typed events decoded from program logs.

`heuristic=True` marks records produced by the text-scanning fallback rather
than a tag-verified payload; consumers must treat those fields as best effort.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Union


@dataclass(frozen=True)
class MintEvent:
    """An item minted by the program. `minter` is the address recorded as owner."""

    minter: str
    mint: str
    name: str
    symbol: str
    uri: str
    timestamp: int
    heuristic: bool = False


@dataclass(frozen=True)
class BuybackEventData:
    """A buyback swap: native lamports spent and output tokens received."""

    amount_lamports: int
    token_amount: int
    timestamp: int
    heuristic: bool = False


DecodedEvent = Union[MintEvent, BuybackEventData]


@dataclass(frozen=True)
class DecodedTransaction:
    """Every event the decoder could extract from one transaction's logs."""

    mint_event: MintEvent | None = None
    buyback_event: BuybackEventData | None = None

    @property
    def is_empty(self) -> bool:
        return self.mint_event is None and self.buyback_event is None
