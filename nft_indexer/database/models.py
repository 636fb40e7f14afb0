"""
Domain models passed in and out of the record store.

Candidates are what the coordinator builds from a decoded transaction; the
store turns them into ORM rows. No ORM coupling here.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class NewMintedItem:
    """Candidate minted item built from a MintEvent plus its transaction."""

    mint: str
    owner: str
    name: str
    symbol: str
    uri: str
    transaction_signature: str
    slot: int
    block_time: int | None
    event_timestamp: int
    heuristic: bool = False


@dataclass
class NewBuybackEvent:
    """Candidate buyback row built from a BuybackEventData plus its transaction."""

    transaction_signature: str
    amount_lamports: int
    token_amount: int
    event_timestamp: int
    slot: int
    block_time: int | None
    heuristic: bool = False


@dataclass(frozen=True)
class LevelInfo:
    """Derived tier for an owner's item count."""

    level: int
    experience: int
    next_level_items: int


@dataclass(frozen=True)
class OwnerStats:
    """Counts a shard check is evaluated against."""

    total_mints: int = 0
    collection_size: int = 0
    recent_mints: int = 0
    unique_mints: int = 0


@dataclass(frozen=True)
class Shard:
    id: str
    name: str
    emoji: str
    description: str
    earned: bool
    can_be_lost: bool

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "emoji": self.emoji,
            "description": self.description,
            "earned": self.earned,
            "can_be_lost": self.can_be_lost,
        }


@dataclass(frozen=True)
class ShardStatus:
    """Per-shard earned flags plus progress toward ZENITH."""

    shards: tuple[Shard, ...]
    total_shards: int
    has_zenith: bool
    shards_needed_for_zenith: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "shards": [s.to_dict() for s in self.shards],
            "total_shards": self.total_shards,
            "has_zenith": self.has_zenith,
            "shards_needed_for_zenith": self.shards_needed_for_zenith,
        }


@dataclass
class SweepResult:
    """Outcome of one reconcile_ownership() call."""

    checked: int = 0
    removed: int = 0
    confirmed: int = 0
    errors: int = 0
    owners_recomputed: int = 0
    skipped: bool = False
    """True when another sweep was already running and this call did nothing."""

    def to_dict(self) -> dict[str, Any]:
        return {
            "checked": self.checked,
            "removed": self.removed,
            "confirmed": self.confirmed,
            "errors": self.errors,
            "owners_recomputed": self.owners_recomputed,
            "skipped": self.skipped,
        }
