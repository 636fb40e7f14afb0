"""
Shard progression: six achievement shards, ZENITH at all six.

Each shard has a requirement over an owner's stats; some can be lost again
when a stat falls below a threshold. Earned flags are derived on read, there
is no stored shard history.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterable

from nft_indexer.database.models import OwnerStats, Shard, ShardStatus

MINT_COUNT = "mint_count"
COLLECTION_SIZE = "collection_size"
RECENT_MINTS = "recent_mints"
UNIQUE_MINTS = "unique_mints"
MYSTERY = "mystery"

RECENT_WINDOW_DAYS = 30
ZENITH_SHARDS = 6


@dataclass(frozen=True)
class ShardConfig:
    id: str
    name: str
    emoji: str
    description: str
    requirement: str
    value: int | None = None
    loss_below: int | None = None
    """Shard is lost once the requirement stat drops below this; None means permanent."""

    @property
    def can_be_lost(self) -> bool:
        return self.loss_below is not None


SHARD_CONFIGS: tuple[ShardConfig, ...] = (
    ShardConfig("quartz", "Quartz Shard", "\u26aa", "Mint 50 ASCII art NFTs", MINT_COUNT, 50),
    ShardConfig(
        "amethyst",
        "Amethyst Shard",
        "\U0001f7e3",
        "Maintain a collection of at least 10 NFTs",
        COLLECTION_SIZE,
        10,
        loss_below=10,
    ),
    ShardConfig(
        "ruby",
        "Ruby Shard",
        "\U0001f534",
        f"Mint at least 5 NFTs in the last {RECENT_WINDOW_DAYS} days",
        RECENT_MINTS,
        5,
        loss_below=5,
    ),
    ShardConfig("sapphire", "Sapphire Shard", "\U0001f535", "Mint 100 total NFTs", MINT_COUNT, 100),
    ShardConfig(
        "emerald", "Emerald Shard", "\U0001f7e2", "Mint 25 NFTs with unique ASCII art (no duplicates)", UNIQUE_MINTS, 25
    ),
    ShardConfig("obsidian", "Obsidian Shard", "\u26ab", "Mystery - Rare achievement", MYSTERY),
)

_BY_ID = {c.id: c for c in SHARD_CONFIGS}


def get_shard_config(shard_id: str) -> ShardConfig | None:
    return _BY_ID.get(shard_id)


def _stat(stats: OwnerStats, requirement: str) -> int | None:
    if requirement == MINT_COUNT:
        return stats.total_mints
    if requirement == COLLECTION_SIZE:
        return stats.collection_size
    if requirement == RECENT_MINTS:
        return stats.recent_mints
    if requirement == UNIQUE_MINTS:
        return stats.unique_mints
    # mystery and special-event shards are never earned from stats
    return None


def check_shard_eligibility(shard_id: str, stats: OwnerStats) -> bool:
    """True when stats meet the shard's requirement. Unknown ids are never eligible."""
    config = _BY_ID.get(shard_id)
    if config is None or config.value is None:
        return False
    value = _stat(stats, config.requirement)
    return value is not None and value >= config.value


def check_shard_loss(shard_id: str, stats: OwnerStats) -> bool:
    """True when a losable shard's stat has fallen below its loss threshold."""
    config = _BY_ID.get(shard_id)
    if config is None or config.loss_below is None:
        return False
    value = _stat(stats, config.requirement)
    return value is not None and value < config.loss_below


def calculate_shard_status(stats: OwnerStats, earned: Iterable[str] = ()) -> ShardStatus:
    """
    Resolve every shard for an owner.

    A shard in `earned` stays earned unless its loss condition now holds;
    any other shard is earned when the stats meet its requirement.
    """
    earned_ids = set(earned)
    shards = []
    for config in SHARD_CONFIGS:
        if config.id in earned_ids:
            has = not check_shard_loss(config.id, stats)
        else:
            has = check_shard_eligibility(config.id, stats)
        shards.append(
            Shard(
                id=config.id,
                name=config.name,
                emoji=config.emoji,
                description=config.description,
                earned=has,
                can_be_lost=config.can_be_lost,
            )
        )
    total = sum(1 for s in shards if s.earned)
    return ShardStatus(
        shards=tuple(shards),
        total_shards=total,
        has_zenith=total >= ZENITH_SHARDS,
        shards_needed_for_zenith=max(0, ZENITH_SHARDS - total),
    )
