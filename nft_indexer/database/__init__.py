"""
Record store: minted items, owner levels, shard progress, buyback events.

SQLite by default (DATABASE_URL unset); PostgreSQL via DATABASE_URL.
"""

from nft_indexer.database.levels import LEVEL_THRESHOLDS, calculate_level, level_for_count
from nft_indexer.database.models import (
    LevelInfo,
    NewBuybackEvent,
    NewMintedItem,
    OwnerStats,
    Shard,
    ShardStatus,
    SweepResult,
)
from nft_indexer.database.orm import Base, BuybackEvent, MintedItem, OwnerLevel
from nft_indexer.database.shards import SHARD_CONFIGS, calculate_shard_status, check_shard_eligibility, check_shard_loss
from nft_indexer.database.store import OwnershipVerifier, RecordStore, get_record_store

__all__ = [
    "Base",
    "BuybackEvent",
    "LEVEL_THRESHOLDS",
    "LevelInfo",
    "MintedItem",
    "NewBuybackEvent",
    "NewMintedItem",
    "OwnerLevel",
    "OwnerStats",
    "OwnershipVerifier",
    "RecordStore",
    "SHARD_CONFIGS",
    "Shard",
    "ShardStatus",
    "SweepResult",
    "calculate_level",
    "calculate_shard_status",
    "check_shard_eligibility",
    "check_shard_loss",
    "get_record_store",
    "level_for_count",
]
