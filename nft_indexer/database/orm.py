"""
SQLAlchemy models for the three indexer tables.

minted_items and buyback_events are keyed on their natural identities (mint
address, transaction signature) through unique constraints; owner_levels is
derived from minted_items. Timestamps are Unix seconds.
"""

from __future__ import annotations

from typing import Any

from sqlalchemy import BigInteger, Boolean, Column, Index, Integer, String
from sqlalchemy.orm import declarative_base

Base = declarative_base()


class MintedItem(Base):
    """One minted item. Inserted once on first decode; touched or deleted only by the ownership sweep."""

    __tablename__ = "minted_items"

    id = Column(Integer, primary_key=True, autoincrement=True)
    mint = Column(String(64), unique=True, nullable=False)
    owner = Column(String(64), nullable=False, index=True)
    name = Column(String(256), nullable=False, default="")
    symbol = Column(String(64), nullable=False, default="")
    uri = Column(String(1024), nullable=False, default="")
    transaction_signature = Column(String(128), unique=True, nullable=False)
    slot = Column(BigInteger, nullable=False, default=0)
    block_time = Column(BigInteger, nullable=True)
    event_timestamp = Column(BigInteger, nullable=False)
    heuristic = Column(Boolean, nullable=False, default=False)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)

    __table_args__ = (Index("ix_minted_items_updated_at_id", "updated_at", "id"),)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "mint": self.mint,
            "owner": self.owner,
            "name": self.name,
            "symbol": self.symbol,
            "uri": self.uri,
            "transaction_signature": self.transaction_signature,
            "slot": self.slot,
            "block_time": self.block_time,
            "event_timestamp": self.event_timestamp,
            "heuristic": self.heuristic,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
        }


class OwnerLevel(Base):
    """
    Per-owner aggregate. Exists iff the owner has at least one minted_items row;
    recomputed from the current count on every insert/delete for that owner.
    """

    __tablename__ = "owner_levels"

    owner = Column(String(64), primary_key=True)
    total_items = Column(Integer, nullable=False)
    level = Column(Integer, nullable=False)
    experience = Column(Integer, nullable=False)
    next_level_items = Column(Integer, nullable=False)
    created_at = Column(BigInteger, nullable=False)
    updated_at = Column(BigInteger, nullable=False)
    version = Column(Integer, nullable=False, default=1)

    def to_dict(self) -> dict[str, Any]:
        return {
            "owner": self.owner,
            "total_items": self.total_items,
            "level": self.level,
            "experience": self.experience,
            "next_level_items": self.next_level_items,
            "created_at": self.created_at,
            "updated_at": self.updated_at,
            "version": self.version,
        }


class BuybackEvent(Base):
    """Append-only buyback log, one row per transaction."""

    __tablename__ = "buyback_events"

    id = Column(Integer, primary_key=True, autoincrement=True)
    transaction_signature = Column(String(128), unique=True, nullable=False)
    amount_lamports = Column(BigInteger, nullable=False)
    token_amount = Column(BigInteger, nullable=False)
    event_timestamp = Column(BigInteger, nullable=False, index=True)
    slot = Column(BigInteger, nullable=False, default=0)
    block_time = Column(BigInteger, nullable=True)
    heuristic = Column(Boolean, nullable=False, default=False)
    created_at = Column(BigInteger, nullable=False)

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "transaction_signature": self.transaction_signature,
            "amount_lamports": self.amount_lamports,
            "amount_sol": self.amount_lamports / 1_000_000_000.0,
            "token_amount": self.token_amount,
            "event_timestamp": self.event_timestamp,
            "slot": self.slot,
            "block_time": self.block_time,
            "heuristic": self.heuristic,
            "created_at": self.created_at,
        }
