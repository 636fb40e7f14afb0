"""
Health and status snapshots for the ingestion pipeline.

The excluded HTTP layer serializes these; no network or DB calls here.
"""

from __future__ import annotations

from dataclasses import asdict, dataclass, field
from typing import Any


@dataclass(frozen=True)
class IndexerStatus:
    """Point-in-time view of the ingestion coordinator."""

    is_running: bool
    program_id: str
    processed_count: int
    """Signatures currently held in the processed cache."""
    currently_processing: int
    max_cache_size: int
    cache_utilization: float
    total_processed: int
    total_errors: int
    total_retries: int
    last_processed_at: float | None
    configuration: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass(frozen=True)
class SupervisorStatus:
    """Status of both background loops."""

    indexer: IndexerStatus
    ingestion_alive: bool
    reconciliation_alive: bool
    last_sweep: dict[str, Any] | None = None

    @property
    def healthy(self) -> bool:
        return self.ingestion_alive and self.reconciliation_alive

    def to_dict(self) -> dict[str, Any]:
        return {
            "indexer": self.indexer.to_dict(),
            "ingestion_alive": self.ingestion_alive,
            "reconciliation_alive": self.reconciliation_alive,
            "last_sweep": self.last_sweep,
            "healthy": self.healthy,
        }
