"""
Agent worker package: 24/7 background orchestration.

Runs the ingestion coordinator (backfill + polling) and the ownership
reconciliation loop under one supervisor, and exposes status snapshots.
"""

from nft_indexer.agent_worker.cache import ProcessedSignatureCache
from nft_indexer.agent_worker.coordinator import CoordinatorConfig, IngestionCoordinator
from nft_indexer.agent_worker.health import IndexerStatus, SupervisorStatus
from nft_indexer.agent_worker.reconciler import run_reconciliation_loop
from nft_indexer.agent_worker.supervisor import IndexerSupervisor, build_supervisor

__all__ = [
    "CoordinatorConfig",
    "IndexerStatus",
    "IndexerSupervisor",
    "IngestionCoordinator",
    "ProcessedSignatureCache",
    "SupervisorStatus",
    "build_supervisor",
    "run_reconciliation_loop",
]
