"""
Supervisor for the two long-lived loops (ingestion and ownership reconciliation).

Both run as named threads sharing one stop event, so callers (main.py, tests)
can start them and stop them deterministically.
"""

from __future__ import annotations

import threading
from typing import Any

from nft_indexer.agent_worker.coordinator import CoordinatorConfig, IngestionCoordinator
from nft_indexer.agent_worker.health import SupervisorStatus
from nft_indexer.agent_worker.reconciler import Reconciler, run_reconciliation_loop
from nft_indexer.database.models import SweepResult
from nft_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

SHUTDOWN_JOIN_TIMEOUT_SEC = 15.0


class IndexerSupervisor:
    """Starts, stops and reports on the ingestion and reconciliation threads."""

    def __init__(
        self,
        coordinator: IngestionCoordinator,
        store: Reconciler,
        *,
        sweep_interval_sec: float = 3600.0,
    ) -> None:
        self.coordinator = coordinator
        self.store = store
        self.sweep_interval_sec = sweep_interval_sec
        self.stop_event = coordinator.stop_event
        self._ingest_thread: threading.Thread | None = None
        self._sweep_thread: threading.Thread | None = None
        self._last_sweep: SweepResult | None = None
        self._lock = threading.Lock()

    def _record_sweep(self, result: SweepResult) -> None:
        if result.skipped:
            return
        with self._lock:
            self._last_sweep = result

    def _run_ingestion(self) -> None:
        try:
            self.coordinator.run()
        except Exception as e:
            logger.exception("supervisor_ingestion_crashed", error=str(e))

    def start(self) -> None:
        if self._ingest_thread is not None and self._ingest_thread.is_alive():
            raise RuntimeError("supervisor already started")
        self.stop_event.clear()
        self._ingest_thread = threading.Thread(target=self._run_ingestion, name="ingestion-coordinator", daemon=True)
        self._sweep_thread = threading.Thread(
            target=run_reconciliation_loop,
            args=(self.store, self.sweep_interval_sec, self.stop_event),
            kwargs={"on_result": self._record_sweep},
            name="ownership-reconciler",
            daemon=True,
        )
        self._ingest_thread.start()
        self._sweep_thread.start()
        logger.info(
            "supervisor_started",
            program_id=self.coordinator.config.program_id,
            sweep_interval_sec=self.sweep_interval_sec,
        )

    def stop(self, timeout: float = SHUTDOWN_JOIN_TIMEOUT_SEC) -> bool:
        """Signal both loops and join them. Returns True if both exited within timeout."""
        self.stop_event.set()
        stopped = True
        for thread in (self._ingest_thread, self._sweep_thread):
            if thread is None:
                continue
            thread.join(timeout=timeout)
            if thread.is_alive():
                logger.warning("supervisor_thread_did_not_stop", thread=thread.name, timeout=timeout)
                stopped = False
        logger.info("supervisor_stopped", clean=stopped)
        return stopped

    def wait(self, poll_sec: float = 1.0) -> None:
        """Block until the stop event is set (e.g. by a signal handler)."""
        while not self.stop_event.wait(poll_sec):
            pass

    def get_status(self) -> SupervisorStatus:
        with self._lock:
            last = self._last_sweep.to_dict() if self._last_sweep else None
        return SupervisorStatus(
            indexer=self.coordinator.get_status(),
            ingestion_alive=bool(self._ingest_thread and self._ingest_thread.is_alive()),
            reconciliation_alive=bool(self._sweep_thread and self._sweep_thread.is_alive()),
            last_sweep=last,
        )


def build_supervisor(settings: Any) -> IndexerSupervisor:
    """Wire LedgerReader, EventDecoder, RecordStore and the loops from Settings."""
    from nft_indexer.database.store import get_record_store
    from nft_indexer.events.decoder import EventDecoder
    from nft_indexer.solana_listener.rpc import LedgerReader

    ledger = LedgerReader(settings.rpc_url, timeout_sec=settings.rpc_timeout_sec, commitment=settings.commitment)
    store = get_record_store(
        settings.database_url,
        ownership=ledger,
        verify_on_write=settings.verify_ownership_on_write,
        sweep_batch_size=settings.sweep_batch_size,
        verification_age_sec=settings.sweep_verification_age_hours * 3600,
    )
    coordinator = IngestionCoordinator(
        ledger,
        EventDecoder(settings.program_id),
        store,
        CoordinatorConfig.from_settings(settings),
    )
    return IndexerSupervisor(coordinator, store, sweep_interval_sec=settings.sweep_interval_sec)
