"""
Ownership reconciliation loop.

Independent of the ingestion poll: every interval_sec it asks the record store
to re-verify stale items. The store's own in-progress flag skips overlapping
sweeps; errors are logged and the loop continues.
"""

from __future__ import annotations

import threading
import time
from typing import Any, Callable, Protocol

from nft_indexer.database.models import SweepResult
from nft_indexer.indexer_logging import get_logger

logger = get_logger(__name__)


class Reconciler(Protocol):
    def reconcile_ownership(self, now: int | None = None) -> SweepResult: ...


def run_reconciliation_loop(
    store: Reconciler,
    interval_sec: float,
    stop_event: threading.Event,
    *,
    on_result: Callable[[SweepResult], Any] | None = None,
) -> None:
    """
    Run sweeps until stop_event is set. The first sweep runs immediately.
    Intended to run in a background thread owned by the supervisor.
    """
    interval = max(1.0, interval_sec)
    logger.info("reconciler_started", interval_sec=interval)
    sweep_count = 0
    while not stop_event.is_set():
        tick_start = time.monotonic()
        sweep_count += 1
        try:
            result = store.reconcile_ownership()
            if on_result is not None:
                on_result(result)
        except Exception as e:
            logger.exception("reconciler_sweep_failed", sweep=sweep_count, error=str(e))
        # Sleep until next tick; wake early on stop
        remaining = interval - (time.monotonic() - tick_start)
        if remaining > 0:
            stop_event.wait(remaining)
    logger.info("reconciler_stopped", sweep_count=sweep_count)
