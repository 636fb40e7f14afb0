"""
Ingestion coordinator: signatures -> transactions -> events -> record store.

On start it backfills a bounded window of recent signatures, then polls on a
fixed interval. Each new signature is claimed (in-flight set), processed with
bounded retries, and recorded in the processed cache. Per-signature work runs
on a small thread pool; no lock is held across RPC or database calls.

Per signature: Unseen -> Processing -> Committed | Failed.
- TransientRpcError / StorageError: retried with delay retry_delay * attempt.
- DecodeFailure / ValidationError: terminal; cached so it is not retried.
- Retries exhausted: counted as an error and left uncached, so a later poll
  can rediscover it while it is still in the recent-signature window.
"""

from __future__ import annotations

import threading
import time
from concurrent.futures import Future, ThreadPoolExecutor, wait
from dataclasses import asdict, dataclass
from typing import Any, Callable, Protocol

from nft_indexer.agent_worker.cache import ProcessedSignatureCache
from nft_indexer.agent_worker.health import IndexerStatus
from nft_indexer.core.exceptions import DecodeFailure, IndexerError, ValidationError
from nft_indexer.database.models import NewBuybackEvent, NewMintedItem
from nft_indexer.events.decoder import EventDecoder
from nft_indexer.indexer_logging import bind_signature, get_logger
from nft_indexer.solana_listener.models import LedgerTransaction, SignatureInfo

logger = get_logger(__name__)

OUTCOME_COMMITTED = "committed"
OUTCOME_NO_EVENTS = "no_events"
OUTCOME_TX_FAILED = "tx_failed"
OUTCOME_REJECTED = "rejected"
OUTCOME_FAILED = "failed"
OUTCOME_CANCELLED = "cancelled"


class Ledger(Protocol):
    def list_recent_signatures(self, program_id: str, limit: int = 20) -> list[SignatureInfo]: ...

    def fetch_transaction(self, signature: str) -> LedgerTransaction: ...


class Store(Protocol):
    def save_minted_item(self, candidate: NewMintedItem) -> Any: ...

    def save_buyback_event(self, candidate: NewBuybackEvent) -> Any: ...

    def is_transaction_processed(self, signature: str) -> bool: ...


@dataclass
class CoordinatorConfig:
    """Tuning knobs for the ingestion loop. Defaults match production."""

    program_id: str
    backfill_limit: int = 20
    poll_limit: int = 20
    poll_interval_sec: float = 30.0
    max_retries: int = 5
    retry_delay_sec: float = 2.0
    max_concurrent_processing: int = 3
    rate_limit_delay_sec: float = 0.1
    max_cache_size: int = 100_000
    cache_retention_sec: float = 24 * 3600
    cache_cleanup_interval_sec: float = 3600.0
    heartbeat_interval_sec: float = 300.0

    @classmethod
    def from_settings(cls, settings: Any) -> "CoordinatorConfig":
        return cls(
            program_id=settings.program_id,
            backfill_limit=settings.backfill_limit,
            poll_limit=settings.poll_limit,
            poll_interval_sec=settings.poll_interval_sec,
            max_retries=settings.max_retries,
            retry_delay_sec=settings.retry_delay_sec,
            max_concurrent_processing=settings.max_concurrent_processing,
            rate_limit_delay_sec=settings.rate_limit_delay_sec,
            max_cache_size=settings.max_cache_size,
            cache_retention_sec=settings.cache_retention_hours * 3600,
            heartbeat_interval_sec=settings.heartbeat_interval_sec,
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class IngestionCoordinator:
    """
    Owns the processed-signature cache, the in-flight set and the metrics.

    All collaborators are injected so tests can run isolated instances with
    fake ledgers and a temporary store.
    """

    def __init__(
        self,
        ledger: Ledger,
        decoder: EventDecoder,
        store: Store,
        config: CoordinatorConfig,
        stop_event: threading.Event | None = None,
        *,
        cache: ProcessedSignatureCache | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if config.max_retries < 1:
            raise ValueError("max_retries must be >= 1")
        self.ledger = ledger
        self.decoder = decoder
        self.store = store
        self.config = config
        self.stop_event = stop_event or threading.Event()
        self._clock = clock
        self.cache = cache or ProcessedSignatureCache(
            max_size=config.max_cache_size,
            retention_sec=config.cache_retention_sec,
            clock=clock,
        )

        self._in_flight: set[str] = set()
        self._in_flight_lock = threading.Lock()
        self._metrics_lock = threading.Lock()
        self._total_processed = 0
        self._total_errors = 0
        self._total_retries = 0
        self._last_processed_at: float | None = None
        self._running = False
        self._executor: ThreadPoolExecutor | None = None

    # -------------------------------------------------------------------------
    # Claiming and metrics
    # -------------------------------------------------------------------------

    def _claim(self, signature: str) -> bool:
        """Atomically move signature to in-flight unless it is cached or already in flight."""
        with self._in_flight_lock:
            if signature in self._in_flight or signature in self.cache:
                return False
            self._in_flight.add(signature)
            return True

    def _release(self, signature: str) -> None:
        with self._in_flight_lock:
            self._in_flight.discard(signature)

    def _count(self, *, processed: int = 0, errors: int = 0, retries: int = 0) -> None:
        with self._metrics_lock:
            self._total_processed += processed
            self._total_errors += errors
            self._total_retries += retries
            if processed:
                self._last_processed_at = self._clock()

    def _mark_done(self, signature: str) -> None:
        # Cache before the in-flight entry is released so a concurrent claim always sees one of them
        self.cache.add(signature)
        self._count(processed=1)

    # -------------------------------------------------------------------------
    # Per-signature processing
    # -------------------------------------------------------------------------

    def _ingest(self, signature: str) -> str:
        """One attempt: fetch, decode, store. Raises IndexerError subclasses on failure."""
        tx = self.ledger.fetch_transaction(signature)
        if not tx.succeeded:
            logger.debug("ingest_tx_failed_on_chain", signature=signature, err=str(tx.err))
            return OUTCOME_TX_FAILED

        decoded = self.decoder.decode_transaction(tx.logs, tx.account_keys)
        if decoded.is_empty:
            logger.debug("ingest_no_events", signature=signature, program_id=self.config.program_id)
            return OUTCOME_NO_EVENTS

        if decoded.mint_event is not None:
            ev = decoded.mint_event
            if not ev.mint or not ev.minter:
                raise DecodeFailure("mint event without mint/owner address", signature=signature)
            self.store.save_minted_item(
                NewMintedItem(
                    mint=ev.mint,
                    owner=ev.minter,
                    name=ev.name,
                    symbol=ev.symbol,
                    uri=ev.uri,
                    transaction_signature=signature,
                    slot=tx.slot,
                    block_time=tx.block_time,
                    event_timestamp=ev.timestamp,
                    heuristic=ev.heuristic,
                )
            )
        if decoded.buyback_event is not None:
            ev = decoded.buyback_event
            self.store.save_buyback_event(
                NewBuybackEvent(
                    transaction_signature=signature,
                    amount_lamports=ev.amount_lamports,
                    token_amount=ev.token_amount,
                    event_timestamp=ev.timestamp,
                    slot=tx.slot,
                    block_time=tx.block_time,
                    heuristic=ev.heuristic,
                )
            )
        return OUTCOME_COMMITTED

    def process_signature(self, signature: str) -> str:
        """
        Process one signature with the retry policy and record the outcome.

        Returns one of the OUTCOME_* constants. Never raises for pipeline errors.
        """
        log = bind_signature(signature, self.config.program_id)
        max_retries = self.config.max_retries
        for attempt in range(1, max_retries + 1):
            try:
                outcome = self._ingest(signature)
            except (ValidationError, DecodeFailure) as e:
                log.warning("ingest_rejected", error_type=type(e).__name__, error=str(e), attempt=attempt)
                self.cache.add(signature)
                self._count(errors=1)
                return OUTCOME_REJECTED
            except Exception as e:
                retryable = not isinstance(e, IndexerError) or e.retryable
                if not retryable:
                    log.warning("ingest_error_not_retryable", error_type=type(e).__name__, error=str(e))
                    self._count(errors=1)
                    return OUTCOME_FAILED
                if attempt >= max_retries:
                    log.error(
                        "ingest_retries_exhausted",
                        attempt=attempt,
                        max_retries=max_retries,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                    self._count(errors=1)
                    return OUTCOME_FAILED
                delay = self.config.retry_delay_sec * attempt
                if isinstance(e, IndexerError):
                    log.warning(
                        "ingest_retry",
                        attempt=attempt,
                        max_retries=max_retries,
                        delay_sec=delay,
                        error_type=type(e).__name__,
                        error=str(e),
                    )
                else:
                    log.exception("ingest_unexpected_error_retry", attempt=attempt, delay_sec=delay)
                self._count(retries=1)
                if delay > 0 and self.stop_event.wait(delay):
                    log.info("ingest_cancelled", attempt=attempt)
                    return OUTCOME_CANCELLED
                continue
            self._mark_done(signature)
            if outcome == OUTCOME_COMMITTED:
                log.info("ingest_committed", attempt=attempt)
            return outcome
        return OUTCOME_FAILED

    def _process_claimed(self, signature: str) -> str:
        try:
            return self.process_signature(signature)
        finally:
            self._release(signature)

    # -------------------------------------------------------------------------
    # Backfill and polling
    # -------------------------------------------------------------------------

    def backfill(self) -> dict[str, int]:
        """
        Process the backfill window sequentially. Signatures already durably
        recorded (or cached) are skipped; errors never abort the batch.
        """
        summary = {"listed": 0, "processed": 0, "skipped": 0, "errors": 0}
        if self.config.backfill_limit <= 0:
            logger.info("backfill_disabled", program_id=self.config.program_id)
            return summary
        try:
            infos = self.ledger.list_recent_signatures(self.config.program_id, self.config.backfill_limit)
        except Exception as e:
            logger.warning("backfill_list_failed", program_id=self.config.program_id, error=str(e))
            self._count(errors=1)
            summary["errors"] += 1
            return summary
        summary["listed"] = len(infos)
        logger.info("backfill_started", program_id=self.config.program_id, signature_count=len(infos))
        for info in infos:
            if self.stop_event.is_set():
                break
            sig = info.signature
            if sig in self.cache:
                summary["skipped"] += 1
                continue
            try:
                recorded = self.store.is_transaction_processed(sig)
            except Exception as e:
                logger.warning("backfill_store_check_failed", signature=sig, error=str(e))
                recorded = False
            if recorded:
                self.cache.add(sig)
                summary["skipped"] += 1
                continue
            if not self._claim(sig):
                summary["skipped"] += 1
                continue
            outcome = self._process_claimed(sig)
            if outcome in (OUTCOME_FAILED, OUTCOME_REJECTED):
                summary["errors"] += 1
            else:
                summary["processed"] += 1
        logger.info("backfill_finished", program_id=self.config.program_id, **summary)
        return summary

    def _get_executor(self) -> ThreadPoolExecutor:
        if self._executor is None:
            self._executor = ThreadPoolExecutor(
                max_workers=max(1, self.config.max_concurrent_processing),
                thread_name_prefix="ingest",
            )
        return self._executor

    def poll_once(self) -> int:
        """
        One poll tick: list recent signatures and process every one that is
        neither cached nor in flight. Blocks until the submitted work finishes.
        Returns the number of signatures submitted.
        """
        try:
            infos = self.ledger.list_recent_signatures(self.config.program_id, self.config.poll_limit)
        except Exception as e:
            logger.warning("poll_list_failed", program_id=self.config.program_id, error=str(e))
            self._count(errors=1)
            return 0
        executor = self._get_executor()
        futures: list[Future[str]] = []
        for info in infos:
            if self.stop_event.is_set():
                break
            if not self._claim(info.signature):
                continue
            futures.append(executor.submit(self._process_claimed, info.signature))
            if self.config.rate_limit_delay_sec > 0:
                self.stop_event.wait(self.config.rate_limit_delay_sec)
        if futures:
            wait(futures)
            logger.info("poll_tick_done", program_id=self.config.program_id, submitted=len(futures))
        return len(futures)

    def run(self) -> None:
        """
        Backfill, then poll every poll_interval_sec until stop_event is set.
        Expired cache entries are swept hourly; a heartbeat is logged periodically.
        """
        self._running = True
        interval = max(0.0, self.config.poll_interval_sec)
        logger.info(
            "coordinator_started",
            program_id=self.config.program_id,
            poll_interval_sec=interval,
            max_concurrent=self.config.max_concurrent_processing,
        )
        try:
            self.backfill()
            last_cleanup = time.monotonic()
            last_heartbeat = time.monotonic()
            while not self.stop_event.is_set():
                tick_start = time.monotonic()
                try:
                    self.poll_once()
                except Exception as e:
                    logger.exception("poll_tick_failed", program_id=self.config.program_id, error=str(e))
                    self._count(errors=1)
                now = time.monotonic()
                if now - last_cleanup >= self.config.cache_cleanup_interval_sec:
                    removed = self.cache.sweep_expired()
                    logger.info("cache_cleanup", removed=removed, size=len(self.cache))
                    last_cleanup = now
                if now - last_heartbeat >= self.config.heartbeat_interval_sec:
                    status = self.get_status()
                    logger.info(
                        "coordinator_heartbeat",
                        program_id=self.config.program_id,
                        processed_count=status.processed_count,
                        total_processed=status.total_processed,
                        total_errors=status.total_errors,
                        total_retries=status.total_retries,
                    )
                    last_heartbeat = now
                remaining = interval - (time.monotonic() - tick_start)
                if remaining > 0:
                    self.stop_event.wait(remaining)
        finally:
            self._running = False
            self.close()
            logger.info("coordinator_stopped", program_id=self.config.program_id)

    def close(self) -> None:
        executor, self._executor = self._executor, None
        if executor is not None:
            executor.shutdown(wait=True)

    # -------------------------------------------------------------------------
    # Status
    # -------------------------------------------------------------------------

    def get_status(self) -> IndexerStatus:
        with self._in_flight_lock:
            in_flight = len(self._in_flight)
        with self._metrics_lock:
            processed, errors, retries = self._total_processed, self._total_errors, self._total_retries
            last = self._last_processed_at
        return IndexerStatus(
            is_running=self._running,
            program_id=self.config.program_id,
            processed_count=len(self.cache),
            currently_processing=in_flight,
            max_cache_size=self.cache.max_size,
            cache_utilization=round(self.cache.utilization(), 4),
            total_processed=processed,
            total_errors=errors,
            total_retries=retries,
            last_processed_at=last,
            configuration=self.config.to_dict(),
        )
