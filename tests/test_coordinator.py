"""
Tests for the ingestion coordinator: retry/terminal semantics, backfill,
polling with the in-flight set, status, and the end-to-end mint scenario.
"""

from __future__ import annotations

import threading
import time

from helpers import (
    DAY_SEC,
    MINT_1,
    MINT_2,
    MINT_3,
    PROGRAM_ID,
    START_TIME,
    WALLET_1,
    WALLET_2,
    buyback_logs,
    mint_tx,
)
from sqlalchemy.exc import OperationalError

from nft_indexer.agent_worker.coordinator import (
    OUTCOME_COMMITTED,
    OUTCOME_FAILED,
    OUTCOME_NO_EVENTS,
    OUTCOME_REJECTED,
    OUTCOME_TX_FAILED,
    CoordinatorConfig,
    IngestionCoordinator,
)
from nft_indexer.agent_worker.supervisor import IndexerSupervisor
from nft_indexer.core.exceptions import StorageError, TransientRpcError
from nft_indexer.events.decoder import EventDecoder
from nft_indexer.events.models import BuybackEventData
from nft_indexer.solana_listener.models import LedgerTransaction


def test_mint_scenario_ingest_then_reconcile(coordinator, ledger, store, ownership, clock):
    ledger.add(mint_tx("sig-m1", MINT_1, WALLET_1))
    assert coordinator.process_signature("sig-m1") == OUTCOME_COMMITTED
    item = store.get_item_by_mint(MINT_1)
    assert item["owner"] == WALLET_1
    level = store.get_owner_level(WALLET_1)
    assert (level["total_items"], level["level"]) == (1, 1)

    ledger.add(mint_tx("sig-m2", MINT_2, WALLET_1))
    assert coordinator.process_signature("sig-m2") == OUTCOME_COMMITTED
    assert store.get_owner_level(WALLET_1)["total_items"] == 2

    clock.advance(DAY_SEC + 1)
    ownership.set(MINT_1, WALLET_1, False)
    result = store.reconcile_ownership()
    assert result.removed == 1
    assert store.get_item_by_mint(MINT_1) is None
    assert store.get_owner_level(WALLET_1)["total_items"] == 1


def test_buyback_is_recorded(coordinator, ledger, store):
    event = BuybackEventData(amount_lamports=2_000_000_000, token_amount=77, timestamp=START_TIME)
    ledger.add(LedgerTransaction(signature="sig-bb", slot=5, block_time=START_TIME, logs=buyback_logs(event)))
    assert coordinator.process_signature("sig-bb") == OUTCOME_COMMITTED
    rows = store.get_buyback_events()
    assert rows[0]["transaction_signature"] == "sig-bb"
    assert rows[0]["amount_lamports"] == 2_000_000_000
    assert rows[0]["heuristic"] is False


def test_transient_errors_are_retried(coordinator, ledger, store):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    ledger.failures["sig-1"] = [TransientRpcError("timeout"), TransientRpcError("503")]
    assert coordinator.process_signature("sig-1") == OUTCOME_COMMITTED
    assert ledger.fetch_calls.count("sig-1") == 3
    status = coordinator.get_status()
    assert status.total_retries == 2
    assert status.total_errors == 0
    assert status.total_processed == 1
    assert "sig-1" in coordinator.cache


def test_exhausted_retries_count_error_and_stay_uncached(coordinator, ledger):
    ledger.failures["sig-x"] = [TransientRpcError("down")] * 10
    assert coordinator.process_signature("sig-x") == OUTCOME_FAILED
    assert ledger.fetch_calls.count("sig-x") == 3
    status = coordinator.get_status()
    assert status.total_errors == 1
    assert status.total_retries == 2
    assert "sig-x" not in coordinator.cache


def test_storage_errors_are_retried(coordinator, ledger, store, monkeypatch):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    real_save = store.save_minted_item
    calls = {"n": 0}

    def flaky_save(candidate):
        calls["n"] += 1
        if calls["n"] == 1:
            raise StorageError("database is locked")
        return real_save(candidate)

    monkeypatch.setattr(store, "save_minted_item", flaky_save)
    assert coordinator.process_signature("sig-1") == OUTCOME_COMMITTED
    assert calls["n"] == 2


def test_validation_error_is_terminal_and_cached(coordinator, ledger, store, ownership):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    ownership.set(MINT_1, WALLET_1, False)
    assert coordinator.process_signature("sig-1") == OUTCOME_REJECTED
    assert ledger.fetch_calls.count("sig-1") == 1
    assert "sig-1" in coordinator.cache
    assert coordinator.get_status().total_errors == 1
    assert store.count_minted_items() == 0


def test_heuristic_mint_without_addresses_is_decode_failure(coordinator, ledger, store):
    ledger.add(
        LedgerTransaction(
            signature="sig-h",
            slot=1,
            block_time=None,
            logs=["Program log: Instruction: MintNft", 'Program log: name: "A", symbol: "B"'],
            account_keys=[],
        )
    )
    assert coordinator.process_signature("sig-h") == OUTCOME_REJECTED
    assert ledger.fetch_calls.count("sig-h") == 1
    assert store.count_minted_items() == 0


def test_heuristic_mint_uses_account_keys(coordinator, ledger, store):
    ledger.add(
        LedgerTransaction(
            signature="sig-h",
            slot=1,
            block_time=None,
            logs=["Program log: Instruction: MintNft", 'Program log: name: "A", symbol: "B"'],
            account_keys=[WALLET_2, MINT_3],
        )
    )
    assert coordinator.process_signature("sig-h") == OUTCOME_COMMITTED
    item = store.get_item_by_mint(MINT_3)
    assert item["owner"] == WALLET_2
    assert item["heuristic"] is True


def test_no_events_and_failed_tx_are_cached(coordinator, ledger):
    ledger.add(LedgerTransaction(signature="sig-empty", slot=1, block_time=None, logs=["Program log: hello"]))
    ledger.add(LedgerTransaction(signature="sig-err", slot=1, block_time=None, logs=[], err={"InstructionError": [0, "Custom"]}))
    assert coordinator.process_signature("sig-empty") == OUTCOME_NO_EVENTS
    assert coordinator.process_signature("sig-err") == OUTCOME_TX_FAILED
    assert "sig-empty" in coordinator.cache
    assert "sig-err" in coordinator.cache


def test_backfill_skips_durably_recorded_signatures(coordinator, ledger, store):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    ledger.add(mint_tx("sig-2", MINT_2, WALLET_1))
    coordinator.process_signature("sig-1")
    coordinator.cache.clear()
    ledger.fetch_calls.clear()

    summary = coordinator.backfill()
    assert summary["listed"] == 2
    assert summary["skipped"] == 1
    assert summary["processed"] == 1
    assert ledger.fetch_calls == ["sig-2"]
    assert "sig-1" in coordinator.cache


def test_backfill_continues_after_errors(coordinator, ledger, store):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    ledger.add(mint_tx("sig-2", MINT_2, WALLET_1))
    ledger.failures["sig-2"] = [TransientRpcError("down")] * 10
    summary = coordinator.backfill()
    assert summary["errors"] == 1
    assert summary["processed"] == 1
    assert store.get_item_by_mint(MINT_1) is not None


def test_backfill_list_failure_is_logged_and_counted(coordinator, ledger):
    ledger.list_error = TransientRpcError("unreachable")
    summary = coordinator.backfill()
    assert summary["errors"] == 1
    assert coordinator.get_status().total_errors == 1


def test_poll_once_skips_cached_and_processes_new(coordinator, ledger, store):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    ledger.add(mint_tx("sig-2", MINT_2, WALLET_1))
    assert coordinator.poll_once() == 2
    assert coordinator.poll_once() == 0
    ledger.add(mint_tx("sig-3", MINT_3, WALLET_2))
    assert coordinator.poll_once() == 1
    assert store.count_minted_items() == 3
    assert store.get_owner_level(WALLET_1)["total_items"] == 2
    assert coordinator.get_status().currently_processing == 0


def test_in_flight_signature_is_not_claimed_twice(coordinator):
    assert coordinator._claim("sig-1") is True
    assert coordinator._claim("sig-1") is False
    assert coordinator.get_status().currently_processing == 1
    coordinator._release("sig-1")
    assert coordinator._claim("sig-1") is True


def test_concurrent_duplicate_delivery_stores_once(ledger, store, clock):
    config = CoordinatorConfig(program_id=PROGRAM_ID, max_retries=2, retry_delay_sec=0, max_concurrent_processing=4)
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    coordinators = [
        IngestionCoordinator(ledger, EventDecoder(PROGRAM_ID), store, config, clock=clock) for _ in range(4)
    ]
    threads = [threading.Thread(target=c.process_signature, args=("sig-1",)) for c in coordinators]
    for t in threads:
        t.start()
    for t in threads:
        t.join(10)
    assert store.count_minted_items() == 1
    assert store.get_owner_level(WALLET_1)["total_items"] == 1


def test_get_status_fields(coordinator, ledger, clock):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    coordinator.process_signature("sig-1")
    status = coordinator.get_status()
    assert status.is_running is False
    assert status.program_id == PROGRAM_ID
    assert status.processed_count == 1
    assert status.max_cache_size == 1000
    assert status.cache_utilization == 0.001
    assert status.last_processed_at == clock()
    assert status.configuration["poll_limit"] == 20
    assert status.to_dict()["total_processed"] == 1


def test_supervisor_starts_and_stops_loops(coordinator, ledger, store):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    supervisor = IndexerSupervisor(coordinator, store, sweep_interval_sec=3600)
    supervisor.start()
    deadline = time.monotonic() + 10
    while store.count_minted_items() == 0 and time.monotonic() < deadline:
        time.sleep(0.05)
    status = supervisor.get_status()
    assert status.ingestion_alive
    assert status.reconciliation_alive
    assert status.indexer.is_running
    assert supervisor.stop(timeout=10) is True
    assert not supervisor.get_status().ingestion_alive
    assert store.count_minted_items() == 1


def test_level_recompute_failure_retries_whole_mint(coordinator, ledger, store, monkeypatch):
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    real = store._recalculate_owner_level_in
    calls = {"n": 0}

    def flaky(session, owner, now):
        calls["n"] += 1
        if calls["n"] == 1:
            raise OperationalError("UPDATE owner_levels", {}, Exception("database is locked"))
        return real(session, owner, now)

    monkeypatch.setattr(store, "_recalculate_owner_level_in", flaky)
    assert coordinator.process_signature("sig-1") == OUTCOME_COMMITTED
    assert store.count_minted_items(WALLET_1) == 1
    assert store.get_owner_level(WALLET_1)["total_items"] == 1
    assert coordinator.get_status().total_retries == 1


def test_backfill_limit_zero_lists_nothing(ledger, store, clock):
    config = CoordinatorConfig(program_id=PROGRAM_ID, backfill_limit=0, retry_delay_sec=0)
    ledger.add(mint_tx("sig-1", MINT_1, WALLET_1))
    c = IngestionCoordinator(ledger, EventDecoder(PROGRAM_ID), store, config, clock=clock)
    summary = c.backfill()
    c.close()
    assert summary == {"listed": 0, "processed": 0, "skipped": 0, "errors": 0}
    assert ledger.fetch_calls == []
    assert store.count_minted_items() == 0
