"""
Pytest fixtures for indexer tests. Uses a temporary SQLite DB per test, a fake
ledger, a fake ownership verifier and a controllable clock.
"""

from __future__ import annotations

import pytest
from helpers import PROGRAM_ID, FakeClock, FakeLedger, FakeOwnership

from nft_indexer.agent_worker.coordinator import CoordinatorConfig, IngestionCoordinator
from nft_indexer.database.store import RecordStore
from nft_indexer.events.decoder import EventDecoder


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def ownership():
    return FakeOwnership()


@pytest.fixture
def store(tmp_path, monkeypatch, clock, ownership):
    """
    RecordStore on a temporary SQLite DB with a fake ownership verifier.
    Unset DATABASE_URL so nothing points at a real database.
    """
    monkeypatch.delenv("DATABASE_URL", raising=False)
    s = RecordStore(
        f"sqlite:///{tmp_path / 'indexer.db'}",
        ownership=ownership,
        rpc_delay_sec=0,
        clock=clock,
    )
    s.ensure_schema()
    yield s
    s.dispose()


@pytest.fixture
def ledger():
    return FakeLedger()


@pytest.fixture
def coordinator_config():
    return CoordinatorConfig(
        program_id=PROGRAM_ID,
        poll_interval_sec=0.05,
        max_retries=3,
        retry_delay_sec=0,
        max_concurrent_processing=2,
        rate_limit_delay_sec=0,
        max_cache_size=1000,
    )


@pytest.fixture
def coordinator(ledger, store, coordinator_config, clock):
    c = IngestionCoordinator(ledger, EventDecoder(PROGRAM_ID, clock=clock), store, coordinator_config, clock=clock)
    yield c
    c.close()
