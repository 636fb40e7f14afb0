"""
Application settings and environment configuration.

Responsibilities:
- Load configuration from environment variables and .env files.
- Validate settings and provide defaults for optional ones.
- Expose typed settings (Solana RPC URL, program id, database URL, poll and
  sweep intervals, retry policy) for the ledger reader, record store, and worker.
"""

from __future__ import annotations

import os
from dataclasses import asdict, dataclass
from typing import Any

from nft_indexer.config.env import (
    get_commitment,
    get_program_id,
    get_solana_network,
    get_solana_rpc_url,
    load_indexer_env,
    mask_rpc_url,
)
from nft_indexer.core.exceptions import ConfigError

DEFAULT_DATABASE_URL = "sqlite:///nft_indexer.db"


@dataclass(frozen=True)
class Settings:
    """Typed view of the environment. Built once at startup by get_settings()."""

    network: str
    rpc_url: str
    program_id: str
    commitment: str = "confirmed"
    database_url: str = DEFAULT_DATABASE_URL

    # Ingestion
    poll_interval_sec: float = 30.0
    backfill_limit: int = 20
    poll_limit: int = 20
    max_retries: int = 5
    retry_delay_sec: float = 2.0
    max_concurrent_processing: int = 3
    rate_limit_delay_sec: float = 0.1
    max_cache_size: int = 100_000
    cache_retention_hours: float = 24.0
    rpc_timeout_sec: float = 15.0
    heartbeat_interval_sec: float = 300.0

    # Reconciliation sweep
    sweep_interval_sec: float = 3600.0
    sweep_batch_size: int = 50
    sweep_verification_age_hours: float = 24.0
    verify_ownership_on_write: bool = True

    log_level: str = "INFO"
    log_format: str = "json"

    def to_dict(self) -> dict[str, Any]:
        """Return settings as a dict with the RPC API key masked."""
        out = asdict(self)
        out["rpc_url"] = mask_rpc_url(self.rpc_url)
        return out


def _env_float(name: str, default: float, *, minimum: float = 0.0) -> float:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = float(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be a number, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_int(name: str, default: int, *, minimum: int = 0) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        value = int(raw)
    except ValueError as e:
        raise ConfigError(f"{name} must be an integer, got {raw!r}") from e
    if value < minimum:
        raise ConfigError(f"{name} must be >= {minimum}, got {value}")
    return value


def _env_bool(name: str, default: bool) -> bool:
    raw = (os.getenv(name) or "").strip().lower()
    if not raw:
        return default
    return raw in ("1", "true", "yes", "on")


def get_settings() -> Settings:
    """
    Return the current application settings.

    Returns:
        Settings with attributes such as rpc_url, program_id, database_url,
        poll_interval_sec, max_retries, sweep_interval_sec, log_level, etc.

    Raises:
        ConfigError: if a numeric variable cannot be parsed or is out of range.
    """
    load_indexer_env()
    return Settings(
        network=get_solana_network(),
        rpc_url=get_solana_rpc_url(),
        program_id=get_program_id(),
        commitment=get_commitment(),
        database_url=(os.getenv("DATABASE_URL") or "").strip() or DEFAULT_DATABASE_URL,
        poll_interval_sec=_env_float("POLL_INTERVAL_SEC", 30.0, minimum=1.0),
        backfill_limit=_env_int("BACKFILL_LIMIT", 20, minimum=0),
        poll_limit=_env_int("POLL_LIMIT", 20, minimum=1),
        max_retries=_env_int("MAX_RETRIES", 5, minimum=1),
        retry_delay_sec=_env_float("RETRY_DELAY_SEC", 2.0),
        max_concurrent_processing=_env_int("MAX_CONCURRENT_PROCESSING", 3, minimum=1),
        rate_limit_delay_sec=_env_float("RATE_LIMIT_DELAY_SEC", 0.1),
        max_cache_size=_env_int("MAX_CACHE_SIZE", 100_000, minimum=4),
        cache_retention_hours=_env_float("CACHE_RETENTION_HOURS", 24.0),
        rpc_timeout_sec=_env_float("RPC_TIMEOUT_SEC", 15.0, minimum=0.1),
        heartbeat_interval_sec=_env_float("HEARTBEAT_INTERVAL_SEC", 300.0, minimum=1.0),
        sweep_interval_sec=_env_float("SWEEP_INTERVAL_SEC", 3600.0, minimum=1.0),
        sweep_batch_size=_env_int("SWEEP_BATCH_SIZE", 50, minimum=1),
        sweep_verification_age_hours=_env_float("SWEEP_VERIFICATION_AGE_HOURS", 24.0),
        verify_ownership_on_write=_env_bool("VERIFY_OWNERSHIP_ON_WRITE", True),
        log_level=(os.getenv("LOG_LEVEL") or "INFO").strip().upper(),
        log_format=(os.getenv("LOG_FORMAT") or "json").strip().lower(),
    )
