"""
Main entrypoint: ingestion coordinator + ownership reconciliation (24/7).

Both loops run in background threads owned by IndexerSupervisor; the main
thread waits for SIGINT/SIGTERM, then stops the loops and logs final status.

Env: SOLANA_RPC_URL (or HELIUS_API_KEY), SOLANA_PROGRAM_ID, DATABASE_URL,
POLL_INTERVAL_SEC, SWEEP_INTERVAL_SEC, LOG_LEVEL, LOG_FORMAT, etc.
"""

import signal
import sys
from typing import Any

from nft_indexer.config import get_settings
from nft_indexer.core.exceptions import ConfigError, StorageError
from nft_indexer.indexer_logging import configure_structlog, get_logger

logger = get_logger("main")


def main() -> None:
    """Load settings, start both loops, block until a shutdown signal arrives."""
    try:
        settings = get_settings()
    except ConfigError as e:
        logger.error("main_config_error", error=str(e))
        sys.exit(1)
    configure_structlog(level=settings.log_level, fmt=settings.log_format)
    logger.info("main_settings_loaded", **settings.to_dict())

    from nft_indexer.agent_worker import build_supervisor

    try:
        supervisor = build_supervisor(settings)
    except StorageError as e:
        logger.error("main_database_unavailable", error=str(e))
        sys.exit(1)

    def _handle_sig(signum: int, frame: Any) -> None:
        sig = "SIGINT" if signum == signal.SIGINT else "SIGTERM"
        logger.info("main_shutdown_signal", signal=sig)
        supervisor.stop_event.set()

    signal.signal(signal.SIGINT, _handle_sig)
    if hasattr(signal, "SIGTERM"):
        signal.signal(signal.SIGTERM, _handle_sig)

    supervisor.start()
    try:
        supervisor.wait()
    finally:
        supervisor.stop()
        logger.info("main_final_status", **supervisor.get_status().to_dict())
        supervisor.coordinator.ledger.close()


if __name__ == "__main__":
    main()
