"""
Structured logging for the NFT indexer.

JSON logs with timestamp, event_type, signature, program_id.
Use get_logger() in all indexer modules for production-ready, aggregation-friendly output.
"""

from nft_indexer.indexer_logging.logger import bind_signature, configure_structlog, get_logger

__all__ = ["bind_signature", "configure_structlog", "get_logger"]
