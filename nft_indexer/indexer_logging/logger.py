"""
Structured JSON logging: timestamp, event_type, signature, program_id.

Production-ready: structlog with ISO timestamps, log level, and consistent
keys for aggregation (e.g. Datadog, CloudWatch). All indexer modules should
use get_logger() and pass event_type (and signature / program_id where relevant).

Uses only Python stdlib logging and structlog; no nft_indexer imports to avoid circular imports.
"""

from __future__ import annotations

import logging
import os
import sys
from datetime import datetime, timezone
from typing import Any

import structlog

# Default log level from env
LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_LEVEL_VALUE = getattr(logging, LOG_LEVEL, logging.INFO)

# JSON output for production (LOG_FORMAT=json); human-readable for local
LOG_FORMAT = os.getenv("LOG_FORMAT", "json").strip().lower()


def _add_timestamp(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Ensure timestamp is always present (ISO 8601)."""
    if "timestamp" not in event_dict:
        event_dict["timestamp"] = datetime.now(timezone.utc).isoformat()
    return event_dict


def _normalize_event(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Rename structlog 'event' to event_type for consistency; keep message if present."""
    if "event" in event_dict and "event_type" not in event_dict:
        event_dict["event_type"] = event_dict.pop("event")
    if "message" not in event_dict and "event_type" in event_dict:
        event_dict["message"] = str(event_dict["event_type"])
    return event_dict


def _shorten_signature(
    logger: Any,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Truncate transaction signatures at debug level to keep lines readable."""
    if method_name == "debug":
        sig = event_dict.get("signature")
        if isinstance(sig, str) and len(sig) > 20:
            event_dict["signature"] = sig[:16] + "..."
    return event_dict


def configure_structlog(level: str | None = None, fmt: str | None = None) -> None:
    """Configure structlog: JSON, timestamp, level, event_type. Safe to call again to reconfigure."""
    level_value = getattr(logging, (level or LOG_LEVEL).upper(), logging.INFO)
    log_format = (fmt or LOG_FORMAT).strip().lower()
    shared_processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.StackInfoRenderer(),
        structlog.processors.format_exc_info,
        _add_timestamp,
        _shorten_signature,
        _normalize_event,
    ]
    if log_format == "json":
        shared_processors.append(structlog.processors.JSONRenderer())
    else:
        shared_processors.append(
            structlog.dev.ConsoleRenderer(colors=sys.stderr.isatty())
        )
    structlog.configure(
        processors=shared_processors,
        wrapper_class=structlog.make_filtering_bound_logger(level_value),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(file=sys.stdout),
        cache_logger_on_first_use=True,
    )


# One-time configuration on first import
if not structlog.is_configured():
    configure_structlog()


def get_logger(name: str) -> structlog.BoundLogger:
    """
    Return a structured logger for the given module name.

    Log with event_type (first arg) and optional signature, program_id, etc.:
        logger = get_logger(__name__)
        logger.info("mint_item_saved", signature=sig, mint=mint, owner=owner)
    Output (JSON): {"event_type": "mint_item_saved", "signature": "...", "mint": "...", "timestamp": "...", "level": "info", "logger": "module.name"}
    """
    return structlog.get_logger(name).bind(logger=name)


def bind_signature(signature: str, program_id: str | None = None) -> structlog.BoundLogger:
    """Return a logger with signature (and program_id) bound to all subsequent log calls."""
    log = get_logger("nft_indexer").bind(signature=signature)
    if program_id:
        log = log.bind(program_id=program_id)
    return log
