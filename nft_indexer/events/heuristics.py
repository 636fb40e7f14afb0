"""
Best-effort text scanning for events when no tagged payload is present.

This path is deliberately separate from the tag-verified decoder: every record
it returns carries heuristic=True and a synthesised timestamp. Payload lines
("Program data: ...") are never scanned here.
"""

from __future__ import annotations

import re
from typing import Sequence

from nft_indexer.events.models import BuybackEventData, MintEvent

PROGRAM_DATA_PREFIX = "Program data: "

_MINT_MARKER = re.compile(r"mint", re.IGNORECASE)
_BUYBACK_MARKER = re.compile(r"buyback|swap", re.IGNORECASE)

_LAMPORTS = re.compile(r"(?<![\w])(?:lamports|amount|sol)\s*[:=]\s*(\d+)", re.IGNORECASE)
_TOKENS = re.compile(r"(?<![\w])(?:tokens|tokenamount|token_amount)\s*[:=]\s*(\d+)", re.IGNORECASE)

_field_cache: dict[str, re.Pattern[str]] = {}


def _field_pattern(field: str) -> re.Pattern[str]:
    pattern = _field_cache.get(field)
    if pattern is None:
        # field: "value" | field="value" | field: value | field=value
        pattern = re.compile(
            rf'(?<![\w]){re.escape(field)}\s*[:=]\s*(?:"([^"]*)"|([^\s,"]+))',
            re.IGNORECASE,
        )
        _field_cache[field] = pattern
    return pattern


def extract_field(line: str, field: str) -> str | None:
    """Return the value of `field` in a free-form log line, or None."""
    m = _field_pattern(field).search(line)
    if not m:
        return None
    value = m.group(1) if m.group(1) is not None else m.group(2)
    return value.strip()


def extract_lamports(line: str) -> int | None:
    m = _LAMPORTS.search(line)
    return int(m.group(1)) if m else None


def extract_tokens(line: str) -> int | None:
    m = _TOKENS.search(line)
    return int(m.group(1)) if m else None


def _text_lines(log_lines: Sequence[str]) -> list[str]:
    return [line for line in log_lines if isinstance(line, str) and PROGRAM_DATA_PREFIX not in line]


def scan_mint(
    log_lines: Sequence[str],
    account_keys: Sequence[str] | None,
    now: int,
) -> MintEvent | None:
    """
    Scan plain log lines for mint metadata.

    A line mentioning "mint" arms the scan; later values override earlier ones.
    Requires both name and symbol. Addresses fall back to the first two
    transaction account keys and may be empty strings.
    """
    armed = False
    fields: dict[str, str] = {}
    for line in _text_lines(log_lines):
        if not armed and _MINT_MARKER.search(line):
            armed = True
        if not armed:
            continue
        for field in ("name", "symbol", "uri", "minter", "mint"):
            value = extract_field(line, field)
            if value is not None:
                fields[field] = value

    if not armed or not fields.get("name") or not fields.get("symbol"):
        return None

    keys = list(account_keys or [])
    minter = fields.get("minter") or (keys[0] if len(keys) > 0 else "")
    mint = fields.get("mint") or (keys[1] if len(keys) > 1 else "")
    return MintEvent(
        minter=minter,
        mint=mint,
        name=fields["name"],
        symbol=fields["symbol"],
        uri=fields.get("uri", ""),
        timestamp=now,
        heuristic=True,
    )


def scan_buyback(log_lines: Sequence[str], now: int) -> BuybackEventData | None:
    """Scan lines mentioning buyback/swap for lamport and token amounts. Both are required."""
    lamports: int | None = None
    tokens: int | None = None
    for line in _text_lines(log_lines):
        if not _BUYBACK_MARKER.search(line):
            continue
        found = extract_lamports(line)
        if found is not None:
            lamports = found
        found = extract_tokens(line)
        if found is not None:
            tokens = found
    if lamports is None or tokens is None:
        return None
    return BuybackEventData(amount_lamports=lamports, token_amount=tokens, timestamp=now, heuristic=True)
