"""
Event decoder: program log lines -> typed events.

Primary path: inside the program's own invoke/success range, lines of the form
"Program data: <base64>" carry an 8-byte event tag followed by a Borsh body.
Secondary path (heuristics.py): free-text scanning, used only when the primary
path yields nothing for that event kind. The decoder never raises on input.
"""

from __future__ import annotations

import base64
import binascii
import time
from typing import Callable, Iterator, Sequence

from nft_indexer.events import heuristics
from nft_indexer.events.borsh import BorshError, parse_buyback_event, parse_mint_event
from nft_indexer.events.models import BuybackEventData, DecodedEvent, DecodedTransaction, MintEvent
from nft_indexer.indexer_logging import get_logger

logger = get_logger(__name__)

MINT_EVENT_TAG = bytes([62, 73, 213, 84, 217, 70, 37, 55])
BUYBACK_EVENT_TAG = bytes([73, 203, 66, 140, 17, 155, 53, 84])
TAG_LEN = 8

PROGRAM_DATA_PREFIX = heuristics.PROGRAM_DATA_PREFIX

KIND_MINT = "mint"
KIND_BUYBACK = "buyback"


class EventDecoder:
    """
    Stateless decoder bound to one program id.

    The tag registry is an instance field so tests (or a second program) can
    use an isolated decoder without touching module state.
    """

    def __init__(
        self,
        program_id: str,
        *,
        tags: dict[str, bytes] | None = None,
        clock: Callable[[], float] = time.time,
    ) -> None:
        if not program_id or not program_id.strip():
            raise ValueError("program_id must be non-empty")
        self.program_id = program_id.strip()
        self.tags: dict[str, bytes] = dict(tags or {KIND_MINT: MINT_EVENT_TAG, KIND_BUYBACK: BUYBACK_EVENT_TAG})
        self._clock = clock
        self._invoke_marker = f"Program {self.program_id} invoke"
        self._exit_markers = (f"Program {self.program_id} success", f"Program {self.program_id} failed")

    # -------------------------------------------------------------------------
    # Tag-verified path
    # -------------------------------------------------------------------------

    def _candidate_payloads(self, log_lines: Sequence[str]) -> Iterator[bytes]:
        """Yield decoded payload bytes of "Program data:" lines inside our program's execution range."""
        inside = False
        for line in log_lines or ():
            if not isinstance(line, str):
                continue
            if self._invoke_marker in line:
                inside = True
                continue
            if any(marker in line for marker in self._exit_markers):
                inside = False
                continue
            if not inside:
                continue
            idx = line.find(PROGRAM_DATA_PREFIX)
            if idx < 0:
                continue
            encoded = line[idx + len(PROGRAM_DATA_PREFIX) :].strip()
            try:
                yield base64.b64decode(encoded, validate=True)
            except (binascii.Error, ValueError):
                logger.debug("decoder_payload_not_base64", program_id=self.program_id)

    def _tagged_events(self, log_lines: Sequence[str]) -> Iterator[DecodedEvent]:
        for payload in self._candidate_payloads(log_lines):
            if len(payload) < TAG_LEN:
                continue
            tag, body = payload[:TAG_LEN], payload[TAG_LEN:]
            try:
                if tag == self.tags.get(KIND_MINT):
                    yield parse_mint_event(body)
                elif tag == self.tags.get(KIND_BUYBACK):
                    yield parse_buyback_event(body)
            except (BorshError, ValueError) as e:
                logger.warning("decoder_payload_malformed", program_id=self.program_id, error=str(e))

    def _now(self) -> int:
        return int(self._clock())

    # -------------------------------------------------------------------------
    # Public API
    # -------------------------------------------------------------------------

    def decode_mint(
        self, log_lines: Sequence[str], account_keys: Sequence[str] | None = None
    ) -> MintEvent | None:
        """Return the first tagged MintEvent, else a heuristic one, else None."""
        try:
            for event in self._tagged_events(log_lines):
                if isinstance(event, MintEvent):
                    return event
            event = heuristics.scan_mint(log_lines or (), account_keys, self._now())
        except Exception as e:
            logger.warning("decoder_mint_unexpected_error", program_id=self.program_id, error=str(e))
            return None
        if event is not None:
            logger.debug("decoder_mint_heuristic", program_id=self.program_id, name=event.name)
        return event

    def decode_buyback(self, log_lines: Sequence[str]) -> BuybackEventData | None:
        """Return the first tagged BuybackEvent, else a heuristic one, else None."""
        try:
            for event in self._tagged_events(log_lines):
                if isinstance(event, BuybackEventData):
                    return event
            event = heuristics.scan_buyback(log_lines or (), self._now())
        except Exception as e:
            logger.warning("decoder_buyback_unexpected_error", program_id=self.program_id, error=str(e))
            return None
        if event is not None:
            logger.debug("decoder_buyback_heuristic", program_id=self.program_id)
        return event

    def decode(
        self, log_lines: Sequence[str], account_keys: Sequence[str] | None = None
    ) -> DecodedEvent | None:
        """
        First tag-verified event of either kind, in log order.
        Otherwise a heuristic mint, then a heuristic buyback. None when nothing matched.
        """
        try:
            for event in self._tagged_events(log_lines):
                return event
            now = self._now()
            return heuristics.scan_mint(log_lines or (), account_keys, now) or heuristics.scan_buyback(
                log_lines or (), now
            )
        except Exception as e:
            logger.warning("decoder_unexpected_error", program_id=self.program_id, error=str(e))
            return None

    def decode_transaction(
        self, log_lines: Sequence[str], account_keys: Sequence[str] | None = None
    ) -> DecodedTransaction:
        """Decode both event kinds independently for one transaction."""
        return DecodedTransaction(
            mint_event=self.decode_mint(log_lines, account_keys),
            buyback_event=self.decode_buyback(log_lines),
        )


def decode(log_lines: Sequence[str], program_id: str) -> DecodedEvent | None:
    """Convenience wrapper: decode with a throwaway EventDecoder for program_id."""
    return EventDecoder(program_id).decode(log_lines)
