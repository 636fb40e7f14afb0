"""
Minimal Borsh reader for the two program event layouts.

Integers are fixed-width little-endian; strings are a u32 little-endian byte
length followed by UTF-8; public keys are 32 raw bytes rendered as base58.
"""

from __future__ import annotations

import struct

from solders.pubkey import Pubkey

from nft_indexer.events.models import BuybackEventData, MintEvent

PUBKEY_LEN = 32

_U32 = struct.Struct("<I")
_U64 = struct.Struct("<Q")
_I64 = struct.Struct("<q")


class BorshError(ValueError):
    """Buffer too short or not valid for the expected layout."""


class BorshReader:
    """Sequential cursor over a byte buffer."""

    def __init__(self, data: bytes, offset: int = 0) -> None:
        self._data = data
        self._pos = offset

    @property
    def remaining(self) -> int:
        return len(self._data) - self._pos

    def _take(self, n: int) -> bytes:
        if n < 0 or self._pos + n > len(self._data):
            raise BorshError(f"need {n} bytes at offset {self._pos}, have {self.remaining}")
        chunk = self._data[self._pos : self._pos + n]
        self._pos += n
        return chunk

    def read_u32(self) -> int:
        return _U32.unpack(self._take(4))[0]

    def read_u64(self) -> int:
        return _U64.unpack(self._take(8))[0]

    def read_i64(self) -> int:
        return _I64.unpack(self._take(8))[0]

    def read_pubkey(self) -> str:
        return str(Pubkey.from_bytes(self._take(PUBKEY_LEN)))

    def read_string(self) -> str:
        length = self.read_u32()
        raw = self._take(length)
        try:
            return raw.decode("utf-8")
        except UnicodeDecodeError as e:
            raise BorshError(f"invalid utf-8 string at offset {self._pos - length}") from e


def parse_mint_event(body: bytes) -> MintEvent:
    """Deserialize a MintEvent body (bytes after the 8-byte tag)."""
    r = BorshReader(body)
    minter = r.read_pubkey()
    mint = r.read_pubkey()
    name = r.read_string()
    symbol = r.read_string()
    uri = r.read_string()
    timestamp = r.read_i64()
    return MintEvent(minter=minter, mint=mint, name=name, symbol=symbol, uri=uri, timestamp=timestamp)


def parse_buyback_event(body: bytes) -> BuybackEventData:
    """Deserialize a BuybackEvent body (bytes after the 8-byte tag)."""
    r = BorshReader(body)
    amount = r.read_u64()
    tokens = r.read_u64()
    timestamp = r.read_i64()
    return BuybackEventData(amount_lamports=amount, token_amount=tokens, timestamp=timestamp)


# Encoders are used by tests and tooling to build fixture payloads.


def encode_string(value: str) -> bytes:
    raw = value.encode("utf-8")
    return _U32.pack(len(raw)) + raw


def encode_mint_event(event: MintEvent) -> bytes:
    return (
        bytes(Pubkey.from_string(event.minter))
        + bytes(Pubkey.from_string(event.mint))
        + encode_string(event.name)
        + encode_string(event.symbol)
        + encode_string(event.uri)
        + _I64.pack(event.timestamp)
    )


def encode_buyback_event(event: BuybackEventData) -> bytes:
    return _U64.pack(event.amount_lamports) + _U64.pack(event.token_amount) + _I64.pack(event.timestamp)
