"""
Tests for the event decoder: tag-verified Borsh path and heuristic fallback.
"""

from __future__ import annotations

import base64

import pytest
from helpers import (
    MINT_1,
    PROGRAM_ID,
    START_TIME,
    WALLET_1,
    buyback_logs,
    mint_logs,
    program_data_line,
)

from nft_indexer.events import BUYBACK_EVENT_TAG, MINT_EVENT_TAG, BuybackEventData, EventDecoder, MintEvent, decode
from nft_indexer.events.borsh import BorshError, encode_mint_event, parse_mint_event
from nft_indexer.events.heuristics import extract_field, extract_lamports, extract_tokens

OTHER_PROGRAM = "TokenkegQfeZyiNwAJbNbGKPFXCWuBvf9Ss623VQ5DA"


@pytest.fixture
def decoder():
    return EventDecoder(PROGRAM_ID, clock=lambda: START_TIME + 42)


def _mint_event(**overrides):
    fields = dict(
        minter=WALLET_1,
        mint=MINT_1,
        name="Pixel Cat #7",
        symbol="PCAT",
        uri="https://example.com/7.json",
        timestamp=1_712_345_678,
    )
    fields.update(overrides)
    return MintEvent(**fields)


def test_decode_tagged_mint_matches_encoded_fields(decoder):
    event = _mint_event()
    decoded = decoder.decode(mint_logs(event))
    assert decoded == event
    assert decoded.heuristic is False


def test_decode_tagged_mint_unicode_and_negative_timestamp(decoder):
    event = _mint_event(name="Café ☕", timestamp=-5)
    assert decoder.decode_mint(mint_logs(event)) == event


def test_decode_tagged_buyback(decoder):
    event = BuybackEventData(amount_lamports=1_500_000_000, token_amount=42_000_000, timestamp=1_712_000_000)
    decoded = decoder.decode(buyback_logs(event))
    assert decoded == event
    assert decoder.decode_buyback(buyback_logs(event)) == event
    assert decoder.decode_mint(buyback_logs(event)) is None


def test_module_level_decode():
    event = _mint_event()
    assert decode(mint_logs(event), PROGRAM_ID) == event


def test_corrupted_tag_returns_nothing(decoder):
    bad_tag = bytes([MINT_EVENT_TAG[0] ^ 0xFF]) + MINT_EVENT_TAG[1:]
    logs = mint_logs(_mint_event(), tag=bad_tag)
    assert decoder.decode(logs) is None
    tx = decoder.decode_transaction(logs)
    assert tx.is_empty


def test_payload_outside_program_range_is_ignored(decoder):
    event = _mint_event()
    logs = mint_logs(event, program_id=OTHER_PROGRAM)
    assert decoder.decode_mint(logs) is None


def test_payload_after_success_marker_is_ignored(decoder):
    event = _mint_event()
    logs = [
        f"Program {PROGRAM_ID} invoke [1]",
        f"Program {PROGRAM_ID} success",
        program_data_line(MINT_EVENT_TAG, encode_mint_event(event)),
    ]
    assert decoder.decode(logs) is None


def test_truncated_body_does_not_raise(decoder):
    body = encode_mint_event(_mint_event())[:40]
    logs = [
        f"Program {PROGRAM_ID} invoke [1]",
        program_data_line(MINT_EVENT_TAG, body),
        f"Program {PROGRAM_ID} success",
    ]
    assert decoder.decode(logs) is None


def test_garbage_input_does_not_raise(decoder):
    logs = [
        f"Program {PROGRAM_ID} invoke [1]",
        "Program data: !!!not-base64!!!",
        "Program data: " + base64.b64encode(b"\x01\x02").decode(),
        None,
        f"Program {PROGRAM_ID} success",
    ]
    assert decoder.decode(logs) is None
    assert decoder.decode([]) is None
    assert decoder.decode(None) is None


def test_first_tagged_event_wins_in_log_order(decoder):
    buyback = BuybackEventData(amount_lamports=10, token_amount=20, timestamp=30)
    mint = _mint_event()
    logs = buyback_logs(buyback) + mint_logs(mint)
    assert decoder.decode(logs) == buyback
    tx = decoder.decode_transaction(logs)
    assert tx.mint_event == mint
    assert tx.buyback_event == buyback


def test_custom_tag_registry_is_per_instance():
    custom_tag = bytes(range(8))
    decoder = EventDecoder(PROGRAM_ID, tags={"mint": custom_tag, "buyback": BUYBACK_EVENT_TAG})
    event = _mint_event()
    assert decoder.decode(mint_logs(event, tag=custom_tag)) == event
    # default instance is unaffected
    assert EventDecoder(PROGRAM_ID).decode(mint_logs(event, tag=custom_tag)) is None


def test_fallback_mint_from_quoted_fields(decoder):
    logs = [
        f"Program {PROGRAM_ID} invoke [1]",
        "Program log: Instruction: MintNft",
        'Program log: name: "Test NFT", symbol: "TEST"',
        "Program log: uri=https://example.com/t.json",
        f"Program {PROGRAM_ID} success",
    ]
    event = decoder.decode(logs, account_keys=[WALLET_1, MINT_1])
    assert isinstance(event, MintEvent)
    assert event.heuristic is True
    assert event.name == "Test NFT"
    assert event.symbol == "TEST"
    assert event.uri == "https://example.com/t.json"
    assert event.minter == WALLET_1
    assert event.mint == MINT_1
    assert event.timestamp == START_TIME + 42


def test_fallback_mint_without_account_keys_has_empty_addresses(decoder):
    logs = ["Program log: mint_nft", 'Program log: name="A" symbol="B"']
    event = decoder.decode_mint(logs)
    assert event is not None
    assert (event.name, event.symbol) == ("A", "B")
    assert event.minter == ""
    assert event.mint == ""


def test_fallback_mint_needs_marker_and_symbol(decoder):
    assert decoder.decode_mint(['Program log: name: "A", symbol: "B"']) is None
    assert decoder.decode_mint(["Program log: Instruction: Mint", 'Program log: name: "A"']) is None


def test_fallback_buyback(decoder):
    logs = ["Program log: buyback executed lamports: 500000000 tokens: 1234"]
    event = decoder.decode(logs)
    assert isinstance(event, BuybackEventData)
    assert event.heuristic is True
    assert event.amount_lamports == 500_000_000
    assert event.token_amount == 1234


def test_fallback_buyback_needs_both_amounts(decoder):
    assert decoder.decode_buyback(["Program log: swap amount: 100"]) is None
    assert decoder.decode_buyback(["Program log: amount: 100 tokens: 5"]) is None


def test_fallback_never_scans_payload_lines(decoder):
    # A payload line that happens to decode to text with markers must not arm the fallback
    text = b'mint name: "X" symbol: "Y"'
    logs = ["Program data: " + base64.b64encode(text).decode(), 'Program data: name: "X", symbol: "Y" mint']
    assert decoder.decode(logs) is None


def test_extract_field_patterns():
    assert extract_field('name: "Test NFT", symbol: "TEST"', "name") == "Test NFT"
    assert extract_field('name: "Test NFT", symbol: "TEST"', "symbol") == "TEST"
    assert extract_field('name="Quoted"', "name") == "Quoted"
    assert extract_field("name: Bare, symbol: X", "name") == "Bare"
    assert extract_field("name=Bare2 other", "name") == "Bare2"
    assert extract_field("nickname: nope", "name") is None
    assert extract_field("minter: abc", "mint") is None


def test_extract_amounts():
    assert extract_lamports("amount: 1000000000 lamports transferred") == 1_000_000_000
    assert extract_lamports("lamports: 500000000") == 500_000_000
    assert extract_lamports("token_amount: 7") is None
    assert extract_tokens("tokens: 5000000 received") == 5_000_000
    assert extract_tokens("tokenAmount: 9") == 9


def test_parse_mint_event_short_buffer_raises_borsh_error():
    with pytest.raises(BorshError):
        parse_mint_event(b"\x00" * 10)


def test_decoder_requires_program_id():
    with pytest.raises(ValueError):
        EventDecoder("  ")
