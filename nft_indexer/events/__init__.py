"""
Event decoder package: program logs -> MintEvent / BuybackEventData.
"""

from nft_indexer.events.decoder import BUYBACK_EVENT_TAG, MINT_EVENT_TAG, EventDecoder, decode
from nft_indexer.events.models import BuybackEventData, DecodedEvent, DecodedTransaction, MintEvent

__all__ = [
    "BUYBACK_EVENT_TAG",
    "MINT_EVENT_TAG",
    "BuybackEventData",
    "DecodedEvent",
    "DecodedTransaction",
    "EventDecoder",
    "MintEvent",
    "decode",
]
