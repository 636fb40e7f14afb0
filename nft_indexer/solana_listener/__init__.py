"""
Solana ledger reader package.

Lists recent signatures for the watched program, fetches full transactions,
and checks token ownership over JSON-RPC.
"""

from nft_indexer.solana_listener.models import LedgerTransaction, SignatureInfo
from nft_indexer.solana_listener.rpc import LedgerReader, derive_associated_token_account

__all__ = ["LedgerReader", "LedgerTransaction", "SignatureInfo", "derive_associated_token_account"]
