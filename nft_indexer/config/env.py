"""
Environment variable loading and network resolution for the indexer.

- SOLANA_NETWORK: devnet | mainnet (default: mainnet)
- SOLANA_RPC_URL / SOLANA_RPC_URL_DEVNET: RPC endpoints (read from .env)
- HELIUS_API_KEY: Helius API key (fallback for RPC URL when no explicit URL)
- SOLANA_PROGRAM_ID: Deployed NFT minting program ID
- Loads .env from project root when available.
"""

from __future__ import annotations

import os
from pathlib import Path

from dotenv import load_dotenv

# Project root: config is nft_indexer/config/, root is 2 levels up
_CONFIG_DIR = Path(__file__).resolve().parent
_PACKAGE_DIR = _CONFIG_DIR.parent
_ROOT = _PACKAGE_DIR.parent
_ENV_PATH = _ROOT / ".env"

DEFAULT_PROGRAM_ID = "56cKjpFg9QjDsRCPrHnj1efqZaw2cvfodNhz4ramoXxt"

DEVNET_RPC_URL = "https://api.devnet.solana.com"
MAINNET_RPC_URL = "https://api.mainnet-beta.solana.com"
HELIUS_MAINNET_URL_TEMPLATE = "https://mainnet.helius-rpc.com/?api-key={key}"
HELIUS_DEVNET_URL_TEMPLATE = "https://devnet.helius-rpc.com/?api-key={key}"

VALID_COMMITMENTS = ("processed", "confirmed", "finalized")


def load_indexer_env() -> None:
    """Load .env from project root. Existing environment variables win. Safe to call multiple times."""
    if _ENV_PATH.is_file():
        load_dotenv(_ENV_PATH, override=False)


def get_solana_network() -> str:
    """
    Return SOLANA_NETWORK from env: devnet | mainnet.
    Default: mainnet ("mainnet-beta" is accepted as an alias).
    """
    load_indexer_env()
    raw = (os.getenv("SOLANA_NETWORK") or "mainnet").strip().lower()
    return "devnet" if raw == "devnet" else "mainnet"


def get_solana_rpc_url() -> str:
    """
    Resolve Solana RPC URL from env.
    Order: SOLANA_RPC_URL_DEVNET (devnet) / SOLANA_RPC_URL (mainnet) > HELIUS_API_KEY > public default.
    """
    load_indexer_env()
    network = get_solana_network()
    if network == "devnet":
        url = (os.getenv("SOLANA_RPC_URL_DEVNET") or "").strip()
    else:
        url = (os.getenv("SOLANA_RPC_URL") or "").strip()
    if url:
        return url
    key = (os.getenv("HELIUS_API_KEY") or "").strip()
    if key:
        template = HELIUS_DEVNET_URL_TEMPLATE if network == "devnet" else HELIUS_MAINNET_URL_TEMPLATE
        return template.format(key=key)
    return DEVNET_RPC_URL if network == "devnet" else MAINNET_RPC_URL


def get_program_id() -> str:
    """Return SOLANA_PROGRAM_ID from env, or the deployed default."""
    load_indexer_env()
    return (os.getenv("SOLANA_PROGRAM_ID") or "").strip() or DEFAULT_PROGRAM_ID


def get_commitment() -> str:
    """Return SOLANA_COMMITMENT (processed | confirmed | finalized); unknown values fall back to confirmed."""
    load_indexer_env()
    raw = (os.getenv("SOLANA_COMMITMENT") or "confirmed").strip().lower()
    return raw if raw in VALID_COMMITMENTS else "confirmed"


def mask_rpc_url(url: str) -> str:
    """Mask API key in URL if present, for logging."""
    if "api-key=" in url:
        return url.split("api-key=")[0] + "api-key=***"
    return url
