"""Chain client layer -- Solana RPC integration via solana-py."""

from feed.chain.client import ChainClient
from feed.chain.solana_client import SolanaRpcClient
from feed.chain.types import (
    LAMPORTS_PER_SOL,
    AccountInfo,
    AccountKey,
    ParsedTransaction,
    ProgramAccount,
    SignatureInfo,
)

__all__ = [
    "LAMPORTS_PER_SOL",
    "AccountInfo",
    "AccountKey",
    "ChainClient",
    "ParsedTransaction",
    "ProgramAccount",
    "SignatureInfo",
    "SolanaRpcClient",
]
