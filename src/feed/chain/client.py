"""Abstract chain client interface.

Defines the upstream capabilities the ingestion core depends on.
Pipeline code depends only on this interface, keeping Solana RPC
details isolated in the concrete implementation.
"""

from abc import ABC, abstractmethod
from decimal import Decimal

from feed.chain.types import AccountInfo, ParsedTransaction, ProgramAccount, SignatureInfo


class ChainClient(ABC):
    """Abstract base class for chain data sources.

    Any method may raise ``RateLimited`` (or an error carrying an HTTP 429
    marker); the caller wraps every call in a RateLimitedFetcher.
    """

    @abstractmethod
    async def connect(self) -> None:
        """Open the underlying connection."""
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying connection."""
        ...

    @abstractmethod
    async def get_signatures_for_address(
        self, address: str, limit: int = 1000
    ) -> list[SignatureInfo]:
        """Return recent transaction signatures for an address, newest first."""
        ...

    @abstractmethod
    async def get_parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        """Return a confirmed transaction, or None if the node does not have it."""
        ...

    @abstractmethod
    async def get_account_info(self, address: str) -> AccountInfo | None:
        """Return raw account state, or None if the account does not exist."""
        ...

    @abstractmethod
    async def get_program_accounts(self, program_address: str) -> list[ProgramAccount]:
        """Return every account owned by a program, with its raw data."""
        ...

    @abstractmethod
    async def get_token_balance(self, address: str) -> Decimal | None:
        """Return the UI amount held by a token account, or None if unknown."""
        ...
