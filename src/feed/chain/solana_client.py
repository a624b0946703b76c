"""Solana JSON-RPC chain client via solana-py async.

Wraps solana.rpc.async_api.AsyncClient, converts solders responses into the
plain records in feed.chain.types, and translates transport failures into
the feed's error taxonomy.
"""

import json
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from decimal import Decimal

import httpx
from solana.exceptions import SolanaRpcException
from solana.rpc.async_api import AsyncClient
from solana.rpc.commitment import Commitment
from solana.rpc.core import RPCException
from solders.pubkey import Pubkey
from solders.signature import Signature

from feed.chain.client import ChainClient
from feed.chain.types import AccountInfo, ParsedTransaction, ProgramAccount, SignatureInfo
from feed.config import ChainSettings
from feed.exceptions import RateLimited, UpstreamUnavailable
from feed.fetching.retry import is_rate_limited
from feed.logging import get_logger

logger = get_logger(__name__)


class SolanaRpcClient(ChainClient):
    """Concrete chain client backed by a single Solana RPC endpoint."""

    def __init__(self, settings: ChainSettings) -> None:
        self._settings = settings
        self._client = AsyncClient(
            settings.rpc_url,
            commitment=Commitment(settings.commitment),
            timeout=settings.request_timeout,
        )

    @property
    def client(self) -> AsyncClient:
        """Access the underlying solana-py client."""
        return self._client

    async def connect(self) -> None:
        """Check the endpoint answers before the first refresh."""
        logger.info("connecting_to_rpc", rpc_url=self._settings.rpc_url)
        async with self._translate_errors("getHealth"):
            healthy = await self._client.is_connected()
        if healthy:
            logger.info("rpc_connected", rpc_url=self._settings.rpc_url)
        else:
            logger.warning("rpc_unhealthy", rpc_url=self._settings.rpc_url)

    async def close(self) -> None:
        """Close the HTTP session held by the async client."""
        logger.info("closing_rpc_connection")
        await self._client.close()

    async def get_signatures_for_address(
        self, address: str, limit: int = 1000
    ) -> list[SignatureInfo]:
        async with self._translate_errors("getSignaturesForAddress"):
            resp = await self._client.get_signatures_for_address(
                Pubkey.from_string(address), limit=limit
            )
        return [
            SignatureInfo(
                signature=str(entry.signature),
                block_time=entry.block_time,
                err=entry.err,
            )
            for entry in resp.value
        ]

    async def get_parsed_transaction(self, signature: str) -> ParsedTransaction | None:
        async with self._translate_errors("getTransaction"):
            resp = await self._client.get_transaction(
                Signature.from_string(signature),
                encoding="jsonParsed",
                max_supported_transaction_version=0,
            )
        result = json.loads(resp.to_json()).get("result")
        if result is None:
            return None
        return ParsedTransaction.from_rpc(result)

    async def get_account_info(self, address: str) -> AccountInfo | None:
        async with self._translate_errors("getAccountInfo"):
            resp = await self._client.get_account_info(
                Pubkey.from_string(address), encoding="base64"
            )
        account = resp.value
        if account is None:
            return None
        return AccountInfo(
            address=address,
            owner=str(account.owner),
            data=bytes(account.data),
            executable=account.executable,
            lamports=account.lamports,
        )

    async def get_program_accounts(self, program_address: str) -> list[ProgramAccount]:
        async with self._translate_errors("getProgramAccounts"):
            resp = await self._client.get_program_accounts(
                Pubkey.from_string(program_address), encoding="base64"
            )
        return [
            ProgramAccount(address=str(keyed.pubkey), data=bytes(keyed.account.data))
            for keyed in resp.value
        ]

    async def get_token_balance(self, address: str) -> Decimal | None:
        """Return the token balance in UI units.

        A vault that was never created answers with an RPC error rather than
        an empty value; that is reported as None, not raised.
        """
        try:
            async with self._translate_errors("getTokenAccountBalance"):
                resp = await self._client.get_token_account_balance(
                    Pubkey.from_string(address)
                )
        except RPCException as e:
            logger.debug("token_balance_unavailable", address=address, error=str(e))
            return None
        amount = resp.value
        return Decimal(amount.amount) / (Decimal(10) ** amount.decimals)

    @asynccontextmanager
    async def _translate_errors(self, method: str) -> AsyncIterator[None]:
        """Map solana-py and httpx failures onto RateLimited / UpstreamUnavailable."""
        try:
            yield
        except SolanaRpcException as e:
            if is_rate_limited(e):
                raise RateLimited(f"{method} rate limited: {e}") from e
            raise UpstreamUnavailable(f"{method} failed: {e}") from e
        except httpx.HTTPStatusError as e:
            if e.response.status_code == 429:
                raise RateLimited(f"{method} rate limited") from e
            raise UpstreamUnavailable(
                f"{method} returned HTTP {e.response.status_code}"
            ) from e
        except httpx.TransportError as e:
            raise UpstreamUnavailable(f"{method} unreachable: {e}") from e
