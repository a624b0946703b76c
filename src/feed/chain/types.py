"""Chain record types returned by ChainClient implementations.

These are plain snapshots of RPC results, decoupled from the solders
response classes so decoding code and tests never touch the RPC library.
"""

from dataclasses import dataclass, field
from typing import Any

#: Lamports per SOL (native unit scale of the quote side).
LAMPORTS_PER_SOL = 1_000_000_000


@dataclass
class SignatureInfo:
    """One entry of getSignaturesForAddress, newest first."""

    signature: str
    block_time: int | None = None  # Unix seconds
    err: Any = None


@dataclass
class AccountKey:
    """An account referenced by a transaction message."""

    pubkey: str
    signer: bool = False


@dataclass
class ParsedTransaction:
    """The subset of a confirmed transaction the trade classifier reads.

    ``pre_balances`` / ``post_balances`` are None when the RPC returned no
    status metadata for the transaction.
    """

    signature: str
    account_keys: list[AccountKey] = field(default_factory=list)
    pre_balances: list[int] | None = None  # lamports, indexed like account_keys
    post_balances: list[int] | None = None
    log_messages: list[str] = field(default_factory=list)
    err: Any = None
    block_time: int | None = None  # Unix seconds

    @property
    def failed(self) -> bool:
        return self.err is not None

    @classmethod
    def from_rpc(cls, result: dict) -> "ParsedTransaction":
        """Build from the ``result`` object of a getTransaction response.

        Handles both ``jsonParsed`` account keys (dicts carrying a ``signer``
        flag) and plain ``json`` keys (strings, signers inferred from the
        message header).
        """
        transaction = result.get("transaction") or {}
        message = transaction.get("message") or {}
        signatures = transaction.get("signatures") or [""]
        header = message.get("header") or {}
        required_signatures = header.get("numRequiredSignatures", 0)

        account_keys = []
        for index, raw_key in enumerate(message.get("accountKeys") or []):
            if isinstance(raw_key, dict):
                account_keys.append(
                    AccountKey(
                        pubkey=str(raw_key.get("pubkey", "")),
                        signer=bool(raw_key.get("signer", False)),
                    )
                )
            else:
                account_keys.append(
                    AccountKey(pubkey=str(raw_key), signer=index < required_signatures)
                )

        meta = result.get("meta")
        if meta is None:
            return cls(
                signature=signatures[0],
                account_keys=account_keys,
                block_time=result.get("blockTime"),
            )

        return cls(
            signature=signatures[0],
            account_keys=account_keys,
            pre_balances=meta.get("preBalances"),
            post_balances=meta.get("postBalances"),
            log_messages=list(meta.get("logMessages") or []),
            err=meta.get("err"),
            block_time=result.get("blockTime"),
        )


@dataclass
class AccountInfo:
    """Raw account state from getAccountInfo."""

    address: str
    owner: str
    data: bytes
    executable: bool = False
    lamports: int = 0


@dataclass
class ProgramAccount:
    """One account returned by getProgramAccounts."""

    address: str
    data: bytes
