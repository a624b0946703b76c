"""Binary layout of the launchpad's bonding-curve pool account.

There is no published IDL for this program. The layout below was inferred
from observed accounts and is a fragile, versioned contract: bump
``version`` and add a new PoolLayout when the program changes shape.

Observed BoundPool record (394 bytes total, only the head is decoded)::

    0   discriminator   8 bytes (Anchor account discriminator)
    8   base_reserve    tokens u64 | mint [32] | vault [32]
    80  quote_reserve   tokens u64 | mint [32] | vault [32]

so the base mint sits at bytes 16-48 and the quote mint at 88-120.
"""

import hashlib
from dataclasses import dataclass

from construct import Bytes, ConstructError, Int64ul, Struct
from solders.pubkey import Pubkey

from feed.exceptions import DecodeMismatch

_RESERVE = Struct(
    "tokens" / Int64ul,
    "mint" / Bytes(32),
    "vault" / Bytes(32),
)

_BOUND_POOL_HEAD = Struct(
    "discriminator" / Bytes(8),
    "base_reserve" / _RESERVE,
    "quote_reserve" / _RESERVE,
)

_EMPTY_KEY = bytes(32)


def anchor_discriminator(account_name: str) -> bytes:
    """First 8 bytes of sha256("account:<Name>"), as Anchor writes them."""
    return hashlib.sha256(f"account:{account_name}".encode()).digest()[:8]


@dataclass(frozen=True)
class PoolLayout:
    """A known on-chain pool record shape."""

    version: int
    size: int
    head: Struct
    discriminator: bytes


BOUND_POOL_V1 = PoolLayout(
    version=1,
    size=394,
    head=_BOUND_POOL_HEAD,
    discriminator=anchor_discriminator("BoundPool"),
)


@dataclass(frozen=True)
class PoolRecord:
    """Fields decoded from one pool account."""

    base_mint: Pubkey
    quote_mint: Pubkey
    base_reserve: int
    quote_reserve: int
    layout_version: int


def _mint_from(raw: bytes, field_name: str) -> Pubkey:
    if raw == _EMPTY_KEY:
        raise DecodeMismatch(f"{field_name} is an empty public key")
    try:
        return Pubkey.from_bytes(raw)
    except ValueError as e:
        raise DecodeMismatch(f"{field_name} is not a public key: {e}") from e


def decode_pool_record(
    data: bytes,
    layout: PoolLayout = BOUND_POOL_V1,
    verify_discriminator: bool = False,
) -> PoolRecord:
    """Decode a pool account's mints and reserve counters.

    Raises:
        DecodeMismatch: wrong length, wrong discriminator (when verified),
            or a mint field that is not a usable public key.
    """
    if len(data) != layout.size:
        raise DecodeMismatch(f"expected {layout.size} bytes, got {len(data)}")

    try:
        parsed = layout.head.parse(data)
    except ConstructError as e:
        raise DecodeMismatch(f"unparseable pool record: {e}") from e

    if verify_discriminator and parsed.discriminator != layout.discriminator:
        raise DecodeMismatch(
            f"discriminator {parsed.discriminator.hex()} does not match layout v{layout.version}"
        )

    return PoolRecord(
        base_mint=_mint_from(parsed.base_reserve.mint, "base mint"),
        quote_mint=_mint_from(parsed.quote_reserve.mint, "quote mint"),
        base_reserve=parsed.base_reserve.tokens,
        quote_reserve=parsed.quote_reserve.tokens,
        layout_version=layout.version,
    )
