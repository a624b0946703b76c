"""Pool layer -- program account scanning, layout decoding and address derivation."""

from feed.pools.derive import SIGNER_SEED, derive_pool_signer, derive_vault
from feed.pools.layout import BOUND_POOL_V1, PoolLayout, PoolRecord, decode_pool_record
from feed.pools.locator import PoolLocator, PoolScan, find_pool

__all__ = [
    "BOUND_POOL_V1",
    "SIGNER_SEED",
    "PoolLayout",
    "PoolLocator",
    "PoolRecord",
    "PoolScan",
    "decode_pool_record",
    "derive_pool_signer",
    "derive_vault",
    "find_pool",
]
