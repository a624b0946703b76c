"""Deterministic address derivations for pool accounts."""

from solders.pubkey import Pubkey
from spl.token.instructions import get_associated_token_address

#: Seed prefix of the pool signer PDA: [b"signer", pool].
SIGNER_SEED = b"signer"


def derive_pool_signer(pool_address: Pubkey, program_address: Pubkey) -> Pubkey:
    """Return the PDA that owns a pool's vaults."""
    signer, _bump = Pubkey.find_program_address(
        [SIGNER_SEED, bytes(pool_address)], program_address
    )
    return signer


def derive_vault(mint: Pubkey, pool_signer: Pubkey) -> Pubkey:
    """Return the associated token account holding ``mint`` for the pool signer."""
    return get_associated_token_address(pool_signer, mint)
