"""Protocol constants shared by every vault instance."""

from __future__ import annotations


# Shares always carry 9 decimals; assets may carry fewer.
MAX_DECIMALS = 9
SHARES_DECIMALS = 9

# Dust threshold for deposits, in asset base units.
MIN_DEPOSIT_AMOUNT = 1000

U64_MAX = (1 << 64) - 1

VAULT_SEED = b"vault"
SHARES_SEED = b"shares"
POOL_SEED = b"pool"


__all__ = [
    "MAX_DECIMALS",
    "MIN_DEPOSIT_AMOUNT",
    "POOL_SEED",
    "SHARES_DECIMALS",
    "SHARES_SEED",
    "U64_MAX",
    "VAULT_SEED",
]
