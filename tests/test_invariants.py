import random

import pytest

from sharevault.errors import VaultError

AUTHORITY = "authority"
HOLDERS = ["alice", "bob", "carol", "dave"]


def _apply_random_operation(vault, rng, holder):
    operation = rng.choice(["deposit", "mint", "withdraw", "redeem"])
    shares = vault.shares.balance_of(holder)
    if operation == "deposit":
        return vault.deposit(holder, rng.randint(1000, 5_000_000))
    if operation == "mint":
        return vault.mint(holder, rng.randint(1, 5_000_000_000))
    if operation == "withdraw":
        max_assets = vault.processor.max_withdraw(holder)
        if max_assets == 0:
            return None
        return vault.withdraw(holder, rng.randint(1, max_assets))
    if shares == 0:
        return None
    return vault.redeem(holder, rng.randint(1, shares))


@pytest.mark.parametrize("seed", [1, 7, 42, 2024])
def test_random_operations_preserve_accounting(vault, fund, seed):
    rng = random.Random(seed)
    for holder in HOLDERS:
        fund(holder, 10**12)

    expected_total = 0
    for _ in range(120):
        holder = rng.choice(HOLDERS)
        before_total = vault.total_assets()
        before_assets = vault.asset_token.balance_of(holder)
        try:
            result = _apply_random_operation(vault, rng, holder)
        except VaultError:
            assert vault.total_assets() == before_total
            assert vault.asset_token.balance_of(holder) == before_assets
            continue
        if result is None:
            continue
        if result.operation in ("deposit", "mint"):
            expected_total += result.assets
        else:
            expected_total -= result.assets

        assert vault.total_assets() == expected_total
        assert vault.total_shares() == sum(vault.shares.balance_of(h) for h in HOLDERS)
        assert vault.asset_token.balance_of(vault.ledger.pool_account) == vault.total_assets()


@pytest.mark.parametrize("seed", [3, 11])
def test_holders_together_never_extract_more_than_they_paid(vault, fund, seed):
    rng = random.Random(seed)
    paid = {holder: 0 for holder in HOLDERS}
    for holder in HOLDERS:
        fund(holder, 10**12)

    for _ in range(60):
        holder = rng.choice(HOLDERS)
        if rng.random() < 0.5:
            paid[holder] += vault.deposit(holder, rng.randint(1000, 9_999_999)).assets
        else:
            paid[holder] += vault.mint(holder, rng.randint(1, 9_999_999_999)).assets

    received = {}
    for holder in HOLDERS:
        shares = vault.shares.balance_of(holder)
        received[holder] = vault.redeem(holder, shares).assets if shares else 0

    assert sum(received.values()) <= sum(paid.values())
    assert vault.total_shares() == 0
    # Rounding dust stays with the vault.
    assert vault.total_assets() == sum(paid.values()) - sum(received.values())


def test_paused_vault_rejects_every_random_operation(vault, fund):
    rng = random.Random(5)
    for holder in HOLDERS:
        fund(holder, 10**9)
        vault.deposit(holder, 10**6)
    vault.pause(AUTHORITY)

    snapshot = (vault.total_assets(), vault.total_shares())
    for _ in range(20):
        with pytest.raises(VaultError):
            _apply_random_operation_or_fail(vault, rng)
    assert (vault.total_assets(), vault.total_shares()) == snapshot


def _apply_random_operation_or_fail(vault, rng):
    holder = rng.choice(HOLDERS)
    operation = rng.choice(["deposit", "mint", "withdraw", "redeem"])
    getattr(vault, operation)(holder, rng.randint(1000, 10**6))
