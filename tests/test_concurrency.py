import threading
import time

HOLDERS = [f"holder-{index}" for index in range(8)]
ROUNDS = 25
DEPOSIT = 10_000


def _yielding_transfer(token):
    original = token.transfer

    def transfer(source, destination, amount):
        # Give other threads a chance to run in the middle of an operation.
        time.sleep(0)
        moved = original(source, destination, amount)
        time.sleep(0)
        return moved

    return transfer


def _run(targets):
    errors = []

    def guarded(target):
        try:
            target()
        except Exception as exc:
            errors.append(exc)

    threads = [threading.Thread(target=guarded, args=(target,)) for target in targets]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join()
    return errors


def test_parallel_deposits_keep_totals_consistent(vault, fund, monkeypatch):
    for holder in HOLDERS:
        fund(holder, DEPOSIT * ROUNDS)
    monkeypatch.setattr(vault.asset_token, "transfer", _yielding_transfer(vault.asset_token))

    def deposit_all(holder):
        return lambda: [vault.deposit(holder, DEPOSIT) for _ in range(ROUNDS)]

    assert _run([deposit_all(holder) for holder in HOLDERS]) == []

    expected = DEPOSIT * ROUNDS * len(HOLDERS)
    assert vault.total_assets() == expected
    assert vault.asset_token.balance_of(vault.ledger.pool_account) == expected
    assert vault.total_shares() == sum(vault.shares.balance_of(holder) for holder in HOLDERS)
    assert all(vault.asset_token.balance_of(holder) == 0 for holder in HOLDERS)


def test_parallel_deposits_and_redeems_keep_totals_consistent(vault, fund, monkeypatch):
    for holder in HOLDERS:
        fund(holder, DEPOSIT * ROUNDS)
    monkeypatch.setattr(vault.asset_token, "transfer", _yielding_transfer(vault.asset_token))

    def churn(holder):
        def run():
            for _ in range(ROUNDS):
                result = vault.deposit(holder, DEPOSIT)
                vault.redeem(holder, result.shares // 2)

        return run

    assert _run([churn(holder) for holder in HOLDERS]) == []

    pool = vault.asset_token.balance_of(vault.ledger.pool_account)
    assert vault.total_assets() == pool
    assert vault.total_shares() == sum(vault.shares.balance_of(holder) for holder in HOLDERS)
    held_outside = sum(vault.asset_token.balance_of(holder) for holder in HOLDERS)
    assert held_outside + pool == DEPOSIT * ROUNDS * len(HOLDERS)
