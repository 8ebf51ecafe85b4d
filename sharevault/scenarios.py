"""Replay reference vault scenarios and check their expected outcomes."""

from __future__ import annotations

import argparse
import sys
from typing import Callable, Dict, List

from . import conversion
from .errors import SlippageExceeded, Unauthorized
from .events import EventLog
from .utils.logger import configure_logging
from .vault import Vault, VaultRegistry

ASSET = "USDC"
ASSET_DECIMALS = 6
AUTHORITY = "authority"
ONE_TOKEN = 10**ASSET_DECIMALS


class ScenarioFailed(Exception):
    pass


def expect(condition: bool, message: str) -> None:
    if not condition:
        raise ScenarioFailed(message)
    print(f"  ok: {message}")


def _fresh_vault() -> tuple[VaultRegistry, Vault]:
    registry = VaultRegistry(events=EventLog())
    vault = registry.create_vault(
        authority=AUTHORITY,
        asset_identity=ASSET,
        asset_decimals=ASSET_DECIMALS,
        vault_id=1,
        name="Scenario Vault",
        symbol="svUSDC",
    )
    return registry, vault


def _fund(vault: Vault, account: str, amount: int) -> None:
    vault.asset_token.mint(account, amount)


def scenario_basic() -> None:
    _, vault = _fresh_vault()
    _fund(vault, "alice", ONE_TOKEN)
    _fund(vault, "bob", ONE_TOKEN)

    first = vault.deposit("alice", ONE_TOKEN)
    print(f"  alice deposited {first.assets} for {first.shares} shares")
    expect(first.shares == 1_000_000_000, "first deposit into an empty vault mints 1e9 shares")

    second = vault.deposit("bob", ONE_TOKEN)
    print(f"  bob deposited {second.assets} for {second.shares} shares")
    expect(second.shares <= first.shares, "a later depositor never receives more shares per asset")

    paid_out = 0
    for owner in ("alice", "bob"):
        result = vault.redeem(owner, vault.shares.balance_of(owner))
        paid_out += result.assets
        print(f"  {owner} redeemed {result.shares} shares for {result.assets}")
    expect(paid_out <= 2 * ONE_TOKEN, "redeeming every share returns at most what was deposited")
    expect(vault.total_shares() == 0, "share supply returns to zero")


def scenario_inflation_attack() -> None:
    offset = conversion.calculate_decimals_offset(ASSET_DECIMALS)
    donation = 1_000_000_000_000
    shares = conversion.convert_to_shares(1, donation, 0, offset)
    print(f"  1 asset after a {donation} donation converts to {shares} shares")
    expect(shares == 0, "a donation of at least 10**offset prices one asset at zero shares")

    _, vault = _fresh_vault()
    _fund(vault, "attacker", donation + 1000)
    _fund(vault, "victim", 1000 * ONE_TOKEN)

    vault.deposit("attacker", 1000)
    vault.asset_token.transfer("attacker", vault.ledger.pool_account, donation)
    print(f"  attacker donated {donation}; discrepancy {vault.admin.asset_discrepancy()}")
    expect(vault.total_assets() == 1000, "a direct donation does not move the cached total")

    victim = vault.deposit("victim", 1000 * ONE_TOKEN)
    value = vault.processor.preview_redeem(victim.shares)
    print(f"  victim received {victim.shares} shares worth {value}")
    expect(value >= 1000 * ONE_TOKEN - 1, "the victim keeps the value of their deposit")


def scenario_sync() -> None:
    _, vault = _fresh_vault()
    _fund(vault, "alice", ONE_TOKEN)
    _fund(vault, "yield", ONE_TOKEN // 2)
    vault.deposit("alice", ONE_TOKEN)

    vault.asset_token.transfer("yield", vault.ledger.pool_account, ONE_TOKEN // 2)
    try:
        vault.sync("mallory")
    except Unauthorized:
        expect(True, "sync by a non-authority is rejected")
    else:
        expect(False, "sync by a non-authority is rejected")

    previous, new = vault.sync(AUTHORITY)
    print(f"  total_assets {previous} -> {new}")
    expect(new - previous == ONE_TOKEN // 2, "sync raises total_assets by the external delta")
    value = vault.processor.preview_redeem(vault.shares.balance_of("alice"))
    expect(value > ONE_TOKEN, "existing holders capture the synced yield")


def scenario_slippage() -> None:
    _, vault = _fresh_vault()
    _fund(vault, "alice", 2 * ONE_TOKEN)
    quoted = vault.processor.preview_deposit(ONE_TOKEN)
    try:
        vault.deposit("alice", ONE_TOKEN, min_shares_out=quoted + 1)
    except SlippageExceeded:
        expect(vault.total_assets() == 0, "a deposit below min_shares_out leaves the vault untouched")
    else:
        expect(False, "deposit with an unreachable min_shares_out is rejected")

    vault.deposit("alice", ONE_TOKEN, min_shares_out=quoted)
    cost = vault.processor.preview_mint(1_000)
    try:
        vault.mint("alice", 1_000, max_assets_in=cost - 1)
    except SlippageExceeded:
        expect(True, "a mint above max_assets_in is rejected")
    else:
        expect(False, "a mint above max_assets_in is rejected")


def scenario_multi_user() -> None:
    _, vault = _fresh_vault()
    deposits = {"alice": 5 * ONE_TOKEN, "bob": 3 * ONE_TOKEN + 17, "carol": 123_456}
    for owner, amount in deposits.items():
        _fund(vault, owner, amount)
        result = vault.deposit(owner, amount)
        print(f"  {owner} deposited {amount} for {result.shares} shares")

    holders = sum(vault.shares.balance_of(owner) for owner in deposits)
    expect(holders == vault.total_shares(), "share supply equals the sum of holder balances")
    expect(vault.total_assets() == sum(deposits.values()), "total_assets equals the sum of deposits")

    for owner, amount in deposits.items():
        result = vault.redeem(owner, vault.shares.balance_of(owner))
        expect(result.assets <= amount, f"{owner} redeems no more than deposited")
    expect(vault.asset_token.balance_of(vault.ledger.pool_account) == vault.total_assets(), "pool balance matches total_assets")


SCENARIOS: Dict[str, Callable[[], None]] = {
    "basic": scenario_basic,
    "inflation-attack": scenario_inflation_attack,
    "sync": scenario_sync,
    "slippage": scenario_slippage,
    "multi-user": scenario_multi_user,
}


def run(names: List[str]) -> int:
    failures = 0
    for name in names:
        print(f"[{name}]")
        try:
            SCENARIOS[name]()
        except ScenarioFailed as exc:
            failures += 1
            print(f"  FAILED: {exc}")
    return failures


def main(argv: List[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Replay share vault scenarios.")
    parser.add_argument("scenario", choices=[*SCENARIOS, "all"], help="Scenario to run.")
    parser.add_argument("--log-level", default="WARNING", help="Log level for vault internals.")
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    names = list(SCENARIOS) if args.scenario == "all" else [args.scenario]
    failures = run(names)
    print(f"{len(names) - failures}/{len(names)} scenarios passed.")
    return 1 if failures else 0


if __name__ == "__main__":
    sys.exit(main())
