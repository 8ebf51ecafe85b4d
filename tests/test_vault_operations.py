import logging

import pytest

from sharevault.constants import MIN_DEPOSIT_AMOUNT, U64_MAX
from sharevault.errors import (
    DepositTooSmall,
    InsufficientAssets,
    InsufficientShares,
    MathOverflow,
    SlippageExceeded,
    TransferFailed,
    VaultPaused,
    ZeroAmount,
)
from sharevault.events import EventLog
from sharevault.ledger import VaultLedger
from sharevault.processor import OperationProcessor
from sharevault.shares import PlaintextShares
from sharevault.tokens import InMemoryToken

AUTHORITY = "authority"
ONE = 1_000_000


def test_first_deposit_mints_with_virtual_offset(vault, fund, events):
    fund("alice", ONE)
    result = vault.deposit("alice", ONE)

    assert result.shares == 1_000_000_000
    assert vault.total_assets() == ONE
    assert vault.total_shares() == 1_000_000_000
    assert vault.shares.balance_of("alice") == 1_000_000_000
    assert vault.asset_token.balance_of(vault.ledger.pool_account) == ONE
    assert vault.asset_token.balance_of("alice") == 0

    deposits = events.of_kind("Deposit")
    assert len(deposits) == 1
    assert deposits[0].operation == "deposit"
    assert deposits[0].assets == ONE
    assert deposits[0].shares == 1_000_000_000


def test_second_deposit_receives_exact_floor(vault, fund):
    fund("alice", ONE)
    fund("bob", ONE)
    vault.deposit("alice", ONE)
    assert vault.deposit("bob", ONE).shares == 1_000_000_000


def test_deposit_validation(vault, fund):
    fund("alice", ONE)
    with pytest.raises(ZeroAmount):
        vault.deposit("alice", 0)
    with pytest.raises(DepositTooSmall):
        vault.deposit("alice", MIN_DEPOSIT_AMOUNT - 1)
    assert vault.deposit("alice", MIN_DEPOSIT_AMOUNT).shares == MIN_DEPOSIT_AMOUNT * 1000


def test_deposit_slippage_leaves_state_untouched(vault, fund, events):
    fund("alice", ONE)
    with pytest.raises(SlippageExceeded):
        vault.deposit("alice", ONE, min_shares_out=1_000_000_001)
    assert vault.total_assets() == 0
    assert vault.total_shares() == 0
    assert vault.asset_token.balance_of("alice") == ONE
    assert len(events.of_kind("Deposit")) == 0


def test_deposit_without_funds_fails_transfer(vault):
    with pytest.raises(TransferFailed):
        vault.deposit("pauper", ONE)
    assert vault.total_assets() == 0
    assert vault.total_shares() == 0


def test_mint_charges_ceiling(vault, fund, events):
    fund("alice", 3 * ONE)
    vault.deposit("alice", ONE)
    vault.asset_token.transfer("alice", vault.ledger.pool_account, 7)
    vault.sync(AUTHORITY)

    cost = vault.processor.preview_mint(333_333_333)
    result = vault.mint("alice", 333_333_333)
    assert result.assets == cost
    assert result.shares == 333_333_333
    assert cost * (vault.total_shares() - 333_333_333 + 1000) >= 333_333_333 * (ONE + 7 + 1)
    assert events.of_kind("Deposit")[-1].operation == "mint"


def test_mint_validation(vault, fund):
    fund("alice", ONE)
    with pytest.raises(ZeroAmount):
        vault.mint("alice", 0)
    with pytest.raises(SlippageExceeded):
        vault.mint("alice", 1_000_000, max_assets_in=999)
    assert vault.mint("alice", 1_000_000, max_assets_in=1000).assets == 1000


def test_mint_below_dust_threshold_is_allowed(vault, fund):
    fund("alice", ONE)
    result = vault.mint("alice", 1)
    assert result.assets == 1
    assert vault.total_assets() == 1


def test_withdraw_burns_ceiling_shares(vault, fund, events):
    fund("alice", ONE)
    vault.deposit("alice", ONE)
    expected = vault.processor.preview_withdraw(250_000)

    result = vault.withdraw("alice", 250_000)
    assert result.shares == expected
    assert vault.asset_token.balance_of("alice") == 250_000
    assert vault.total_assets() == 750_000
    assert vault.shares.balance_of("alice") == 1_000_000_000 - expected

    withdrawals = events.of_kind("Withdraw")
    assert withdrawals[-1].operation == "withdraw"
    assert withdrawals[-1].receiver == "alice"


def test_withdraw_validation_order(vault, fund):
    fund("alice", ONE)
    fund("bob", ONE)
    vault.deposit("alice", ONE)
    vault.deposit("bob", 1000)

    with pytest.raises(ZeroAmount):
        vault.withdraw("alice", 0)
    with pytest.raises(SlippageExceeded):
        vault.withdraw("alice", 1000, max_shares_in=10)
    with pytest.raises(InsufficientShares):
        vault.withdraw("bob", 2000)
    with pytest.raises(InsufficientShares):
        vault.withdraw("carol", 1)


def test_withdraw_more_than_total_assets(vault, fund):
    fund("alice", ONE)
    vault.deposit("alice", ONE)
    # Balance above the recorded supply; only reachable with a corrupted share token.
    vault.shares.token.balances["alice"] = 10**15
    with pytest.raises(InsufficientAssets):
        vault.withdraw("alice", ONE + 1)


def test_redeem_pays_floor(vault, fund, events):
    fund("alice", ONE)
    vault.deposit("alice", ONE)

    result = vault.redeem("alice", 1_000_000_000)
    assert result.assets == ONE
    assert vault.total_assets() == 0
    assert vault.total_shares() == 0
    assert events.of_kind("Withdraw")[-1].operation == "redeem"


def test_redeem_validation(vault, fund):
    fund("alice", ONE)
    vault.deposit("alice", ONE)
    with pytest.raises(ZeroAmount):
        vault.redeem("alice", 0)
    with pytest.raises(SlippageExceeded):
        vault.redeem("alice", 1_000_000, min_assets_out=1001)
    with pytest.raises(InsufficientShares):
        vault.redeem("alice", 1_000_000_001)


def test_paused_vault_rejects_all_operations(vault, fund):
    fund("alice", ONE)
    vault.deposit("alice", ONE)
    vault.pause(AUTHORITY)

    with pytest.raises(VaultPaused):
        vault.deposit("alice", ONE)
    with pytest.raises(VaultPaused):
        vault.mint("alice", 1000)
    with pytest.raises(VaultPaused):
        vault.withdraw("alice", 1000)
    with pytest.raises(VaultPaused):
        vault.redeem("alice", 1000)

    assert vault.processor.max_deposit() == 0
    assert vault.processor.max_mint() == 0
    assert vault.processor.max_withdraw("alice") == 0
    assert vault.processor.max_redeem("alice") == 0
    assert vault.processor.preview_redeem(1000) == 1

    vault.unpause(AUTHORITY)
    assert vault.redeem("alice", 1000).assets == 1


def test_paused_check_precedes_amount_validation(vault):
    vault.pause(AUTHORITY)
    with pytest.raises(VaultPaused):
        vault.deposit("alice", 0)


def test_max_views(vault, fund):
    assert vault.processor.max_deposit() == U64_MAX
    assert vault.processor.max_mint() == U64_MAX
    assert vault.processor.max_withdraw("nobody") == 0
    assert vault.processor.max_redeem("nobody") == 0

    fund("alice", ONE)
    vault.deposit("alice", ONE)
    assert vault.processor.max_redeem("alice") == 1_000_000_000
    assert vault.processor.max_withdraw("alice") == ONE


def test_negative_amounts_are_programming_errors(vault):
    with pytest.raises(ValueError):
        vault.deposit("alice", -5)
    with pytest.raises(TypeError):
        vault.redeem("alice", 1.0)


def test_total_assets_overflow_is_rejected_before_transfer(vault, fund):
    vault.ledger.total_assets = U64_MAX - 10
    fund("alice", ONE)
    with pytest.raises(MathOverflow):
        vault.mint("alice", 1)
    assert vault.asset_token.balance_of("alice") == ONE


class FailingMintToken(InMemoryToken):
    def mint(self, to, amount):
        return False


class FailingPayoutToken(InMemoryToken):
    """Asset token that refuses to pay out of one account."""

    blocked_source: str = ""

    def transfer(self, source, destination, amount):
        if source == self.blocked_source:
            return False
        return super().transfer(source, destination, amount)


def _processor(asset_token, share_token, events=None):
    ledger = VaultLedger.create(
        authority=AUTHORITY,
        asset_identity=asset_token.identity,
        shares_identity=share_token.identity,
        pool_account="pool",
        asset_decimals=6,
        vault_id=7,
    )
    return OperationProcessor(ledger, PlaintextShares(share_token), asset_token, events)


def test_failed_share_credit_returns_assets():
    assets = InMemoryToken("USDC", decimals=6)
    assets.mint("alice", ONE)
    events = EventLog()
    processor = _processor(assets, FailingMintToken("shares"), events)

    with pytest.raises(TransferFailed):
        processor.deposit("alice", ONE)

    assert assets.balance_of("alice") == ONE
    assert assets.balance_of("pool") == 0
    assert processor.total_assets() == 0
    assert len(events) == 0


def test_failed_asset_payout_restores_shares():
    assets = FailingPayoutToken("USDC", decimals=6)
    shares = InMemoryToken("shares")
    assets.mint("alice", ONE)
    processor = _processor(assets, shares)
    processor.deposit("alice", ONE)

    assets.blocked_source = "pool"
    with pytest.raises(TransferFailed):
        processor.redeem("alice", 500_000_000)

    assert shares.balance_of("alice") == 1_000_000_000
    assert shares.total_supply == 1_000_000_000
    assert processor.total_assets() == ONE
    assert assets.balance_of("pool") == ONE


class RaisingMintToken(InMemoryToken):
    def mint(self, to, amount):
        raise RuntimeError("share program unavailable")


class RaisingPayoutToken(InMemoryToken):
    """Asset token whose transfers out of one account raise."""

    blocked_source: str = ""
    stuck: bool = False

    def transfer(self, source, destination, amount):
        if self.stuck or source == self.blocked_source:
            raise ConnectionError("asset program unavailable")
        return super().transfer(source, destination, amount)


def test_raising_share_credit_returns_assets():
    assets = InMemoryToken("USDC", decimals=6)
    assets.mint("alice", ONE)
    events = EventLog()
    processor = _processor(assets, RaisingMintToken("shares"), events)

    with pytest.raises(TransferFailed) as excinfo:
        processor.deposit("alice", ONE)

    assert isinstance(excinfo.value.__cause__, RuntimeError)
    assert assets.balance_of("alice") == ONE
    assert assets.balance_of("pool") == 0
    assert processor.total_assets() == 0
    assert len(events) == 0


def test_raising_asset_payout_restores_shares():
    assets = RaisingPayoutToken("USDC", decimals=6)
    shares = InMemoryToken("shares")
    assets.mint("alice", ONE)
    processor = _processor(assets, shares)
    processor.deposit("alice", ONE)

    assets.blocked_source = "pool"
    with pytest.raises(TransferFailed) as excinfo:
        processor.redeem("alice", 500_000_000)

    assert isinstance(excinfo.value.__cause__, ConnectionError)
    assert shares.balance_of("alice") == 1_000_000_000
    assert shares.total_supply == 1_000_000_000
    assert processor.total_assets() == ONE
    assert assets.balance_of("pool") == ONE


def test_raising_asset_transfer_in_is_reported():
    assets = RaisingPayoutToken("USDC", decimals=6)
    shares = InMemoryToken("shares")
    assets.mint("alice", ONE)
    assets.stuck = True
    processor = _processor(assets, shares)

    with pytest.raises(TransferFailed):
        processor.deposit("alice", ONE)
    assert shares.total_supply == 0
    assert processor.total_assets() == 0


def test_raising_compensation_is_logged(caplog):
    assets = InMemoryToken("USDC", decimals=6)
    assets.mint("alice", ONE)
    processor = _processor(assets, RaisingMintToken("shares"))
    original = assets.transfer

    def pay_in_only(source, destination, amount):
        if source == "pool":
            raise ConnectionError("asset program unavailable")
        return original(source, destination, amount)

    assets.transfer = pay_in_only
    with caplog.at_level(logging.CRITICAL, logger="sharevault"):
        with pytest.raises(TransferFailed):
            processor.deposit("alice", ONE)

    assert any("Returning" in record.getMessage() for record in caplog.records)
    assert processor.total_assets() == 0


class RecordingSink:
    def __init__(self):
        self.kinds = []

    def emit(self, event):
        self.kinds.append(event.kind)
        raise RuntimeError("sink down")


def test_failing_event_sink_does_not_abort_operation():
    assets = InMemoryToken("USDC", decimals=6)
    assets.mint("alice", ONE)
    sink = RecordingSink()
    processor = _processor(assets, InMemoryToken("shares"), sink)

    result = processor.deposit("alice", ONE)
    assert result.shares == 1_000_000_000
    assert sink.kinds == ["Deposit"]
    assert processor.total_assets() == ONE


def test_drained_vault_accepts_new_deposits(vault, fund):
    fund("alice", ONE)
    fund("bob", ONE)
    vault.deposit("alice", ONE)
    vault.redeem("alice", vault.shares.balance_of("alice"))
    assert vault.total_shares() == 0

    assert vault.deposit("bob", ONE).shares == 1_000_000_000
