"""Deposit, mint, withdraw and redeem.

Every operation runs the same three steps under the vault lock:

1. validate the request against the current state,
2. compute the counter-amount and check the caller's slippage bound,
3. move assets and shares through the collaborators and update the ledger.

Step 3 calls two collaborators.  When the second one reports failure or
raises, the first is compensated, so either both movements and the ledger
update happen or none of them do.
"""

from __future__ import annotations

from contextlib import contextmanager
from dataclasses import dataclass
from typing import Any, Dict, Iterator

from . import conversion
from .constants import MIN_DEPOSIT_AMOUNT, U64_MAX
from .errors import DepositTooSmall, SlippageExceeded, TransferFailed, VaultError, ZeroAmount
from .events import Deposit, EventSink, Withdraw, publish
from .ledger import VaultLedger
from .shares import ShareLedger
from .tokens import AssetTransfer
from .utils.logger import get_logger

logger = get_logger(__name__)


@dataclass(frozen=True)
class OperationResult:
    operation: str
    owner: str
    assets: int
    shares: int

    def as_dict(self) -> Dict[str, object]:
        return {
            "operation": self.operation,
            "owner": self.owner,
            "assets": self.assets,
            "shares": self.shares,
        }


class OperationProcessor:
    def __init__(
        self,
        ledger: VaultLedger,
        shares: ShareLedger,
        asset_token: AssetTransfer,
        events: EventSink | None = None,
    ) -> None:
        self.ledger = ledger
        self.shares = shares
        self.asset_token = asset_token
        self.events = events

    @contextmanager
    def _operation(self, name: str, caller: str) -> Iterator[None]:
        with self.ledger.lock:
            try:
                yield
            except VaultError as exc:
                logger.debug("%s by %s on %s rejected: %s", name, caller, self.ledger.key, exc.code)
                raise

    def _state(self) -> tuple[int, int, int]:
        return self.ledger.total_assets, self.shares.total_supply(), self.ledger.decimals_offset

    # Step 3 movements ----------------------------------------------------

    def _pay_in(self, caller: str, assets: int, shares: int) -> None:
        ledger = self.ledger
        try:
            moved = self.asset_token.transfer(caller, ledger.pool_account, assets)
        except VaultError:
            raise
        except Exception as exc:
            raise TransferFailed("Asset transfer into the vault failed") from exc
        if not moved:
            raise TransferFailed("Asset transfer into the vault failed")
        try:
            credited = self.shares.credit(caller, shares)
        except Exception as exc:
            self._return_assets(caller, assets)
            if isinstance(exc, VaultError):
                raise
            raise TransferFailed("Share credit failed; assets returned") from exc
        if not credited:
            self._return_assets(caller, assets)
            raise TransferFailed("Share credit failed; assets returned")

    def _pay_out(self, owner: str, assets: int, shares: int, proof: Any) -> None:
        ledger = self.ledger
        try:
            debited = self.shares.debit(owner, shares, proof)
        except VaultError:
            raise
        except Exception as exc:
            raise TransferFailed("Share debit failed") from exc
        if not debited:
            raise TransferFailed("Share debit failed")
        try:
            moved = self.asset_token.transfer(ledger.pool_account, owner, assets)
        except Exception as exc:
            self._restore_shares(owner, shares)
            if isinstance(exc, VaultError):
                raise
            raise TransferFailed("Asset transfer out of the vault failed; shares restored") from exc
        if not moved:
            self._restore_shares(owner, shares)
            raise TransferFailed("Asset transfer out of the vault failed; shares restored")

    def _take_out(self, caller: str, assets: int, shares: int, proof: Any) -> None:
        self.shares.check_debit(caller, shares, proof)
        try:
            new_total = self.ledger.total_after_debit(assets)
            self._pay_out(caller, assets, shares, proof)
            self.ledger.total_assets = new_total
        finally:
            self.shares.settle(caller)

    def _return_assets(self, caller: str, assets: int) -> None:
        ledger = self.ledger
        try:
            returned = self.asset_token.transfer(ledger.pool_account, caller, assets)
        except Exception:
            logger.critical("Returning %d assets to %s on %s raised", assets, caller, ledger.key, exc_info=True)
            return
        if not returned:
            logger.critical(
                "Could not return %d assets to %s after failed share credit on %s",
                assets,
                caller,
                ledger.key,
            )

    def _restore_shares(self, owner: str, shares: int) -> None:
        ledger = self.ledger
        try:
            restored = self.shares.revert_debit(owner, shares)
        except Exception:
            logger.critical("Restoring %d shares to %s on %s raised", shares, owner, ledger.key, exc_info=True)
            return
        if not restored:
            logger.critical(
                "Could not restore %d shares to %s after failed asset transfer on %s",
                shares,
                owner,
                ledger.key,
            )

    # Operations ----------------------------------------------------------

    def deposit(self, caller: str, assets: int, min_shares_out: int = 0) -> OperationResult:
        """Deposit exactly *assets* and receive at least *min_shares_out* shares."""

        conversion.require_u64(assets, "assets")
        conversion.require_u64(min_shares_out, "min_shares_out")
        with self._operation("deposit", caller):
            self.ledger.require_active()
            if assets == 0:
                raise ZeroAmount()
            if assets < MIN_DEPOSIT_AMOUNT:
                raise DepositTooSmall(f"Deposit of {assets} is below the minimum of {MIN_DEPOSIT_AMOUNT}")

            shares = conversion.preview_deposit(assets, *self._state())
            if shares < min_shares_out:
                raise SlippageExceeded(f"Deposit yields {shares} shares, minimum was {min_shares_out}")

            self.shares.check_credit(caller)
            new_total = self.ledger.total_after_credit(assets)
            self._pay_in(caller, assets, shares)
            self.ledger.total_assets = new_total
            return self._deposited("deposit", caller, assets, shares)

    def mint(self, caller: str, shares: int, max_assets_in: int = U64_MAX) -> OperationResult:
        """Mint exactly *shares*, paying at most *max_assets_in* assets."""

        conversion.require_u64(shares, "shares")
        conversion.require_u64(max_assets_in, "max_assets_in")
        with self._operation("mint", caller):
            self.ledger.require_active()
            if shares == 0:
                raise ZeroAmount()

            assets = conversion.preview_mint(shares, *self._state())
            if assets > max_assets_in:
                raise SlippageExceeded(f"Mint costs {assets} assets, maximum was {max_assets_in}")

            self.shares.check_credit(caller)
            new_total = self.ledger.total_after_credit(assets)
            self._pay_in(caller, assets, shares)
            self.ledger.total_assets = new_total
            return self._deposited("mint", caller, assets, shares)

    def withdraw(
        self, caller: str, assets: int, max_shares_in: int = U64_MAX, proof: Any = None
    ) -> OperationResult:
        """Withdraw exactly *assets*, burning at most *max_shares_in* shares."""

        conversion.require_u64(assets, "assets")
        conversion.require_u64(max_shares_in, "max_shares_in")
        with self._operation("withdraw", caller):
            self.ledger.require_active()
            if assets == 0:
                raise ZeroAmount()

            shares = conversion.preview_withdraw(assets, *self._state())
            if shares > max_shares_in:
                raise SlippageExceeded(f"Withdraw burns {shares} shares, maximum was {max_shares_in}")

            self._take_out(caller, assets, shares, proof)
            return self._withdrawn("withdraw", caller, assets, shares)

    def redeem(
        self, caller: str, shares: int, min_assets_out: int = 0, proof: Any = None
    ) -> OperationResult:
        """Redeem exactly *shares* for at least *min_assets_out* assets."""

        conversion.require_u64(shares, "shares")
        conversion.require_u64(min_assets_out, "min_assets_out")
        with self._operation("redeem", caller):
            self.ledger.require_active()
            if shares == 0:
                raise ZeroAmount()

            assets = conversion.preview_redeem(shares, *self._state())
            if assets < min_assets_out:
                raise SlippageExceeded(f"Redeem yields {assets} assets, minimum was {min_assets_out}")

            self._take_out(caller, assets, shares, proof)
            return self._withdrawn("redeem", caller, assets, shares)

    def _deposited(self, operation: str, caller: str, assets: int, shares: int) -> OperationResult:
        logger.info("%s on %s: %s paid %d assets for %d shares", operation, self.ledger.key, caller, assets, shares)
        publish(
            self.events,
            Deposit(
                vault=self.ledger.key,
                operation=operation,
                caller=caller,
                owner=caller,
                assets=assets,
                shares=shares,
            ),
        )
        return OperationResult(operation, caller, assets, shares)

    def _withdrawn(self, operation: str, caller: str, assets: int, shares: int) -> OperationResult:
        logger.info("%s on %s: %s burned %d shares for %d assets", operation, self.ledger.key, caller, shares, assets)
        publish(
            self.events,
            Withdraw(
                vault=self.ledger.key,
                operation=operation,
                caller=caller,
                receiver=caller,
                owner=caller,
                assets=assets,
                shares=shares,
            ),
        )
        return OperationResult(operation, caller, assets, shares)

    # Views ---------------------------------------------------------------

    def total_assets(self) -> int:
        return self.ledger.total_assets

    def total_shares(self) -> int:
        return self.shares.total_supply()

    def convert_to_shares(self, assets: int) -> int:
        return conversion.convert_to_shares(assets, *self._state())

    def convert_to_assets(self, shares: int) -> int:
        return conversion.convert_to_assets(shares, *self._state())

    def preview_deposit(self, assets: int) -> int:
        return conversion.preview_deposit(assets, *self._state())

    def preview_mint(self, shares: int) -> int:
        return conversion.preview_mint(shares, *self._state())

    def preview_withdraw(self, assets: int) -> int:
        return conversion.preview_withdraw(assets, *self._state())

    def preview_redeem(self, shares: int) -> int:
        return conversion.preview_redeem(shares, *self._state())

    def max_deposit(self, owner: str | None = None) -> int:
        return 0 if self.ledger.paused else U64_MAX

    def max_mint(self, owner: str | None = None) -> int:
        return 0 if self.ledger.paused else U64_MAX

    def max_withdraw(self, owner: str) -> int:
        """Assets *owner* could withdraw now, capped at the vault's holdings.

        Zero for confidential holders, whose balances the vault cannot read.
        """

        if self.ledger.paused:
            return 0
        balance = self.shares.balance_of(owner)
        if not balance:
            return 0
        return min(self.convert_to_assets(balance), self.ledger.total_assets)

    def max_redeem(self, owner: str) -> int:
        if self.ledger.paused:
            return 0
        return self.shares.balance_of(owner) or 0


__all__ = ["OperationProcessor", "OperationResult"]
