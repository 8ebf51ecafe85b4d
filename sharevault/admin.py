"""Authority-only vault controls."""

from __future__ import annotations

from typing import Tuple

from .errors import Unauthorized, VaultPaused
from .events import AuthorityTransferred, EventSink, VaultStatusChanged, VaultSynced, publish
from .ledger import VaultLedger
from .tokens import BalanceOracle
from .utils.logger import get_logger

logger = get_logger(__name__)


class AdminController:
    def __init__(self, ledger: VaultLedger, oracle: BalanceOracle, events: EventSink | None = None) -> None:
        self.ledger = ledger
        self.oracle = oracle
        self.events = events

    def _require_authority(self, caller: str) -> None:
        if caller != self.ledger.authority:
            logger.warning("Rejected admin call by %s on %s", caller, self.ledger.key)
            raise Unauthorized()

    def _set_paused(self, caller: str, paused: bool) -> None:
        with self.ledger.lock:
            self._require_authority(caller)
            if self.ledger.paused == paused:
                raise VaultPaused("Vault is already paused" if paused else "Vault is not paused")
            self.ledger.paused = paused
        logger.info("%s %s by %s", self.ledger.key, "paused" if paused else "unpaused", caller)
        publish(self.events, VaultStatusChanged(vault=self.ledger.key, paused=paused))

    def pause(self, caller: str) -> None:
        self._set_paused(caller, True)

    def unpause(self, caller: str) -> None:
        self._set_paused(caller, False)

    def transfer_authority(self, caller: str, new_authority: str) -> None:
        if not new_authority:
            raise ValueError("New authority cannot be empty")
        with self.ledger.lock:
            self._require_authority(caller)
            previous = self.ledger.authority
            self.ledger.authority = new_authority
        logger.info("Authority of %s moved from %s to %s", self.ledger.key, previous, new_authority)
        publish(
            self.events,
            AuthorityTransferred(vault=self.ledger.key, previous_authority=previous, new_authority=new_authority),
        )

    def external_balance(self) -> int:
        return self.oracle.balance_of(self.ledger.pool_account)

    def sync(self, caller: str) -> Tuple[int, int]:
        """Overwrite the cached total with the pool's observed balance.

        Anything sent to the pool outside ``deposit``/``mint`` becomes part of
        the exchange rate once synced, so existing holders capture it.
        """

        with self.ledger.lock:
            self._require_authority(caller)
            observed = self.external_balance()
            previous = self.ledger.overwrite_total_assets(observed)
        if observed != previous:
            logger.warning("Synced %s total_assets from %d to %d", self.ledger.key, previous, observed)
        else:
            logger.info("Synced %s; total_assets unchanged at %d", self.ledger.key, observed)
        publish(self.events, VaultSynced(vault=self.ledger.key, previous_total=previous, new_total=observed))
        return previous, observed

    def asset_discrepancy(self) -> int:
        """Observed pool balance minus the cached total."""

        with self.ledger.lock:
            difference = self.external_balance() - self.ledger.total_assets
        if difference:
            logger.warning("%s pool balance differs from total_assets by %d", self.ledger.key, difference)
        return difference


__all__ = ["AdminController"]
