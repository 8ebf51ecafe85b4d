"""In-memory fungible token balances.

The vault core never moves balances itself.  It talks to a collaborator that
can ``transfer``, ``mint`` and ``burn`` and that reports ``True`` or ``False``
for each call.  :class:`InMemoryToken` is that collaborator for tests, the
HTTP demo and the scenario CLI.  It also answers ``balance_of`` and therefore
doubles as the balance oracle used by ``sync``.
"""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict, Protocol, Tuple

from .constants import U64_MAX


class AssetTransfer(Protocol):
    def transfer(self, source: str, destination: str, amount: int) -> bool: ...


class ShareToken(Protocol):
    def mint(self, to: str, amount: int) -> bool: ...

    def burn(self, owner: str, amount: int) -> bool: ...

    def balance_of(self, owner: str) -> int: ...

    @property
    def total_supply(self) -> int: ...


class BalanceOracle(Protocol):
    def balance_of(self, account: str) -> int: ...


@dataclass
class InMemoryToken:
    """Balances of a single fungible token keyed by account identity."""

    identity: str
    decimals: int = 9
    balances: Dict[str, int] = field(default_factory=dict)
    supply: int = 0

    def __post_init__(self) -> None:
        self._lock = threading.Lock()

    @property
    def total_supply(self) -> int:
        return self.supply

    def balance_of(self, owner: str) -> int:
        return self.balances.get(owner, 0)

    def snapshot(self) -> Tuple[int, Dict[str, int]]:
        """Return the supply and a copy of the balances taken together."""

        with self._lock:
            return self.supply, dict(self.balances)

    def _credit(self, owner: str, amount: int) -> None:
        self.balances[owner] = self.balances.get(owner, 0) + amount

    def _debit(self, owner: str, amount: int) -> None:
        remaining = self.balances.get(owner, 0) - amount
        if remaining:
            self.balances[owner] = remaining
        else:
            self.balances.pop(owner, None)

    def transfer(self, source: str, destination: str, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            if self.balances.get(source, 0) < amount:
                return False
            if self.balances.get(destination, 0) + amount > U64_MAX:
                return False
            if amount:
                self._debit(source, amount)
                self._credit(destination, amount)
            return True

    def mint(self, to: str, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            if self.supply + amount > U64_MAX:
                return False
            if amount:
                self._credit(to, amount)
                self.supply += amount
            return True

    def burn(self, owner: str, amount: int) -> bool:
        if amount < 0:
            return False
        with self._lock:
            if self.balances.get(owner, 0) < amount:
                return False
            if amount:
                self._debit(owner, amount)
                self.supply -= amount
            return True


__all__ = ["AssetTransfer", "BalanceOracle", "InMemoryToken", "ShareToken"]
