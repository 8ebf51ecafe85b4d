"""Share-ledger capability used by the operation processor.

The processor only ever sees this interface; whether the holder balances are
plain integers or hidden behind commitments is decided by the implementation
handed to it.
"""

from __future__ import annotations

from typing import Any, Protocol

from .errors import InsufficientShares
from .tokens import ShareToken


class ShareLedger(Protocol):
    def total_supply(self) -> int: ...

    def balance_of(self, owner: str) -> int | None: ...

    def check_credit(self, owner: str) -> None: ...

    def check_debit(self, owner: str, shares: int, proof: Any = None) -> None: ...

    def credit(self, owner: str, shares: int) -> bool: ...

    def debit(self, owner: str, shares: int, proof: Any = None) -> bool: ...

    def revert_debit(self, owner: str, shares: int) -> bool: ...

    def settle(self, owner: str) -> None:
        """Drop per-owner bookkeeping once a debit has finished or failed."""


class PlaintextShares:
    """Shares held as visible integer balances on a share token."""

    confidential = False

    def __init__(self, token: ShareToken) -> None:
        self.token = token

    def total_supply(self) -> int:
        return self.token.total_supply

    def balance_of(self, owner: str) -> int:
        return self.token.balance_of(owner)

    def check_credit(self, owner: str) -> None:
        if not owner:
            raise ValueError("Owner cannot be empty")

    def check_debit(self, owner: str, shares: int, proof: Any = None) -> None:
        if self.token.balance_of(owner) < shares:
            raise InsufficientShares()

    def credit(self, owner: str, shares: int) -> bool:
        return self.token.mint(owner, shares)

    def debit(self, owner: str, shares: int, proof: Any = None) -> bool:
        return self.token.burn(owner, shares)

    def revert_debit(self, owner: str, shares: int) -> bool:
        return self.token.mint(owner, shares)

    def settle(self, owner: str) -> None:
        pass


__all__ = ["PlaintextShares", "ShareLedger"]
