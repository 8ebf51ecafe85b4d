"""Persistent per-vault accounting record."""

from __future__ import annotations

import threading
from dataclasses import dataclass, field
from typing import Dict

from .constants import U64_MAX
from .conversion import calculate_decimals_offset
from .errors import InsufficientAssets, MathOverflow, VaultPaused


_IMMUTABLE_FIELDS = frozenset(
    {
        "asset_identity",
        "shares_identity",
        "pool_account",
        "asset_decimals",
        "decimals_offset",
        "vault_id",
    }
)


@dataclass
class VaultLedger:
    """State of a single vault.

    ``total_assets`` is a cache of the pool balance. It is the value every
    conversion uses and only moves by the exact asset delta of an operation,
    or wholesale through ``sync``.
    """

    authority: str
    asset_identity: str
    shares_identity: str
    pool_account: str
    asset_decimals: int
    decimals_offset: int
    vault_id: int
    total_assets: int = 0
    paused: bool = False
    name: str = ""
    symbol: str = ""
    uri: str = ""
    confidential: bool = False
    auditor_pubkey: str | None = None
    lock: threading.RLock = field(default_factory=threading.RLock, repr=False, compare=False)

    def __setattr__(self, name: str, value: object) -> None:
        if name in _IMMUTABLE_FIELDS and name in self.__dict__:
            raise AttributeError(f"{name} is immutable after vault creation")
        super().__setattr__(name, value)

    @classmethod
    def create(
        cls,
        *,
        authority: str,
        asset_identity: str,
        shares_identity: str,
        pool_account: str,
        asset_decimals: int,
        vault_id: int,
        name: str = "",
        symbol: str = "",
        uri: str = "",
        confidential: bool = False,
        auditor_pubkey: str | None = None,
    ) -> "VaultLedger":
        if not authority:
            raise ValueError("Authority cannot be empty")
        if not asset_identity:
            raise ValueError("Asset identity cannot be empty")
        if isinstance(vault_id, bool) or not isinstance(vault_id, int) or not 0 <= vault_id <= U64_MAX:
            raise ValueError("vault_id must be an unsigned 64-bit integer")
        offset = calculate_decimals_offset(asset_decimals)
        return cls(
            authority=authority,
            asset_identity=asset_identity,
            shares_identity=shares_identity,
            pool_account=pool_account,
            asset_decimals=asset_decimals,
            decimals_offset=offset,
            vault_id=vault_id,
            name=name,
            symbol=symbol,
            uri=uri,
            confidential=confidential,
            auditor_pubkey=auditor_pubkey,
        )

    @property
    def key(self) -> str:
        return f"{self.asset_identity}:{self.vault_id}"

    def require_active(self) -> None:
        if self.paused:
            raise VaultPaused()

    def total_after_credit(self, assets: int) -> int:
        new_total = self.total_assets + assets
        if new_total > U64_MAX:
            raise MathOverflow("total_assets would exceed 64-bit range")
        return new_total

    def total_after_debit(self, assets: int) -> int:
        if assets > self.total_assets:
            raise InsufficientAssets()
        return self.total_assets - assets

    def overwrite_total_assets(self, value: int) -> int:
        """Replace the cached total and return the previous value."""

        if value < 0 or value > U64_MAX:
            raise MathOverflow("reported balance outside 64-bit range")
        previous = self.total_assets
        self.total_assets = value
        return previous

    def to_dict(self) -> Dict[str, object]:
        return {
            "authority": self.authority,
            "asset_identity": self.asset_identity,
            "shares_identity": self.shares_identity,
            "pool_account": self.pool_account,
            "asset_decimals": self.asset_decimals,
            "decimals_offset": self.decimals_offset,
            "vault_id": self.vault_id,
            "total_assets": self.total_assets,
            "paused": self.paused,
            "name": self.name,
            "symbol": self.symbol,
            "uri": self.uri,
            "confidential": self.confidential,
            "auditor_pubkey": self.auditor_pubkey,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, object]) -> "VaultLedger":
        try:
            ledger = cls.create(
                authority=str(data["authority"]),
                asset_identity=str(data["asset_identity"]),
                shares_identity=str(data["shares_identity"]),
                pool_account=str(data["pool_account"]),
                asset_decimals=int(data["asset_decimals"]),
                vault_id=int(data["vault_id"]),
                name=str(data.get("name", "")),
                symbol=str(data.get("symbol", "")),
                uri=str(data.get("uri", "")),
                confidential=bool(data.get("confidential", False)),
                auditor_pubkey=data.get("auditor_pubkey"),
            )
        except KeyError as exc:
            raise ValueError(f"Vault record missing field {exc}") from exc
        if int(data.get("decimals_offset", ledger.decimals_offset)) != ledger.decimals_offset:
            raise ValueError("Stored decimals_offset does not match asset decimals")
        ledger.total_assets = int(data.get("total_assets", 0))
        ledger.paused = bool(data.get("paused", False))
        return ledger


__all__ = ["VaultLedger"]
