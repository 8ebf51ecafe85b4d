"""Vault facade and the registry that owns every vault and token."""

from __future__ import annotations

import json
import os
import tempfile
import threading
from contextlib import ExitStack
from typing import Any, Dict, List

from .admin import AdminController
from .confidential import ConfidentialShares, ProofVerifier
from .constants import POOL_SEED, SHARES_DECIMALS, SHARES_SEED, U64_MAX, VAULT_SEED
from .errors import VaultAlreadyExists, VaultNotFound
from .events import EventSink, VaultInitialized, publish
from .ledger import VaultLedger
from .processor import OperationProcessor, OperationResult
from .shares import PlaintextShares, ShareLedger
from .tokens import InMemoryToken
from .utils.logger import get_logger
from .utils.serialization import derive_identity

logger = get_logger(__name__)

STORAGE_VERSION = 1


class Vault:
    """One vault: its ledger, share capability, processor and admin controls."""

    def __init__(
        self,
        ledger: VaultLedger,
        shares: ShareLedger,
        asset_token: InMemoryToken,
        events: EventSink | None = None,
    ) -> None:
        self.ledger = ledger
        self.shares = shares
        self.asset_token = asset_token
        self.processor = OperationProcessor(ledger, shares, asset_token, events)
        self.admin = AdminController(ledger, asset_token, events)

    @property
    def key(self) -> str:
        return self.ledger.key

    @property
    def confidential(self) -> bool:
        return self.ledger.confidential

    def deposit(self, caller: str, assets: int, min_shares_out: int = 0) -> OperationResult:
        return self.processor.deposit(caller, assets, min_shares_out)

    def mint(self, caller: str, shares: int, max_assets_in: int = U64_MAX) -> OperationResult:
        return self.processor.mint(caller, shares, max_assets_in)

    def withdraw(
        self, caller: str, assets: int, max_shares_in: int = U64_MAX, proof: Any = None
    ) -> OperationResult:
        return self.processor.withdraw(caller, assets, max_shares_in, proof)

    def redeem(self, caller: str, shares: int, min_assets_out: int = 0, proof: Any = None) -> OperationResult:
        return self.processor.redeem(caller, shares, min_assets_out, proof)

    def pause(self, caller: str) -> None:
        self.admin.pause(caller)

    def unpause(self, caller: str) -> None:
        self.admin.unpause(caller)

    def transfer_authority(self, caller: str, new_authority: str) -> None:
        self.admin.transfer_authority(caller, new_authority)

    def sync(self, caller: str) -> tuple[int, int]:
        return self.admin.sync(caller)

    def total_assets(self) -> int:
        return self.processor.total_assets()

    def total_shares(self) -> int:
        return self.processor.total_shares()

    def preview(self, operation: str, amount: int) -> int:
        previews = {
            "deposit": self.processor.preview_deposit,
            "mint": self.processor.preview_mint,
            "withdraw": self.processor.preview_withdraw,
            "redeem": self.processor.preview_redeem,
        }
        try:
            handler = previews[operation]
        except KeyError:
            raise ValueError(f"Unknown operation {operation!r}") from None
        return handler(amount)

    def account_summary(self, owner: str) -> Dict[str, object]:
        return {
            "owner": owner,
            "assets": self.asset_token.balance_of(owner),
            "shares": self.shares.balance_of(owner),
            "max_withdraw": self.processor.max_withdraw(owner),
            "max_redeem": self.processor.max_redeem(owner),
        }

    def as_dict(self) -> Dict[str, object]:
        payload = self.ledger.to_dict()
        payload["key"] = self.key
        payload["address"] = derive_identity(VAULT_SEED, self.ledger.asset_identity, self.ledger.vault_id)
        payload["total_shares"] = self.total_shares()
        payload["pool_balance"] = self.asset_token.balance_of(self.ledger.pool_account)
        return payload


class VaultRegistry:
    """All vaults keyed by ``"{asset_identity}:{vault_id}"``."""

    def __init__(self, events: EventSink | None = None, verifier: ProofVerifier | None = None) -> None:
        self.events = events
        self.verifier = verifier
        self.vaults: Dict[str, Vault] = {}
        self.assets: Dict[str, InMemoryToken] = {}
        self.share_tokens: Dict[str, InMemoryToken] = {}
        self._lock = threading.RLock()

    @staticmethod
    def vault_key(asset_identity: str, vault_id: int) -> str:
        return f"{asset_identity}:{vault_id}"

    def register_asset(self, identity: str, decimals: int) -> InMemoryToken:
        """Return the asset token for *identity*, creating it on first use."""

        if not identity:
            raise ValueError("Asset identity cannot be empty")
        with self._lock:
            token = self.assets.get(identity)
            if token is None:
                token = InMemoryToken(identity=identity, decimals=decimals)
                self.assets[identity] = token
            elif token.decimals != decimals:
                raise ValueError(f"Asset {identity} is registered with {token.decimals} decimals")
            return token

    def get_asset(self, identity: str) -> InMemoryToken:
        try:
            return self.assets[identity]
        except KeyError:
            raise ValueError(f"Unknown asset {identity}") from None

    def create_vault(
        self,
        *,
        authority: str,
        asset_identity: str,
        asset_decimals: int,
        vault_id: int,
        name: str = "",
        symbol: str = "",
        uri: str = "",
        confidential: bool = False,
        auditor_pubkey: str | None = None,
    ) -> Vault:
        key = self.vault_key(asset_identity, vault_id)
        with self._lock:
            if key in self.vaults:
                raise VaultAlreadyExists(f"Vault {key} already exists")

            ledger = VaultLedger.create(
                authority=authority,
                asset_identity=asset_identity,
                shares_identity=derive_identity(SHARES_SEED, asset_identity, vault_id),
                pool_account=derive_identity(POOL_SEED, asset_identity, vault_id),
                asset_decimals=asset_decimals,
                vault_id=vault_id,
                name=name,
                symbol=symbol,
                uri=uri,
                confidential=confidential,
                auditor_pubkey=auditor_pubkey if confidential else None,
            )
            asset_token = self.register_asset(asset_identity, asset_decimals)
            vault = self._assemble(ledger, asset_token)
            self.vaults[key] = vault
        logger.info("Created %svault %s for %s", "confidential " if confidential else "", key, authority)
        publish(
            self.events,
            VaultInitialized(
                vault=key,
                authority=authority,
                asset_identity=asset_identity,
                shares_identity=ledger.shares_identity,
                vault_id=vault_id,
            ),
        )
        return vault

    def _assemble(
        self,
        ledger: VaultLedger,
        asset_token: InMemoryToken,
        share_state: Dict[str, Any] | None = None,
    ) -> Vault:
        if ledger.confidential:
            if share_state:
                shares: ShareLedger = ConfidentialShares.from_dict(share_state, self.verifier)
            else:
                shares = ConfidentialShares(ledger.shares_identity, self.verifier)
        else:
            token = InMemoryToken(identity=ledger.shares_identity, decimals=SHARES_DECIMALS)
            if share_state:
                token.balances = {str(k): int(v) for k, v in share_state.get("balances", {}).items()}
                token.supply = int(share_state.get("supply", 0))
            self.share_tokens[ledger.shares_identity] = token
            shares = PlaintextShares(token)
        return Vault(ledger, shares, asset_token, self.events)

    def get_vault(self, key: str) -> Vault:
        try:
            return self.vaults[key]
        except KeyError:
            raise VaultNotFound(f"Vault {key} not found") from None

    def list_vaults(self) -> List[Dict[str, object]]:
        with self._lock:
            vaults = list(self.vaults.values())
        return [vault.as_dict() for vault in vaults]

    # Persistence ---------------------------------------------------------

    def to_dict(self) -> Dict[str, object]:
        with self._lock, ExitStack() as stack:
            vaults = [self.vaults[key] for key in sorted(self.vaults)]
            # Every vault lock is held so pool balances match the cached totals.
            for vault in vaults:
                stack.enter_context(vault.ledger.lock)
            assets = []
            for token in self.assets.values():
                supply, balances = token.snapshot()
                assets.append(
                    {"identity": token.identity, "decimals": token.decimals, "supply": supply, "balances": balances}
                )
            return {
                "storage_version": STORAGE_VERSION,
                "assets": assets,
                "vaults": [self._vault_state(vault) for vault in vaults],
            }

    def _vault_state(self, vault: Vault) -> Dict[str, object]:
        if isinstance(vault.shares, ConfidentialShares):
            share_state = vault.shares.to_dict()
        else:
            supply, balances = self.share_tokens[vault.ledger.shares_identity].snapshot()
            share_state = {"supply": supply, "balances": balances}
        return {"ledger": vault.ledger.to_dict(), "shares": share_state}

    def save_to_file(self, filename: str) -> None:
        """Write the registry to *filename* through a uniquely named temp file."""

        directory = os.path.dirname(os.path.abspath(filename))
        with self._lock:
            payload = self.to_dict()
            fd, tmp_path = tempfile.mkstemp(dir=directory, suffix=".tmp")
            try:
                with os.fdopen(fd, "w", encoding="utf-8") as f:
                    json.dump(payload, f, indent=2, sort_keys=True)
                os.replace(tmp_path, filename)
            except Exception:
                if os.path.exists(tmp_path):
                    os.unlink(tmp_path)
                raise
        logger.debug("Saved %d vaults to %s", len(payload["vaults"]), filename)

    @classmethod
    def from_dict(
        cls,
        payload: Dict[str, Any],
        events: EventSink | None = None,
        verifier: ProofVerifier | None = None,
    ) -> "VaultRegistry":
        version = payload.get("storage_version")
        if version != STORAGE_VERSION:
            raise ValueError(f"Unsupported storage version: {version}")
        registry = cls(events=events, verifier=verifier)
        for item in payload.get("assets", []):
            token = registry.register_asset(str(item["identity"]), int(item["decimals"]))
            token.balances = {str(k): int(v) for k, v in item.get("balances", {}).items()}
            token.supply = int(item.get("supply", 0))
        for item in payload.get("vaults", []):
            ledger = VaultLedger.from_dict(item["ledger"])
            asset_token = registry.register_asset(ledger.asset_identity, ledger.asset_decimals)
            registry.vaults[ledger.key] = registry._assemble(ledger, asset_token, item.get("shares"))
        return registry

    @classmethod
    def load_from_file(
        cls,
        filename: str,
        events: EventSink | None = None,
        verifier: ProofVerifier | None = None,
    ) -> "VaultRegistry":
        if not os.path.exists(filename):
            return cls(events=events, verifier=verifier)
        with open(filename, "r", encoding="utf-8") as f:
            payload = json.load(f)
        registry = cls.from_dict(payload, events=events, verifier=verifier)
        logger.info("Loaded %d vaults from %s", len(registry.vaults), filename)
        return registry


__all__ = ["STORAGE_VERSION", "Vault", "VaultRegistry"]
