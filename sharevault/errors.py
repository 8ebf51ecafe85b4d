"""Error taxonomy raised by the vault core.

Every error derives from :class:`VaultError`, itself a ``ValueError`` so that
callers treating validation failures generically keep working, while client
code and tests can branch on the specific subclass or its ``code``.
"""

from __future__ import annotations


class VaultError(ValueError):
    """Base class for all vault failures."""

    code = "VaultError"
    default_message = "Vault operation failed"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message

    def as_dict(self) -> dict:
        return {"error": self.code, "message": self.message}


class ZeroAmount(VaultError):
    code = "ZeroAmount"
    default_message = "Amount must be greater than zero"


class DepositTooSmall(VaultError):
    code = "DepositTooSmall"
    default_message = "Deposit amount below minimum threshold"


class SlippageExceeded(VaultError):
    code = "SlippageExceeded"
    default_message = "Slippage tolerance exceeded"


class InsufficientShares(VaultError):
    code = "InsufficientShares"
    default_message = "Insufficient shares balance"


class InsufficientAssets(VaultError):
    code = "InsufficientAssets"
    default_message = "Insufficient assets in vault"


class MathOverflow(VaultError):
    code = "MathOverflow"
    default_message = "Arithmetic overflow"


class DivisionByZero(VaultError):
    code = "DivisionByZero"
    default_message = "Division by zero"


class Unauthorized(VaultError):
    code = "Unauthorized"
    default_message = "Unauthorized - caller is not vault authority"


class VaultPaused(VaultError):
    code = "VaultPaused"
    default_message = "Vault is paused"


class UnsupportedAssetPrecision(VaultError):
    code = "UnsupportedAssetPrecision"
    default_message = "Asset decimals must be <= 9"


class TransferFailed(VaultError):
    code = "TransferFailed"
    default_message = "Balance transfer collaborator reported failure"


class VaultAlreadyExists(VaultError):
    code = "VaultAlreadyExists"
    default_message = "A vault with this asset and vault id already exists"


class VaultNotFound(VaultError):
    code = "VaultNotFound"
    default_message = "Vault not found"


class AccountNotConfigured(VaultError):
    code = "AccountNotConfigured"
    default_message = "Account not configured for confidential transfers"


class PendingBalanceNotApplied(VaultError):
    code = "PendingBalanceNotApplied"
    default_message = "Pending balance not applied - call apply_pending first"


class InvalidProof(VaultError):
    code = "InvalidProof"
    default_message = "Invalid proof data"


class InvalidCiphertext(VaultError):
    code = "InvalidCiphertext"
    default_message = "Invalid ciphertext format"


__all__ = [
    "AccountNotConfigured",
    "DepositTooSmall",
    "DivisionByZero",
    "InsufficientAssets",
    "InsufficientShares",
    "InvalidCiphertext",
    "InvalidProof",
    "MathOverflow",
    "PendingBalanceNotApplied",
    "SlippageExceeded",
    "TransferFailed",
    "Unauthorized",
    "UnsupportedAssetPrecision",
    "VaultAlreadyExists",
    "VaultError",
    "VaultNotFound",
    "VaultPaused",
    "ZeroAmount",
]
