"""Tokenized vault with virtual-offset share accounting."""

from .errors import VaultError
from .events import EventLog
from .processor import OperationProcessor, OperationResult
from .vault import Vault, VaultRegistry

__all__ = [
    "EventLog",
    "OperationProcessor",
    "OperationResult",
    "Vault",
    "VaultError",
    "VaultRegistry",
]
