"""Structured events emitted after successful vault operations."""

from __future__ import annotations

import time
from collections import deque
from dataclasses import asdict, dataclass, field
from typing import Deque, Dict, Iterable, List, Protocol

from .utils.logger import get_logger
from .utils.serialization import canonical_hash

logger = get_logger(__name__)


@dataclass
class VaultEvent:
    vault: str
    timestamp: float = field(default_factory=time.time, kw_only=True)

    @property
    def kind(self) -> str:
        return type(self).__name__

    @property
    def event_id(self) -> str:
        return canonical_hash(self._payload()).hex()

    def _payload(self) -> Dict[str, object]:
        payload = asdict(self)
        payload["kind"] = self.kind
        return payload

    def as_dict(self) -> Dict[str, object]:
        payload = self._payload()
        payload["event_id"] = self.event_id
        return payload


@dataclass
class VaultInitialized(VaultEvent):
    authority: str
    asset_identity: str
    shares_identity: str
    vault_id: int


@dataclass
class Deposit(VaultEvent):
    """Emitted for both ``deposit`` and ``mint``."""

    operation: str
    caller: str
    owner: str
    assets: int
    shares: int


@dataclass
class Withdraw(VaultEvent):
    """Emitted for both ``withdraw`` and ``redeem``."""

    operation: str
    caller: str
    receiver: str
    owner: str
    assets: int
    shares: int


@dataclass
class VaultStatusChanged(VaultEvent):
    paused: bool


@dataclass
class AuthorityTransferred(VaultEvent):
    previous_authority: str
    new_authority: str


@dataclass
class VaultSynced(VaultEvent):
    previous_total: int
    new_total: int


class EventSink(Protocol):
    def emit(self, event: VaultEvent) -> None: ...


class EventLog:
    """In-memory event sink for indexing and tests.

    With *maxlen* set only the most recent events are kept.
    """

    def __init__(self, maxlen: int | None = None) -> None:
        self.events: Deque[VaultEvent] = deque(maxlen=maxlen)

    def emit(self, event: VaultEvent) -> None:
        self.events.append(event)

    def of_kind(self, kind: str) -> List[VaultEvent]:
        return [event for event in self.events if event.kind == kind]

    def for_vault(self, vault: str) -> List[VaultEvent]:
        return [event for event in self.events if event.vault == vault]

    def clear(self) -> None:
        self.events.clear()

    def __len__(self) -> int:
        return len(self.events)


class LoggingSink:
    def emit(self, event: VaultEvent) -> None:
        logger.info("event %s %s", event.kind, event.as_dict())


class FanoutSink:
    """Forward every event to several sinks."""

    def __init__(self, sinks: Iterable[EventSink]) -> None:
        self.sinks = list(sinks)

    def emit(self, event: VaultEvent) -> None:
        for sink in self.sinks:
            publish(sink, event)


def publish(sink: EventSink | None, event: VaultEvent) -> None:
    """Hand *event* to *sink*; sink failures never reach the caller."""

    if sink is None:
        return
    try:
        sink.emit(event)
    except Exception:
        logger.exception("Event sink %r failed for %s", sink, event.kind)


__all__ = [
    "AuthorityTransferred",
    "Deposit",
    "EventLog",
    "EventSink",
    "FanoutSink",
    "LoggingSink",
    "VaultEvent",
    "VaultInitialized",
    "VaultStatusChanged",
    "VaultSynced",
    "Withdraw",
    "publish",
]
