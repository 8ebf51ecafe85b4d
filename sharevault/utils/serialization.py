"""Utility helpers for deterministic serialisation of payloads."""

from __future__ import annotations

import json
from typing import Any, Dict

from ..crypto_utils import hash_bytes


def canonical_json(payload: Dict[str, Any]) -> str:
    """Return *payload* encoded as compact JSON with sorted keys."""

    return json.dumps(payload, sort_keys=True, separators=(",", ":"))


def canonical_hash(payload: Dict[str, Any]) -> bytes:
    """Return a SHA-256 hash of *payload* with stable JSON encoding."""

    return hash_bytes(canonical_json(payload).encode("utf-8"))


def derive_identity(seed: bytes, *parts: str | int) -> str:
    """Derive a stable opaque identifier from *seed* and *parts*."""

    chunks = [seed]
    for part in parts:
        if isinstance(part, int):
            chunks.append(part.to_bytes(8, "little"))
        else:
            chunks.append(str(part).encode("utf-8"))
    return hash_bytes(*chunks).hex()


__all__ = ["canonical_hash", "canonical_json", "derive_identity"]
