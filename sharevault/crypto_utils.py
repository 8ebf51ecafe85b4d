"""Curve primitives backing confidential share balances.

Balances of a confidential vault are Pedersen commitments ``v*H + r*G`` on
secp256k1.  The zero commitment (the point at infinity) is represented by
``None`` throughout so that it can be stored and serialised like any other
value.
"""

from __future__ import annotations

import base64
import hashlib
import secrets
from typing import Dict, Iterable, Optional, Tuple

from ecdsa import SECP256k1, rfc6979
from ecdsa.ellipticcurve import INFINITY, Point, PointJacobi


CURVE = SECP256k1
CURVE_ORDER = CURVE.order
CURVE_FIELD = CURVE.curve.p()
G = CURVE.generator

Commitment = Optional[Point]


def random_scalar() -> int:
    """Return a cryptographically secure random scalar for the curve."""

    return secrets.randbelow(CURVE_ORDER - 1) + 1


def is_valid_scalar(value: int) -> bool:
    return isinstance(value, int) and not isinstance(value, bool) and 1 <= value < CURVE_ORDER


def _ensure_bytes(data: object) -> bytes:
    if isinstance(data, (bytes, bytearray)):
        return bytes(data)
    raise TypeError("message must be bytes-like")


def scalar_mult(scalar: int, point: Point = G) -> Point:
    return scalar * point


def point_add(p1: Point, p2: Point) -> Point:
    return p1 + p2


def point_neg(point: Point) -> Point:
    return Point(point.curve(), point.x(), (-point.y()) % CURVE_FIELD)


def int_to_bytes(value: int) -> bytes:
    return value.to_bytes(32, "big")


def bytes_to_int(data: bytes) -> int:
    return int.from_bytes(data, "big")


def is_identity(point: Point | None) -> bool:
    return point is None or point == INFINITY


def point_to_bytes(point: Point) -> bytes:
    """Return the compressed SEC1 representation of *point*."""

    if is_identity(point):
        raise ValueError("The point at infinity has no compressed encoding")
    prefix = b"\x02" if point.y() % 2 == 0 else b"\x03"
    return prefix + int_to_bytes(point.x())


def bytes_to_point(data: bytes) -> Point:
    """Decode a compressed SEC1 point, rejecting x values off the curve."""

    if len(data) != 33:
        raise ValueError("Compressed points must be 33 bytes long")
    prefix = data[0]
    if prefix not in (2, 3):
        raise ValueError("Invalid compressed point prefix")
    x = bytes_to_int(data[1:])
    if x >= CURVE_FIELD:
        raise ValueError("Point x coordinate outside the field")
    rhs = (pow(x, 3, CURVE_FIELD) + 7) % CURVE_FIELD
    y = pow(rhs, (CURVE_FIELD + 1) // 4, CURVE_FIELD)
    if pow(y, 2, CURVE_FIELD) != rhs:
        raise ValueError("Point is not on secp256k1")
    if (y % 2 == 0 and prefix == 3) or (y % 2 == 1 and prefix == 2):
        y = (-y) % CURVE_FIELD
    return Point(CURVE.curve, x, y, CURVE_ORDER)


def encode_point(point: Commitment) -> str | None:
    if is_identity(point):
        return None
    return base64.b64encode(point_to_bytes(point)).decode("ascii")


def decode_point(encoded: str | None) -> Commitment:
    if encoded is None:
        return None
    return bytes_to_point(base64.b64decode(str(encoded).encode("ascii"), validate=True))


def hash_bytes(*chunks: Iterable[bytes]) -> bytes:
    """Hash the concatenation of *chunks* with SHA-256."""

    digest = hashlib.sha256()
    for chunk in chunks:
        digest.update(bytes(chunk))
    return digest.digest()


def hash_to_int(*chunks: Iterable[bytes]) -> int:
    return bytes_to_int(hash_bytes(*chunks)) % CURVE_ORDER


def hash_to_point(label: bytes) -> Point:
    """Derive a generator with unknown discrete log relative to ``G``."""

    counter = 0
    while True:
        candidate = hash_bytes(label, counter.to_bytes(4, "big"))
        x = bytes_to_int(candidate) % CURVE_FIELD
        rhs = (pow(x, 3, CURVE_FIELD) + 7) % CURVE_FIELD
        y = pow(rhs, (CURVE_FIELD + 1) // 4, CURVE_FIELD)
        if pow(y, 2, CURVE_FIELD) == rhs:
            if y % 2 == 1:
                y = (-y) % CURVE_FIELD
            return Point(CURVE.curve, x, y, CURVE_ORDER)
        counter += 1


H = PointJacobi.from_affine(hash_to_point(b"sharevault-value-generator"), generator=True)


def generate_keypair() -> Tuple[int, Point]:
    private_key = random_scalar()
    return private_key, scalar_mult(private_key, G)


def pedersen_commit(amount: int, blinding: int) -> Commitment:
    """Commit to *amount* with *blinding*; ``(0, 0)`` commits to ``None``."""

    amount %= CURVE_ORDER
    blinding %= CURVE_ORDER
    if amount == 0 and blinding == 0:
        return None
    if amount == 0:
        return scalar_mult(blinding, G)
    if blinding == 0:
        return scalar_mult(amount, H)
    return point_add(scalar_mult(blinding, G), scalar_mult(amount, H))


def commitment_add(left: Commitment, right: Commitment) -> Commitment:
    if is_identity(left):
        return None if is_identity(right) else right
    if is_identity(right):
        return left
    total = point_add(left, right)
    return None if is_identity(total) else total


def commitment_sub(left: Commitment, right: Commitment) -> Commitment:
    if is_identity(right):
        return None if is_identity(left) else left
    return commitment_add(left, point_neg(right))


def commitments_equal(left: Commitment, right: Commitment) -> bool:
    if is_identity(left) or is_identity(right):
        return is_identity(left) and is_identity(right)
    return left == right


def schnorr_sign(message: bytes, private_key: int) -> Tuple[Point, int]:
    """Return a deterministic Schnorr signature over *message*."""

    message_bytes = _ensure_bytes(message)
    if not is_valid_scalar(private_key):
        raise ValueError("private key must be a scalar in the curve order")

    message_hash = hashlib.sha256(message_bytes).digest()
    k = rfc6979.generate_k(CURVE_ORDER, private_key, hashlib.sha256, message_hash)
    r_point = scalar_mult(k, G)
    if hasattr(r_point, "to_affine"):
        r_point = r_point.to_affine()
    challenge = hash_to_int(point_to_bytes(r_point), message_bytes)
    s = (k + challenge * private_key) % CURVE_ORDER
    return r_point, s


def schnorr_verify(message: bytes, public_key: Commitment, signature: Tuple[Point, int]) -> bool:
    try:
        message_bytes = _ensure_bytes(message)
    except TypeError:
        return False

    try:
        r_point, s_value = signature
    except (TypeError, ValueError):
        return False

    if not isinstance(r_point, (Point, PointJacobi)) or is_identity(r_point):
        return False
    if is_identity(public_key) or not is_valid_scalar(s_value):
        return False

    challenge = hash_to_int(point_to_bytes(r_point), message_bytes)
    left = scalar_mult(s_value, G)
    right = point_add(r_point, scalar_mult(challenge, public_key))
    return left == right


def encode_schnorr_signature(signature: Tuple[Point, int]) -> Dict[str, str]:
    r_point, s_value = signature
    return {
        "R": base64.b64encode(point_to_bytes(r_point)).decode("ascii"),
        "s": base64.b64encode(int_to_bytes(s_value)).decode("ascii"),
    }


def decode_schnorr_signature(payload: Dict[str, str]) -> Tuple[Point, int]:
    if not isinstance(payload, dict):
        raise TypeError("signature payload must be a mapping")
    try:
        r_encoded = payload["R"]
        s_encoded = payload["s"]
    except KeyError as exc:
        raise ValueError("signature payload missing fields") from exc

    r_point = bytes_to_point(base64.b64decode(str(r_encoded).encode("ascii")))
    s_value = bytes_to_int(base64.b64decode(str(s_encoded).encode("ascii")))
    return r_point, s_value


__all__ = [
    "CURVE_ORDER",
    "Commitment",
    "G",
    "H",
    "bytes_to_point",
    "commitment_add",
    "commitment_sub",
    "commitments_equal",
    "decode_point",
    "decode_schnorr_signature",
    "encode_point",
    "encode_schnorr_signature",
    "generate_keypair",
    "hash_bytes",
    "hash_to_int",
    "is_identity",
    "pedersen_commit",
    "point_to_bytes",
    "random_scalar",
    "schnorr_sign",
    "schnorr_verify",
]
