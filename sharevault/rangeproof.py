"""Bitwise range proofs over Pedersen commitments.

Each bit of the committed value gets its own commitment together with a
1-out-of-2 Chaum-Pedersen proof that it opens to 0 or 1.  The weighted sum of
the bit commitments must reproduce the commitment being proven, which bounds
the value to ``[0, 2**bits)``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Tuple

from .crypto_utils import (
    CURVE_ORDER,
    G,
    H,
    Commitment,
    Point,
    commitment_add,
    commitments_equal,
    decode_point,
    encode_point,
    hash_to_int,
    pedersen_commit,
    point_add,
    point_neg,
    point_to_bytes,
    random_scalar,
    scalar_mult,
)

BitProof = Tuple[int, int, int, int]
_DOMAIN = b"sharevault-bit-proof"


@dataclass
class RangeProof:
    bit_commitments: List[Point]
    proofs: List[BitProof]

    @property
    def bits(self) -> int:
        return len(self.bit_commitments)

    def to_dict(self) -> Dict[str, object]:
        return {
            "bit_commitments": [encode_point(point) for point in self.bit_commitments],
            "proofs": [[str(value) for value in proof] for proof in self.proofs],
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, object]) -> "RangeProof":
        try:
            commitments = [decode_point(item) for item in payload["bit_commitments"]]
            proofs = [tuple(int(value) for value in proof) for proof in payload["proofs"]]
        except (KeyError, TypeError) as exc:
            raise ValueError("Malformed range proof payload") from exc
        if any(point is None for point in commitments):
            raise ValueError("Bit commitments cannot be the identity")
        if any(len(proof) != 4 for proof in proofs):
            raise ValueError("Bit proofs carry exactly four scalars")
        return cls(bit_commitments=commitments, proofs=proofs)


def prove_range(value: int, bits: int = 64) -> Tuple[RangeProof, int]:
    """Prove ``0 <= value < 2**bits``.

    Returns the proof and the aggregate blinding factor; the prover must use
    that blinding for the commitment ``pedersen_commit(value, blinding)`` the
    proof is later checked against.
    """

    if not 0 <= value < (1 << bits):
        raise ValueError("Value must be non-negative and within the bit range")

    while True:
        bit_blindings = [random_scalar() for _ in range(bits)]
        total_blinding = sum((1 << i) * bit_blindings[i] for i in range(bits)) % CURVE_ORDER
        if total_blinding:
            break

    value_bits = [(value >> i) & 1 for i in range(bits)]
    commitments = [pedersen_commit(bit, blinding) for bit, blinding in zip(value_bits, bit_blindings)]
    proofs = [
        _prove_bit(commitment, bit, blinding)
        for commitment, bit, blinding in zip(commitments, value_bits, bit_blindings)
    ]
    return RangeProof(bit_commitments=commitments, proofs=proofs), total_blinding


def verify_range(commitment: Commitment, proof: RangeProof, bits: int = 64) -> bool:
    if proof.bits != bits or len(proof.proofs) != bits:
        return False

    reconstructed: Commitment = None
    for i, bit_commitment in enumerate(proof.bit_commitments):
        reconstructed = commitment_add(reconstructed, scalar_mult(1 << i, bit_commitment))
    if not commitments_equal(commitment, reconstructed):
        return False

    return all(_verify_bit(point, bit_proof) for point, bit_proof in zip(proof.bit_commitments, proof.proofs))


def _challenge(p0: Point, p1: Point, l0: Point, l1: Point) -> int:
    return hash_to_int(_DOMAIN, point_to_bytes(p0), point_to_bytes(p1), point_to_bytes(l0), point_to_bytes(l1))


def _prove_bit(commitment: Point, bit: int, blinding: int) -> BitProof:
    p0 = commitment
    p1 = point_add(commitment, point_neg(H))

    if bit == 0:
        k0 = random_scalar()
        l0 = scalar_mult(k0, G)
        s1 = random_scalar()
        c1 = random_scalar()
        l1 = point_add(scalar_mult(s1, G), point_neg(scalar_mult(c1, p1)))
        c0 = (_challenge(p0, p1, l0, l1) - c1) % CURVE_ORDER
        s0 = (k0 + c0 * blinding) % CURVE_ORDER
    elif bit == 1:
        k1 = random_scalar()
        l1 = scalar_mult(k1, G)
        s0 = random_scalar()
        c0 = random_scalar()
        l0 = point_add(scalar_mult(s0, G), point_neg(scalar_mult(c0, p0)))
        c1 = (_challenge(p0, p1, l0, l1) - c0) % CURVE_ORDER
        s1 = (k1 + c1 * blinding) % CURVE_ORDER
    else:
        raise ValueError("Bit must be 0 or 1")

    return c0, s0, c1, s1


def _verify_bit(commitment: Point, proof: BitProof) -> bool:
    c0, s0, c1, s1 = proof
    if not all(0 <= value < CURVE_ORDER for value in proof):
        return False
    p0 = commitment
    p1 = point_add(commitment, point_neg(H))
    try:
        l0 = point_add(scalar_mult(s0, G), point_neg(scalar_mult(c0, p0)))
        l1 = point_add(scalar_mult(s1, G), point_neg(scalar_mult(c1, p1)))
        expected = _challenge(p0, p1, l0, l1)
    except (AttributeError, TypeError, ValueError):
        # Degenerate inputs collapse to the point at infinity.
        return False
    return expected == (c0 + c1) % CURVE_ORDER


__all__ = ["RangeProof", "prove_range", "verify_range"]
