"""Confidential share ledger.

Holder balances are Pedersen commitments split into a *pending* bucket that
receives credits and an *available* bucket that can be spent.  Credits only
ever touch the pending bucket; the owner folds it into the available bucket
with :meth:`ConfidentialShares.apply_pending`.  Debits require a
:class:`WithdrawProof` showing that the available commitment covers the amount
and that the remainder stays non-negative.

The owner also keeps a *decryptable* copy of the available balance: a
``SecretBox`` ciphertext only the owner can open.  The ledger stores it
verbatim and only checks its length.
"""

from __future__ import annotations

import copy
import threading
from dataclasses import dataclass
from typing import Any, Dict, Protocol, Tuple

from nacl.secret import SecretBox

from .crypto_utils import (
    CURVE_ORDER,
    Commitment,
    H,
    Point,
    commitment_add,
    commitment_sub,
    decode_point,
    decode_schnorr_signature,
    encode_point,
    encode_schnorr_signature,
    hash_bytes,
    is_identity,
    pedersen_commit,
    point_to_bytes,
    scalar_mult,
    schnorr_verify,
)
from .errors import (
    AccountNotConfigured,
    InsufficientShares,
    InvalidCiphertext,
    InvalidProof,
    PendingBalanceNotApplied,
)
from .rangeproof import RangeProof, verify_range
from .utils.logger import get_logger
from .utils.serialization import canonical_hash

logger = get_logger(__name__)

RANGE_PROOF_BITS = 64
# Plaintext is the u64 amount followed by the 32-byte blinding factor.
DECRYPTABLE_PLAINTEXT_LEN = 8 + 32
DECRYPTABLE_BALANCE_LEN = SecretBox.NONCE_SIZE + SecretBox.MACBYTES + DECRYPTABLE_PLAINTEXT_LEN
MAXIMUM_PENDING_CREDITS = 65536


def _commitment_bytes(commitment: Commitment) -> bytes:
    return b"" if is_identity(commitment) else point_to_bytes(commitment)


def _proof_digest(proof: Any) -> bytes | None:
    try:
        return canonical_hash(proof.to_dict())
    except (AttributeError, TypeError, ValueError):
        return None


def pubkey_validity_message(owner: str, pubkey: Point) -> bytes:
    return hash_bytes(b"sharevault-pubkey-validity", owner.encode("utf-8"), point_to_bytes(pubkey))


def withdraw_message(owner: str, shares: int, available: Commitment, new_available: Commitment) -> bytes:
    return hash_bytes(
        b"sharevault-withdraw",
        owner.encode("utf-8"),
        shares.to_bytes(8, "little"),
        _commitment_bytes(available),
        _commitment_bytes(new_available),
    )


def require_decryptable(blob: bytes) -> bytes:
    if not isinstance(blob, (bytes, bytearray)) or len(blob) != DECRYPTABLE_BALANCE_LEN:
        raise InvalidCiphertext(f"Decryptable balance must be {DECRYPTABLE_BALANCE_LEN} bytes")
    return bytes(blob)


@dataclass
class WithdrawClaim:
    """Public statement a withdrawal proof is checked against."""

    owner: str
    shares: int
    available_commitment: Commitment


@dataclass
class WithdrawProof:
    """Everything an owner submits to spend from the available bucket.

    ``equality_proof`` is a Schnorr signature under the key
    ``available - shares*H - new_available_commitment``, which only exists
    when both commitments hide amounts that differ by exactly ``shares``.
    ``range_proof`` bounds the new amount to 64 bits.
    """

    new_available_commitment: Point
    equality_proof: Tuple[Point, int]
    range_proof: RangeProof
    new_decryptable_available_balance: bytes

    def to_dict(self) -> Dict[str, object]:
        return {
            "new_available_commitment": encode_point(self.new_available_commitment),
            "equality_proof": encode_schnorr_signature(self.equality_proof),
            "range_proof": self.range_proof.to_dict(),
            "new_decryptable_available_balance": self.new_decryptable_available_balance.hex(),
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "WithdrawProof":
        try:
            commitment = decode_point(payload["new_available_commitment"])
            signature = decode_schnorr_signature(payload["equality_proof"])
            range_proof = RangeProof.from_dict(payload["range_proof"])
            blob = bytes.fromhex(payload["new_decryptable_available_balance"])
        except (KeyError, TypeError) as exc:
            raise InvalidProof("Malformed proof payload") from exc
        except ValueError as exc:
            raise InvalidProof(str(exc)) from exc
        if commitment is None:
            raise InvalidProof("New available commitment cannot be the identity")
        return cls(
            new_available_commitment=commitment,
            equality_proof=signature,
            range_proof=range_proof,
            new_decryptable_available_balance=blob,
        )


class ProofVerifier(Protocol):
    def verify(self, proof: WithdrawProof, claim: WithdrawClaim) -> bool: ...

    def verify_pubkey(self, owner: str, pubkey: Point, proof: Tuple[Point, int]) -> bool: ...


class CommitmentProofVerifier:
    """Checks equality and range proofs over Pedersen commitments."""

    def __init__(self, bits: int = RANGE_PROOF_BITS) -> None:
        self.bits = bits

    def verify(self, proof: WithdrawProof, claim: WithdrawClaim) -> bool:
        if is_identity(proof.new_available_commitment):
            return False
        try:
            spent = scalar_mult(claim.shares % CURVE_ORDER, H) if claim.shares else None
            difference = commitment_sub(
                commitment_sub(claim.available_commitment, spent),
                proof.new_available_commitment,
            )
            message = withdraw_message(
                claim.owner, claim.shares, claim.available_commitment, proof.new_available_commitment
            )
            if not schnorr_verify(message, difference, proof.equality_proof):
                return False
            return verify_range(proof.new_available_commitment, proof.range_proof, self.bits)
        except (AttributeError, TypeError, ValueError):
            logger.debug("Malformed withdraw proof from %s", claim.owner, exc_info=True)
            return False

    def verify_pubkey(self, owner: str, pubkey: Point, proof: Tuple[Point, int]) -> bool:
        if is_identity(pubkey):
            return False
        try:
            return schnorr_verify(pubkey_validity_message(owner, pubkey), pubkey, proof)
        except (AttributeError, TypeError, ValueError):
            return False


@dataclass
class ConfidentialAccount:
    owner: str
    elgamal_pubkey: Point
    decryptable_available_balance: bytes
    available_commitment: Commitment = None
    pending_commitment: Commitment = None
    pending_balance_credit_counter: int = 0
    maximum_pending_balance_credit_counter: int = MAXIMUM_PENDING_CREDITS

    def to_dict(self) -> Dict[str, object]:
        return {
            "owner": self.owner,
            "elgamal_pubkey": encode_point(self.elgamal_pubkey),
            "decryptable_available_balance": self.decryptable_available_balance.hex(),
            "available_commitment": encode_point(self.available_commitment),
            "pending_commitment": encode_point(self.pending_commitment),
            "pending_balance_credit_counter": self.pending_balance_credit_counter,
            "maximum_pending_balance_credit_counter": self.maximum_pending_balance_credit_counter,
        }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any]) -> "ConfidentialAccount":
        return cls(
            owner=str(payload["owner"]),
            elgamal_pubkey=decode_point(payload["elgamal_pubkey"]),
            decryptable_available_balance=bytes.fromhex(payload["decryptable_available_balance"]),
            available_commitment=decode_point(payload.get("available_commitment")),
            pending_commitment=decode_point(payload.get("pending_commitment")),
            pending_balance_credit_counter=int(payload.get("pending_balance_credit_counter", 0)),
            maximum_pending_balance_credit_counter=int(
                payload.get("maximum_pending_balance_credit_counter", MAXIMUM_PENDING_CREDITS)
            ),
        )


class ConfidentialShares:
    """Share ledger whose per-holder balances are commitments.

    The total supply stays public so that conversions keep working; only
    individual balances are hidden.
    """

    confidential = True

    def __init__(self, identity: str, verifier: ProofVerifier | None = None) -> None:
        self.identity = identity
        self.verifier = verifier or CommitmentProofVerifier()
        self.accounts: Dict[str, ConfidentialAccount] = {}
        self.supply = 0
        self._lock = threading.RLock()
        self._verified: Dict[str, Tuple[int, bytes, bytes]] = {}
        self._undo: Dict[str, ConfidentialAccount] = {}

    # Account management -------------------------------------------------

    def account(self, owner: str) -> ConfidentialAccount:
        try:
            return self.accounts[owner]
        except KeyError:
            raise AccountNotConfigured(f"No confidential share account for {owner}") from None

    def configure_account(
        self,
        owner: str,
        elgamal_pubkey: Point,
        decryptable_zero_balance: bytes,
        validity_proof: Tuple[Point, int],
    ) -> ConfidentialAccount:
        if not owner:
            raise ValueError("Owner cannot be empty")
        blob = require_decryptable(decryptable_zero_balance)
        if not self.verifier.verify_pubkey(owner, elgamal_pubkey, validity_proof):
            raise InvalidProof("Public key validity proof rejected")
        with self._lock:
            if owner in self.accounts:
                raise ValueError(f"Account for {owner} already configured")
            account = ConfidentialAccount(
                owner=owner,
                elgamal_pubkey=elgamal_pubkey,
                decryptable_available_balance=blob,
            )
            self.accounts[owner] = account
        logger.info("Configured confidential share account for %s", owner)
        return account

    def apply_pending(
        self,
        owner: str,
        new_decryptable_available_balance: bytes,
        expected_pending_balance_credit_counter: int,
    ) -> ConfidentialAccount:
        blob = require_decryptable(new_decryptable_available_balance)
        with self._lock:
            account = self.account(owner)
            if account.pending_balance_credit_counter != expected_pending_balance_credit_counter:
                raise PendingBalanceNotApplied(
                    f"Expected {expected_pending_balance_credit_counter} pending credits, "
                    f"found {account.pending_balance_credit_counter}"
                )
            account.available_commitment = commitment_add(
                account.available_commitment, account.pending_commitment
            )
            account.pending_commitment = None
            account.pending_balance_credit_counter = 0
            account.decryptable_available_balance = blob
            self._verified.pop(owner, None)
        return account

    # Credits and debits -------------------------------------------------

    def mint_to_pending(self, owner: str, shares: int) -> bool:
        with self._lock:
            account = self.account(owner)
            if account.pending_balance_credit_counter >= account.maximum_pending_balance_credit_counter:
                logger.warning("Pending credit limit reached for %s", owner)
                return False
            account.pending_commitment = commitment_add(
                account.pending_commitment, pedersen_commit(shares, 0)
            )
            account.pending_balance_credit_counter += 1
            self.supply += shares
            return True

    def _verify(self, owner: str, shares: int, proof: WithdrawProof | None) -> ConfidentialAccount:
        account = self.account(owner)
        if proof is None:
            raise InvalidProof("A withdraw proof is required for confidential shares")
        claim = WithdrawClaim(owner=owner, shares=shares, available_commitment=account.available_commitment)
        if not self.verifier.verify(proof, claim):
            raise InvalidProof()
        require_decryptable(proof.new_decryptable_available_balance)
        digest = _proof_digest(proof)
        if digest is not None:
            self._verified[owner] = (shares, digest, _commitment_bytes(account.available_commitment))
        return account

    def burn_with_proof(self, owner: str, shares: int, proof: WithdrawProof | None) -> bool:
        with self._lock:
            account = self.account(owner)
            if shares > self.supply:
                raise InsufficientShares()
            recorded = self._verified.pop(owner, None)
            current = (shares, _proof_digest(proof), _commitment_bytes(account.available_commitment))
            if recorded != current:
                self._verify(owner, shares, proof)
                self._verified.pop(owner, None)
            self._undo[owner] = copy.copy(account)
            account.available_commitment = proof.new_available_commitment
            account.decryptable_available_balance = proof.new_decryptable_available_balance
            self.supply -= shares
            return True

    # Share-ledger capability --------------------------------------------

    def total_supply(self) -> int:
        return self.supply

    def balance_of(self, owner: str) -> None:
        return None

    def check_credit(self, owner: str) -> None:
        self.account(owner)

    def check_debit(self, owner: str, shares: int, proof: Any = None) -> None:
        with self._lock:
            if shares > self.supply:
                raise InsufficientShares()
            self._verify(owner, shares, proof)

    def credit(self, owner: str, shares: int) -> bool:
        return self.mint_to_pending(owner, shares)

    def debit(self, owner: str, shares: int, proof: Any = None) -> bool:
        return self.burn_with_proof(owner, shares, proof)

    def revert_debit(self, owner: str, shares: int) -> bool:
        with self._lock:
            snapshot = self._undo.pop(owner, None)
            if snapshot is None:
                return False
            self.accounts[owner] = snapshot
            self.supply += shares
            return True

    def settle(self, owner: str) -> None:
        with self._lock:
            self._verified.pop(owner, None)
            self._undo.pop(owner, None)

    def to_dict(self) -> Dict[str, object]:
        with self._lock:
            return {
                "identity": self.identity,
                "supply": self.supply,
                "accounts": [account.to_dict() for account in self.accounts.values()],
            }

    @classmethod
    def from_dict(cls, payload: Dict[str, Any], verifier: ProofVerifier | None = None) -> "ConfidentialShares":
        shares = cls(str(payload["identity"]), verifier)
        shares.supply = int(payload.get("supply", 0))
        for item in payload.get("accounts", []):
            account = ConfidentialAccount.from_dict(item)
            shares.accounts[account.owner] = account
        return shares


__all__ = [
    "CommitmentProofVerifier",
    "ConfidentialAccount",
    "ConfidentialShares",
    "DECRYPTABLE_BALANCE_LEN",
    "WithdrawProof",
    "ProofVerifier",
    "RANGE_PROOF_BITS",
    "WithdrawClaim",
    "pubkey_validity_message",
    "withdraw_message",
]
