"""Client-side keys and proof construction for confidential share accounts."""

from __future__ import annotations

import base64
import binascii
import json
import os
from dataclasses import dataclass
from typing import Dict, Tuple

from ecdsa.ellipticcurve import Point
from nacl import pwhash, secret, utils
from nacl.exceptions import CryptoError

from . import crypto_utils
from .confidential import (
    DECRYPTABLE_PLAINTEXT_LEN,
    RANGE_PROOF_BITS,
    ConfidentialAccount,
    WithdrawProof,
    pubkey_validity_message,
    withdraw_message,
)
from .errors import InsufficientShares, InvalidCiphertext
from .rangeproof import prove_range


def _derive_key(password: str, salt: bytes) -> bytes:
    return pwhash.argon2i.kdf(
        secret.SecretBox.KEY_SIZE,
        password.encode("utf-8"),
        salt,
        opslimit=pwhash.argon2i.OPSLIMIT_INTERACTIVE,
        memlimit=pwhash.argon2i.MEMLIMIT_INTERACTIVE,
    )


@dataclass
class ShareWallet:
    """Keys of one confidential share holder.

    The wallet never caches balances: the available amount and its blinding
    factor are recovered from the decryptable balance stored on the ledger,
    and credits waiting in the pending bucket are tracked with
    :meth:`record_credit`.
    """

    owner: str
    elgamal_private_key: int
    balance_key: bytes
    pending_amount: int = 0
    pending_credits: int = 0

    @classmethod
    def generate(cls, owner: str) -> "ShareWallet":
        private_key, _ = crypto_utils.generate_keypair()
        return cls(owner, private_key, utils.random(secret.SecretBox.KEY_SIZE))

    @property
    def elgamal_public_key(self) -> Point:
        return crypto_utils.scalar_mult(self.elgamal_private_key)

    # Decryptable balance ------------------------------------------------

    def encrypt_balance(self, amount: int, blinding: int) -> bytes:
        plaintext = amount.to_bytes(8, "little") + crypto_utils.int_to_bytes(blinding % crypto_utils.CURVE_ORDER)
        nonce = utils.random(secret.SecretBox.NONCE_SIZE)
        return bytes(secret.SecretBox(self.balance_key).encrypt(plaintext, nonce))

    def decrypt_balance(self, blob: bytes) -> Tuple[int, int]:
        """Return ``(amount, blinding)`` hidden in a decryptable balance."""

        try:
            plaintext = secret.SecretBox(self.balance_key).decrypt(bytes(blob))
        except CryptoError as exc:
            raise InvalidCiphertext("Decryptable balance does not open with this wallet") from exc
        if len(plaintext) != DECRYPTABLE_PLAINTEXT_LEN:
            raise InvalidCiphertext()
        return int.from_bytes(plaintext[:8], "little"), crypto_utils.bytes_to_int(plaintext[8:])

    def available_balance(self, account: ConfidentialAccount) -> int:
        amount, blinding = self._opening(account)
        return amount

    def _opening(self, account: ConfidentialAccount) -> Tuple[int, int]:
        amount, blinding = self.decrypt_balance(account.decryptable_available_balance)
        expected = crypto_utils.pedersen_commit(amount, blinding)
        if not crypto_utils.commitments_equal(expected, account.available_commitment):
            raise InvalidCiphertext("Decryptable balance does not match the available commitment")
        return amount, blinding

    # Ledger instructions --------------------------------------------------

    def configure_args(self) -> Dict[str, object]:
        """Arguments for ``ConfidentialShares.configure_account``."""

        pubkey = self.elgamal_public_key
        proof = crypto_utils.schnorr_sign(
            pubkey_validity_message(self.owner, pubkey), self.elgamal_private_key
        )
        return {
            "owner": self.owner,
            "elgamal_pubkey": pubkey,
            "decryptable_zero_balance": self.encrypt_balance(0, 0),
            "validity_proof": proof,
        }

    def record_credit(self, shares: int) -> None:
        self.pending_amount += shares
        self.pending_credits += 1

    def apply_pending_args(self, account: ConfidentialAccount) -> Dict[str, object]:
        """Arguments for ``ConfidentialShares.apply_pending``.

        Pending credits carry a zero blinding factor, so folding them in keeps
        the current blinding and only raises the amount.
        """

        amount, blinding = self._opening(account)
        return {
            "owner": self.owner,
            "new_decryptable_available_balance": self.encrypt_balance(amount + self.pending_amount, blinding),
            "expected_pending_balance_credit_counter": self.pending_credits,
        }

    def confirm_applied(self) -> None:
        self.pending_amount = 0
        self.pending_credits = 0

    def prove_debit(
        self, account: ConfidentialAccount, shares: int, bits: int = RANGE_PROOF_BITS
    ) -> WithdrawProof:
        """Build the proof that spends *shares* from the available bucket."""

        amount, blinding = self._opening(account)
        if shares > amount:
            raise InsufficientShares(f"Available balance {amount} is below {shares}")
        remaining = amount - shares

        while True:
            range_proof, new_blinding = prove_range(remaining, bits)
            spend_key = (blinding - new_blinding) % crypto_utils.CURVE_ORDER
            if spend_key:
                break

        new_commitment = crypto_utils.pedersen_commit(remaining, new_blinding)
        message = withdraw_message(self.owner, shares, account.available_commitment, new_commitment)
        return WithdrawProof(
            new_available_commitment=new_commitment,
            equality_proof=crypto_utils.schnorr_sign(message, spend_key),
            range_proof=range_proof,
            new_decryptable_available_balance=self.encrypt_balance(remaining, new_blinding),
        )

    # Persistence -----------------------------------------------------------

    def save_to_file(self, filename: str, password: str) -> None:
        """Encrypt and save wallet keys to *filename* using *password*."""

        salt = utils.random(pwhash.argon2i.SALTBYTES)
        box = secret.SecretBox(_derive_key(password, salt))
        payload = json.dumps(
            {
                "owner": self.owner,
                "elgamal": self.elgamal_private_key,
                "balance_key": self.balance_key.hex(),
                "pending_amount": self.pending_amount,
                "pending_credits": self.pending_credits,
            }
        ).encode("utf-8")
        encrypted = box.encrypt(payload, utils.random(secret.SecretBox.NONCE_SIZE))

        with open(filename, "w", encoding="utf-8") as f:
            json.dump(
                {
                    "version": 1,
                    "salt": base64.b64encode(salt).decode("ascii"),
                    "data": base64.b64encode(encrypted).decode("ascii"),
                },
                f,
            )

    @classmethod
    def load_from_file(cls, filename: str, password: str) -> "ShareWallet":
        if not os.path.exists(filename):
            raise ValueError("Wallet file not found")

        with open(filename, "r", encoding="utf-8") as f:
            blob = json.load(f)

        try:
            salt = base64.b64decode(blob["salt"])
            encrypted_data = base64.b64decode(blob["data"])
        except (KeyError, ValueError, binascii.Error) as exc:
            raise ValueError("Malformed wallet file") from exc

        box = secret.SecretBox(_derive_key(password, salt))
        try:
            data = json.loads(box.decrypt(encrypted_data))
            return cls(
                owner=data["owner"],
                elgamal_private_key=int(data["elgamal"]),
                balance_key=bytes.fromhex(data["balance_key"]),
                pending_amount=int(data.get("pending_amount", 0)),
                pending_credits=int(data.get("pending_credits", 0)),
            )
        except (CryptoError, KeyError, ValueError) as exc:
            raise ValueError("Invalid password or corrupt wallet file") from exc


__all__ = ["ShareWallet"]
