import unittest
from unittest import mock

from sharevault import crypto_utils
from sharevault.confidential import CommitmentProofVerifier
from sharevault.errors import InvalidProof, TransferFailed
from sharevault.events import EventLog
from sharevault.vault import VaultRegistry
from sharevault.wallet import ShareWallet

# Wide enough for the 10^9 shares minted per whole USDC deposited.
PROOF_BITS = 32


class TestConfidentialFlow(unittest.TestCase):
    def setUp(self):
        self.events = EventLog()
        self.registry = VaultRegistry(events=self.events, verifier=CommitmentProofVerifier(bits=PROOF_BITS))
        self.vault = self.registry.create_vault(
            authority="authority",
            asset_identity="USDC",
            asset_decimals=6,
            vault_id=1,
            confidential=True,
            auditor_pubkey="auditor",
        )
        self.alice = ShareWallet.generate("alice")
        self.vault.shares.configure_account(**self.alice.configure_args())
        self.vault.asset_token.mint("alice", 2_000_000)

    def _deposit_and_apply(self, assets):
        result = self.vault.deposit("alice", assets)
        self.alice.record_credit(result.shares)
        account = self.vault.shares.account("alice")
        self.vault.shares.apply_pending(**self.alice.apply_pending_args(account))
        self.alice.confirm_applied()
        return result

    def test_deposit_apply_redeem(self):
        deposit = self._deposit_and_apply(1_000_000)
        self.assertEqual(deposit.shares, 1_000_000_000)
        account = self.vault.shares.account("alice")
        self.assertEqual(self.alice.available_balance(account), 1_000_000_000)

        proof = self.alice.prove_debit(account, 400_000_000, bits=PROOF_BITS)
        redeem = self.vault.redeem("alice", 400_000_000, proof=proof)
        self.assertEqual(redeem.assets, 400_000)

        account = self.vault.shares.account("alice")
        self.assertEqual(self.alice.available_balance(account), 600_000_000)
        self.assertEqual(self.vault.total_shares(), 600_000_000)
        self.assertEqual(self.vault.total_assets(), 600_000)
        self.assertEqual(self.vault.asset_token.balance_of("alice"), 1_400_000)
        self.assertEqual([e.kind for e in self.events.for_vault(self.vault.key)][-1], "Withdraw")

    def test_proof_cannot_be_replayed(self):
        self._deposit_and_apply(1_000_000)
        account = self.vault.shares.account("alice")
        proof = self.alice.prove_debit(account, 100_000_000, bits=PROOF_BITS)
        self.vault.redeem("alice", 100_000_000, proof=proof)

        # The available commitment moved on, so the old proof no longer matches.
        with self.assertRaises(InvalidProof):
            self.vault.redeem("alice", 100_000_000, proof=proof)
        self.assertEqual(self.vault.total_shares(), 900_000_000)

    def test_failed_payout_restores_shares(self):
        self._deposit_and_apply(1_000_000)
        before = self.vault.shares.account("alice").available_commitment
        proof = self.alice.prove_debit(self.vault.shares.account("alice"), 250_000_000, bits=PROOF_BITS)

        with mock.patch.object(self.vault.asset_token, "transfer", return_value=False):
            with self.assertRaises(TransferFailed):
                self.vault.redeem("alice", 250_000_000, proof=proof)

        account = self.vault.shares.account("alice")
        self.assertTrue(crypto_utils.commitments_equal(account.available_commitment, before))
        self.assertEqual(self.alice.available_balance(account), 1_000_000_000)
        self.assertEqual(self.vault.total_shares(), 1_000_000_000)
        self.assertEqual(self.vault.total_assets(), 1_000_000)

    def test_pending_limit_returns_assets(self):
        self.vault.shares.account("alice").maximum_pending_balance_credit_counter = 1
        self.vault.deposit("alice", 1000)

        with self.assertRaises(TransferFailed):
            self.vault.deposit("alice", 5000)
        self.assertEqual(self.vault.asset_token.balance_of("alice"), 2_000_000 - 1000)
        self.assertEqual(self.vault.total_assets(), 1000)
        self.assertEqual(self.vault.total_shares(), 1_000_000)

    def test_state_survives_save_and_load(self):
        self._deposit_and_apply(1_000_000)
        data = self.registry.to_dict()
        restored = VaultRegistry.from_dict(data, verifier=CommitmentProofVerifier(bits=PROOF_BITS))
        vault = restored.get_vault(self.vault.key)

        account = vault.shares.account("alice")
        self.assertEqual(self.alice.available_balance(account), 1_000_000_000)
        proof = self.alice.prove_debit(account, 1_000_000_000, bits=PROOF_BITS)
        self.assertEqual(vault.redeem("alice", 1_000_000_000, proof=proof).assets, 1_000_000)
        self.assertEqual(vault.total_shares(), 0)


if __name__ == "__main__":
    unittest.main()
