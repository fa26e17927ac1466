import unittest
from dataclasses import replace
from datetime import datetime, timedelta, timezone

from leafxfer.errors import (
    ClaimVerificationFailed,
    InconsistentOperatorResponse,
    InvalidStateTransition,
    OperatorCallError,
    OperatorFanOutError,
    PartialKeyTweakError,
    TransferExpired,
)
from leafxfer.keys import WalletSigner
from leafxfer.models import LeafKeyTweak, LeafStatus, Transfer, TransferStatus

from tests.fakes import FakeNetwork, sequence_for


class TransferTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.network = FakeNetwork(num_operators=5, threshold=3)
        self.sender = self.network.wallet()
        self.receiver = self.network.wallet()

    def mint(self, wallet, value, **kwargs):
        return self.network.mint_leaf(wallet.signer, value, **kwargs)

    def statuses(self):
        (record,) = self.network.transfers.values()
        return set(record.statuses.values())


class SendAndClaimTests(TransferTestCase):
    async def test_send_and_claim(self):
        leaf = self.mint(self.sender, 5000)
        verifying_key = leaf.verifying_public_key

        transfer = await self.sender.transfer(5000, self.receiver.identity_public_key)
        self.assertEqual(transfer.status, TransferStatus.SENDER_KEY_TWEAK_PENDING)
        self.assertEqual(transfer.total_value, 5000)
        self.assertEqual(self.statuses(), {TransferStatus.SENDER_KEY_TWEAKED})
        self.assertEqual(await self.sender.get_balance(), 0)

        pending = await self.receiver.get_pending_transfers()
        self.assertEqual([t.id for t in pending], [transfer.id])

        self.assertTrue(await self.receiver.claim_transfers())
        self.assertEqual(await self.receiver.get_balance(), 5000)
        self.assertEqual(self.statuses(), {TransferStatus.COMPLETED})

        claimed = self.network.leaves[leaf.id]
        self.assertEqual(claimed.owner_identity_public_key, self.receiver.identity_public_key)
        self.assertEqual(claimed.verifying_public_key, verifying_key)
        self.assertEqual(self.network.codec.input_sequence(claimed.refund_tx), sequence_for(1800))
        self.assertFalse(await self.receiver.claim_transfers())
        self.assertEqual(self.sender.signer.pending_nonce_count, 0)
        self.assertEqual(self.receiver.signer.pending_nonce_count, 0)

    async def test_claimed_leaf_can_be_sent_on(self):
        self.mint(self.sender, 2500)
        third = self.network.wallet()

        await self.sender.transfer(2500, self.receiver.identity_public_key)
        await self.receiver.claim_transfers()
        await self.receiver.transfer(2500, third.identity_public_key)
        await third.claim_transfers()

        self.assertEqual(await third.get_balance(), 2500)
        self.assertEqual(await self.receiver.get_balance(), 0)

    async def test_offline_operators_below_threshold_do_not_stop_signing(self):
        self.mint(self.sender, 1000)
        self.network.offline.update({1, 3})

        await self.sender.transfer(1000, self.receiver.identity_public_key)
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 1000)

    async def test_signing_needs_a_threshold_of_operators(self):
        self.mint(self.sender, 1000)
        self.network.offline.update({0, 1, 2})

        with self.assertRaises(OperatorFanOutError):
            await self.sender.transfer(1000, self.receiver.identity_public_key)
        self.assertEqual(self.network.transfers, {})
        self.assertEqual(self.sender.signer.pending_nonce_count, 0)

    async def test_rejected_start_drops_nonces(self):
        self.mint(self.sender, 1000)
        self.mint(self.sender, 2000)
        self.network.fail(0, "start_send_transfer")

        with self.assertRaises(OperatorCallError):
            await self.sender.transfer(3000, self.receiver.identity_public_key)
        self.assertEqual(self.sender.signer.pending_nonce_count, 0)


class KeyTweakRollbackTests(TransferTestCase):
    async def test_failed_operator_rolls_back_everywhere(self):
        leaf = self.mint(self.sender, 3000)
        operator_key = self.network.operator_public_key(leaf.id)
        self.network.fail(2, "complete_send_transfer")

        with self.assertRaises(OperatorFanOutError) as ctx:
            await self.sender.transfer(3000, self.receiver.identity_public_key)
        self.assertEqual(list(ctx.exception.errors), [self.network.operators[2].identifier])

        self.assertEqual(self.statuses(), {TransferStatus.CANCELLED})
        self.assertEqual(sorted(self.network.calls_to("cancel_send_transfer")), [0, 1, 2, 3, 4])
        self.assertEqual(self.network.operator_public_key(leaf.id), operator_key)
        self.assertEqual(self.network.leaves[leaf.id].status, LeafStatus.AVAILABLE)

        self.network.failures.clear()
        transfer = await self.sender.transfer(3000, self.receiver.identity_public_key)
        self.assertEqual(transfer.status, TransferStatus.SENDER_KEY_TWEAK_PENDING)
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 3000)

    async def test_disagreeing_echo_after_commit_is_a_partial_tweak(self):
        self.mint(self.sender, 4000)
        self.network.tampered_echoes.add(4)

        with self.assertRaises(PartialKeyTweakError) as ctx:
            await self.sender.transfer(4000, self.receiver.identity_public_key)
        err = ctx.exception
        self.assertEqual(len(err.tweaked), 5)
        self.assertEqual(err.cancelled, [])
        self.assertIsInstance(err.cause, InconsistentOperatorResponse)

        # the committed transfer still reaches the receiver
        self.network.tampered_echoes.clear()
        self.assertTrue(await self.receiver.claim_transfers())
        self.assertEqual(await self.receiver.get_balance(), 4000)

    async def test_expired_transfer_is_not_tweaked(self):
        leaf = self.mint(self.sender, 2000)
        service = self.sender.transfer_service
        signer = self.sender.signer
        tweak = LeafKeyTweak(
            leaf=leaf,
            signing_public_key=signer.leaf_signing_key(leaf.id),
            new_signing_public_key=signer.generate_public_key(),
        )

        with self.assertRaises(TransferExpired):
            await service.send_transfer(
                [tweak],
                self.receiver.identity_public_key,
                expiry_time=datetime.now(timezone.utc) - timedelta(seconds=1),
            )
        self.assertEqual(self.network.calls_to("complete_send_transfer"), [])

        (record,) = self.network.transfers.values()
        self.assertEqual(await service.cancel_all_sender_initiated(), [record.transfer.id])
        self.assertEqual(self.statuses(), {TransferStatus.CANCELLED})
        self.assertEqual(self.network.leaves[leaf.id].status, LeafStatus.AVAILABLE)

    async def test_committed_transfer_is_not_cancelled(self):
        self.mint(self.sender, 700)
        await self.sender.transfer(700, self.receiver.identity_public_key)

        self.assertEqual(await self.sender.cancel_all_sender_initiated(), [])
        self.assertEqual(self.statuses(), {TransferStatus.SENDER_KEY_TWEAKED})


class ClaimTests(TransferTestCase):
    async def test_forged_sender_is_rejected(self):
        self.mint(self.sender, 900)
        await self.sender.transfer(900, self.receiver.identity_public_key)
        (transfer,) = await self.receiver.get_pending_transfers()

        forged = replace(transfer, sender_identity_public_key=WalletSigner().identity_public_key)
        with self.assertRaises(ClaimVerificationFailed) as ctx:
            await self.receiver.claim_transfer(forged)
        self.assertIsInstance(ctx.exception, ValueError)
        self.assertEqual(self.network.calls_to("claim_transfer_tweak_keys"), [])

    async def test_unclaimable_transfer(self):
        transfer = Transfer(
            id="t",
            sender_identity_public_key=self.sender.identity_public_key,
            receiver_identity_public_key=self.receiver.identity_public_key,
            status=TransferStatus.SENDER_INITIATED,
            total_value=1,
            expiry_time=datetime.now(timezone.utc) + timedelta(minutes=5),
        )
        with self.assertRaises(InvalidStateTransition):
            await self.receiver.transfer_service.claim_transfer(transfer, [])


if __name__ == "__main__":
    unittest.main()
