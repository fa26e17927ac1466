import asyncio
import unittest
from unittest.mock import AsyncMock, patch

from leafxfer.errors import LeafSelectionError, LeafTransferError

from tests.fakes import FakeNetwork, FakeServiceProvider, sequence_for


class WholeLeafProvider(FakeServiceProvider):
    """Swaps leaves back as one leaf of the same total."""

    async def request_leaves_swap(self, user_leaves, adaptor_public_key,
                                  target_amount_sats, total_amount_sats,
                                  fee_sats, idempotency_key):
        return await super().request_leaves_swap(
            user_leaves, adaptor_public_key, total_amount_sats,
            total_amount_sats, fee_sats, idempotency_key,
        )


class WalletTestCase(unittest.IsolatedAsyncioTestCase):
    async def asyncSetUp(self):
        self.network = FakeNetwork()
        self.codec = self.network.codec
        self.ssp = FakeServiceProvider(self.network)
        self.wallet = self.network.wallet(ssp=self.ssp)
        self.receiver = self.network.wallet()

    def mint(self, value, **kwargs):
        return self.network.mint_leaf(self.wallet.signer, value, **kwargs)


class SyncTests(WalletTestCase):
    async def test_sync_loads_leaves(self):
        self.mint(1000)
        self.mint(2000)
        self.network.mint_leaf(self.receiver.signer, 5000)

        await self.wallet.sync()
        self.assertEqual(sorted(leaf.value for leaf in self.wallet.leaves), [1000, 2000])
        self.assertEqual(await self.wallet.get_balance(), 3000)

    async def test_sync_refreshes_expiring_refund(self):
        leaf = self.mint(1500, refund_timelock=200)

        await self.wallet.sync()
        refreshed = self.network.leaves[leaf.id]
        self.assertEqual(self.codec.input_sequence(refreshed.refund_tx), sequence_for(2000))
        self.assertEqual(self.codec.input_sequence(refreshed.node_tx), sequence_for(1900))
        self.assertEqual(
            self.codec.input_outpoint(refreshed.refund_tx).txid,
            self.codec.txid(refreshed.node_tx),
        )
        self.assertEqual(self.network.calls_to("refresh_timelock"), [0])
        self.assertEqual([l.id for l in self.wallet.leaves], [leaf.id])

    async def test_sync_extends_expiring_node(self):
        leaf = self.mint(1500, node_timelock=100)
        old_node_tx = leaf.node_tx

        await self.wallet.sync()
        extended = self.network.leaves[leaf.id]
        self.assertEqual(self.codec.input_sequence(extended.node_tx), sequence_for(1900))
        self.assertEqual(self.codec.input_sequence(extended.refund_tx), sequence_for(2000))
        self.assertEqual(
            self.codec.input_outpoint(extended.node_tx).txid, self.codec.txid(old_node_tx),
        )
        self.assertEqual(self.network.calls_to("extend_leaf"), [0])
        self.assertEqual(await self.wallet.get_balance(), 1500)

    async def test_extended_leaf_can_be_refreshed(self):
        leaf = self.mint(1500, node_timelock=100)
        await self.wallet.sync()

        await self.wallet.refresh_timelock_nodes(leaf.id)
        refreshed = self.network.leaves[leaf.id]
        self.assertEqual(self.codec.input_sequence(refreshed.node_tx), sequence_for(1800))

    async def test_healthy_leaves_are_left_alone(self):
        self.mint(1500)
        await self.wallet.sync()
        self.assertEqual(self.network.calls_to("refresh_timelock"), [])
        self.assertEqual(self.network.calls_to("extend_leaf"), [])

    async def test_refresh_unknown_leaf(self):
        await self.wallet.sync()
        with self.assertRaises(KeyError):
            await self.wallet.refresh_timelock_nodes("no-such-leaf")


class TransferTests(WalletTestCase):
    async def test_exact_change(self):
        self.mint(1000)
        self.mint(500)
        self.mint(200)

        await self.wallet.transfer(700, self.receiver.identity_public_key)
        self.assertEqual(await self.wallet.get_balance(), 1000)
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 700)
        self.assertEqual(self.ssp.swap_requests, [])

    async def test_concurrent_transfers_use_distinct_leaves(self):
        self.mint(1000)
        self.mint(2000)

        first, second = await asyncio.gather(
            self.wallet.transfer(1000, self.receiver.identity_public_key),
            self.wallet.transfer(2000, self.receiver.identity_public_key),
        )
        self.assertFalse(set(first.leaf_ids()) & set(second.leaf_ids()))
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 3000)
        self.assertEqual(await self.wallet.get_balance(), 0)

    async def test_missing_change_triggers_one_swap(self):
        self.mint(100_000)

        with patch.object(
            self.wallet, "_request_leaves_swap",
            AsyncMock(wraps=self.wallet._request_leaves_swap),
        ) as swap:
            await self.wallet.transfer(60_000, self.receiver.identity_public_key)
        swap.assert_awaited_once_with(target_amount=60_000)

        self.assertEqual(await self.wallet.get_balance(), 40_000)
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 60_000)

    async def test_no_change_after_swap(self):
        ssp = WholeLeafProvider(self.network)
        wallet = self.network.wallet(ssp=ssp)
        self.network.mint_leaf(wallet.signer, 100_000)

        with self.assertRaises(LeafSelectionError):
            await wallet.transfer(60_000, self.receiver.identity_public_key)
        self.assertEqual(len(ssp.swap_requests), 1)
        self.assertEqual(await wallet.get_balance(), 100_000)

    async def test_exact_change_from_smaller_leaves(self):
        self.mint(50_000)
        self.mint(30_000)
        self.mint(30_000)

        await self.wallet.transfer(60_000, self.receiver.identity_public_key)
        self.assertEqual(self.ssp.swap_requests, [])
        self.assertEqual(await self.wallet.get_balance(), 50_000)
        await self.receiver.claim_transfers()
        self.assertEqual(await self.receiver.get_balance(), 60_000)

    async def test_swap_needs_a_provider(self):
        wallet = self.network.wallet()
        self.network.mint_leaf(wallet.signer, 100_000)
        with self.assertRaises(LeafTransferError):
            await wallet.transfer(60_000, self.receiver.identity_public_key)

    async def test_no_leaves(self):
        with self.assertRaises(LeafSelectionError):
            await self.wallet.transfer(10, self.receiver.identity_public_key)

    async def test_non_positive_amount(self):
        self.mint(10)
        with self.assertRaises(ValueError):
            await self.wallet.transfer(0, self.receiver.identity_public_key)


class ExpiringRefundTests(WalletTestCase):
    async def test_withdraw_refreshes_first(self):
        leaf = self.mint(50_000, refund_timelock=100)

        result = await self.wallet.withdraw("bcrt1qexit", 50_000)
        self.assertEqual(result["status"], "SUCCEEDED")
        self.assertEqual(self.network.calls_to("refresh_timelock"), [0])
        self.assertEqual(await self.wallet.get_balance(), 0)

        record = self.network.transfers[result["transfer_id"]]
        refund = record.refund_txs[leaf.id]
        self.assertEqual(self.codec.input_sequence(refund), sequence_for(1900))

    async def test_withdraw_everything_refreshes_first(self):
        self.mint(30_000, refund_timelock=100)
        self.mint(20_000)

        await self.wallet.withdraw("bcrt1qexit")
        self.assertEqual(self.network.calls_to("refresh_timelock"), [0])
        self.assertEqual(await self.ssp.wallet.get_balance(), 50_000)

    async def test_swap_refreshes_first(self):
        self.mint(50_000, refund_timelock=100)

        await self.wallet.request_leaves_swap(target_amount=20_000)
        self.assertEqual(self.network.calls_to("refresh_timelock"), [0])
        self.assertEqual(self.ssp.swap_requests, [(20_000, 50_000)])
        self.assertEqual(await self.wallet.get_balance(), 50_000)

    async def test_swap_of_explicit_leaf_refreshes_first(self):
        leaf = self.mint(50_000, refund_timelock=100)

        await self.wallet.request_leaves_swap(leaves=[leaf])
        self.assertEqual(self.network.calls_to("refresh_timelock"), [0])
        self.assertEqual(await self.wallet.get_balance(), 50_000)


class WithdrawGuardTests(WalletTestCase):
    async def test_below_minimum(self):
        self.mint(50_000)
        with self.assertRaises(ValueError):
            await self.wallet.withdraw("bcrt1qexample", 5_000)
        self.assertEqual(self.network.calls_to("cooperative_exit"), [])

    async def test_all_leaves_below_minimum(self):
        self.mint(4_000)
        with self.assertRaises(ValueError):
            await self.wallet.withdraw("bcrt1qexample")

    async def test_needs_a_provider(self):
        wallet = self.network.wallet()
        with self.assertRaises(LeafTransferError):
            await wallet.withdraw("bcrt1qexample", 20_000)


if __name__ == "__main__":
    unittest.main()
