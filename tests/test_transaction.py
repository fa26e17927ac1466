import unittest

from leafxfer.errors import TimelockExhausted, TimelockRefreshRequired
from leafxfer.models import Leaf
from leafxfer.transaction import (
    INITIAL_TIME_LOCK,
    TIME_LOCK_INTERVAL,
    OutPoint,
    initial_sequence,
    needs_refresh,
    next_refund_sequence,
    next_sequence,
    signing_context,
)

from tests.fakes import FakeCodec, sequence_for


class SequenceTests(unittest.TestCase):
    def test_initial_sequence(self):
        self.assertEqual(initial_sequence(), (1 << 30) | INITIAL_TIME_LOCK)

    def test_decrement(self):
        step = next_sequence(initial_sequence())
        self.assertEqual(step.next_sequence & 0xFFFF, INITIAL_TIME_LOCK - TIME_LOCK_INTERVAL)
        self.assertEqual(step.next_sequence >> 30, 1)
        self.assertFalse(step.need_refresh)

    def test_last_interval_is_flagged(self):
        step = next_sequence(sequence_for(200))
        self.assertEqual(step.next_sequence & 0xFFFF, 100)
        self.assertTrue(step.need_refresh)

    def test_exhausted(self):
        with self.assertRaises(TimelockExhausted):
            next_sequence(sequence_for(100))
        with self.assertRaises(TimelockExhausted):
            next_sequence(None)

    def test_refresh_may_step_into_last_interval(self):
        step = next_sequence(sequence_for(100), for_refresh=True)
        self.assertEqual(step.next_sequence & 0xFFFF, 0)
        self.assertTrue(step.need_refresh)
        self.assertFalse(next_sequence(initial_sequence(), for_refresh=True).need_refresh)

    def test_needs_refresh(self):
        self.assertTrue(needs_refresh(sequence_for(100)))
        self.assertTrue(needs_refresh(sequence_for(50)))
        self.assertFalse(needs_refresh(sequence_for(101)))
        self.assertFalse(needs_refresh(initial_sequence()))


class LeafContextTests(unittest.TestCase):
    def setUp(self):
        self.codec = FakeCodec()
        self.node_tx = self.codec.create_node_tx(
            OutPoint("00" * 32, 0), initial_sequence(),
            self.codec.make_output(5000, b"\x02" * 33),
        )

    def leaf(self, refund_timelock):
        refund_tx = self.codec.create_refund_tx(
            sequence_for(refund_timelock),
            OutPoint(self.codec.txid(self.node_tx), 0),
            5000,
            b"\x03" * 33,
            "REGTEST",
        )
        return Leaf(
            id="leaf",
            value=5000,
            node_tx=self.node_tx,
            refund_tx=refund_tx,
            verifying_public_key=b"\x02" * 33,
            owner_identity_public_key=b"\x03" * 33,
        )

    def test_signing_context(self):
        ctx = signing_context(self.leaf(1500), self.codec)
        self.assertEqual(ctx.node_outpoint, OutPoint(self.codec.txid(self.node_tx), 0))
        self.assertEqual(ctx.amount_sats, 5000)
        self.assertEqual(ctx.refund_sequence, sequence_for(1500))
        self.assertEqual(ctx.node_output, self.codec.output(self.node_tx, 0))

    def test_next_refund_sequence(self):
        self.assertEqual(next_refund_sequence(self.leaf(1500), self.codec), sequence_for(1400))

    def test_exhausted_refund_needs_refresh(self):
        with self.assertRaises(TimelockRefreshRequired) as ctx:
            next_refund_sequence(self.leaf(100), self.codec)
        self.assertEqual(ctx.exception.leaf_id, "leaf")


if __name__ == "__main__":
    unittest.main()
