import json
import unittest
from datetime import timedelta

from coincurve import PrivateKey

from leafxfer.config import (
    DEFAULT_SSP_IDENTITY_PUBLIC_KEY,
    DEFAULT_TRANSFER_EXPIRY,
    SSP_IDENTITY_PUBLIC_KEYS,
    Network,
    SigningOperator,
    WalletConfig,
)
from leafxfer.signing import operator_identifier


def operator_entries(count):
    return [
        {
            "id": i,
            "address": f"https://so{i}.example",
            "identity_public_key": PrivateKey().public_key.format().hex(),
        }
        for i in range(count)
    ]


class SigningOperatorTests(unittest.TestCase):
    def test_default_identifier(self):
        op = SigningOperator(id=0, address="a", identity_public_key=b"")
        self.assertEqual(op.identifier, "0" * 63 + "1")
        self.assertEqual(op.identifier, operator_identifier(0))
        self.assertEqual(op.share_index, 1)

    def test_negative_id(self):
        with self.assertRaises(ValueError):
            SigningOperator(id=-1, address="a", identity_public_key=b"")


class WalletConfigTests(unittest.TestCase):
    def test_from_dict(self):
        entries = operator_entries(3)
        config = WalletConfig.from_dict({
            "network": "MAINNET",
            "threshold": 2,
            "signing_operators": entries,
            "transfer_expiry_seconds": 60,
        })
        self.assertEqual(config.num_operators, 3)
        self.assertEqual(config.network, Network.MAINNET)
        self.assertEqual(config.coordinator.id, 0)
        self.assertEqual(config.coordinator_address, "https://so0.example")
        self.assertEqual(config.transfer_expiry, timedelta(seconds=60))
        self.assertEqual(
            config.ssp_identity_public_key, SSP_IDENTITY_PUBLIC_KEYS[Network.MAINNET],
        )

    def test_round_trip_through_json(self):
        config = WalletConfig.from_dict({
            "threshold": 2,
            "signing_operators": operator_entries(3),
            "coordinator_identifier": operator_identifier(1),
        })
        again = WalletConfig.from_json(json.dumps(config.to_dict()))
        self.assertEqual(again, config)
        self.assertEqual(again.coordinator.id, 1)

    def test_defaults(self):
        config = WalletConfig.from_dict({"threshold": 1, "signing_operators": operator_entries(1)})
        self.assertEqual(config.network, Network.REGTEST)
        self.assertEqual(config.transfer_expiry, DEFAULT_TRANSFER_EXPIRY)
        self.assertEqual(config.ssp_identity_public_key, DEFAULT_SSP_IDENTITY_PUBLIC_KEY)

    def test_bad_threshold(self):
        for threshold in (0, 4):
            with self.assertRaises(ValueError):
                WalletConfig.from_dict({"threshold": threshold, "signing_operators": operator_entries(3)})

    def test_unknown_coordinator(self):
        with self.assertRaises(ValueError):
            WalletConfig.from_dict({
                "threshold": 2,
                "signing_operators": operator_entries(3),
                "coordinator_identifier": operator_identifier(7),
            })
        ops = [SigningOperator(id=i, address="a", identity_public_key=b"") for i in range(3)]
        with self.assertRaises(ValueError):
            WalletConfig.from_operators(ops, threshold=2, coordinator_id=9)

    def test_duplicate_operator_id(self):
        a = SigningOperator(id=1, address="a", identity_public_key=b"")
        b = SigningOperator(id=1, address="b", identity_public_key=b"", identifier="ff" * 32)
        with self.assertRaises(ValueError):
            WalletConfig(
                signing_operators={a.identifier: a, b.identifier: b},
                coordinator_identifier=a.identifier,
                threshold=1,
            )

    def test_mismatched_key(self):
        a = SigningOperator(id=1, address="a", identity_public_key=b"")
        with self.assertRaises(ValueError):
            WalletConfig(signing_operators={"x": a}, coordinator_identifier="x", threshold=1)

    def test_empty_operator_set(self):
        with self.assertRaises(ValueError):
            WalletConfig(signing_operators={}, coordinator_identifier="", threshold=1)


if __name__ == "__main__":
    unittest.main()
