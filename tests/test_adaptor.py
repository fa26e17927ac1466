import hashlib
import unittest

from leafxfer.adaptor import (
    apply_adaptor_to_signature,
    derive_from_existing_adaptor,
    extract_adaptor_secret,
    generate_adaptor_from_signature,
    is_valid_adaptor_signature,
    validate_outbound_adaptor_signature,
)
from leafxfer.curve import G, Scalar
from leafxfer.errors import InvalidAdaptorSignature
from leafxfer.signing import schnorr_sign, verify_signature

from tests.test_signing import deal, sign


class AdaptorTests(unittest.TestCase):
    def setUp(self):
        self.secret = Scalar.random()
        self.public_key = self.secret * G
        self.message = hashlib.sha256(b"swap refund").digest()
        self.signature = schnorr_sign(self.secret, self.message)
        self.pair = generate_adaptor_from_signature(self.signature)

    def test_blinded_signature_does_not_verify(self):
        self.assertFalse(
            verify_signature(self.public_key, self.message, self.pair.adaptor_signature)
        )
        self.assertEqual(self.pair.adaptor_public_key, self.pair.adaptor_private_key * G)

    def test_blinded_signature_validates_against_adaptor_point(self):
        validate_outbound_adaptor_signature(
            self.public_key, self.message,
            self.pair.adaptor_signature, self.pair.adaptor_public_key,
        )
        self.assertFalse(is_valid_adaptor_signature(
            self.public_key, self.message,
            self.pair.adaptor_signature, Scalar.random() * G,
        ))

    def test_apply_completes_signature(self):
        completed = apply_adaptor_to_signature(
            self.public_key, self.message,
            self.pair.adaptor_signature, self.pair.adaptor_private_key,
        )
        self.assertTrue(verify_signature(self.public_key, self.message, completed))
        self.assertEqual(completed, self.signature)

    def test_wrong_secret_is_rejected(self):
        with self.assertRaises(InvalidAdaptorSignature):
            apply_adaptor_to_signature(
                self.public_key, self.message, self.pair.adaptor_signature, Scalar.random(),
            )

    def test_extract_secret(self):
        t = extract_adaptor_secret(
            self.pair.adaptor_signature, self.signature, self.pair.adaptor_public_key,
        )
        self.assertEqual(t, self.pair.adaptor_private_key)
        other = schnorr_sign(self.secret, self.message)
        with self.assertRaises(InvalidAdaptorSignature):
            extract_adaptor_secret(self.pair.adaptor_signature, other, self.pair.adaptor_public_key)

    def test_one_secret_blinds_many_signatures(self):
        message = hashlib.sha256(b"second leaf").digest()
        signature = schnorr_sign(self.secret, message)
        blinded = derive_from_existing_adaptor(signature, self.pair.adaptor_private_key)
        validate_outbound_adaptor_signature(
            self.public_key, message, blinded, self.pair.adaptor_public_key,
        )

    def test_zero_secret_is_rejected(self):
        with self.assertRaises(ValueError):
            generate_adaptor_from_signature(self.signature, Scalar.zero())


class ThresholdAdaptorTests(unittest.TestCase):
    def test_frost_adaptor_signature_completes(self):
        message = hashlib.sha256(b"counter swap refund").digest()
        user_key, shares, verifying_key = deal(2, 3)
        t = Scalar.random()
        adaptor_point = t * G
        for participants in (sorted(shares)[:2], sorted(shares)[1:]):
            blinded = sign(message, user_key, shares, participants, verifying_key, adaptor_point)
            self.assertFalse(verify_signature(verifying_key, message, blinded))
            completed = apply_adaptor_to_signature(verifying_key, message, blinded, t)
            self.assertTrue(verify_signature(verifying_key, message, completed))


if __name__ == "__main__":
    unittest.main()
