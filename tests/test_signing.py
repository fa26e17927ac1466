import hashlib
import unittest

from coincurve import PublicKeyXOnly

from leafxfer.curve import G, ORDER, Scalar
from leafxfer.errors import AggregationMismatch, NonceReuseError
from leafxfer.secret_sharing import split_secret_with_proofs
from leafxfer.signing import (
    USER_IDENTIFIER,
    Signature,
    SigningCommitment,
    SigningNonce,
    SigningSession,
    aggregate_frost,
    identifier_index,
    operator_identifier,
    schnorr_sign,
    sign_frost,
    signing_share_bytes,
    signing_share_from_bytes,
    verify_signature,
)


def deal(threshold, num_operators):
    """A wallet key plus an operator key dealt t-of-n."""
    operator_key = Scalar.random()
    shares = split_secret_with_proofs(operator_key, ORDER, threshold, num_operators)
    user_key = Scalar.random()
    operator_shares = {
        operator_identifier(s.index - 1): Scalar(s.share) for s in shares
    }
    return user_key, operator_shares, user_key * G + operator_key * G


def sign(message, user_key, operator_shares, participants, verifying_key,
         adaptor_public_key=None, tamper=None):
    user_nonce = SigningNonce.generate()
    user_commitment = user_nonce.commitment()
    nonces = {i: SigningNonce.generate() for i in participants}
    commitments = {i: n.commitment() for i, n in nonces.items()}

    z_user = sign_frost(
        message, user_key, user_nonce, user_commitment, commitments,
        verifying_key, adaptor_public_key,
    )
    session = SigningSession(
        message, {**commitments, USER_IDENTIFIER: user_commitment},
        verifying_key, adaptor_public_key,
    )
    z_ops = {
        i: session.sign_share(i, operator_shares[i], nonces[i]) for i in participants
    }
    if tamper is not None:
        z_ops[tamper] = z_ops[tamper] + Scalar.one()
    return aggregate_frost(
        message,
        z_user,
        user_key * G,
        user_commitment,
        z_ops,
        {i: operator_shares[i] * G for i in participants},
        commitments,
        verifying_key,
        adaptor_public_key,
    )


class FrostSigningTests(unittest.TestCase):
    def setUp(self):
        self.message = hashlib.sha256(b"refund transaction").digest()
        self.user_key, self.shares, self.verifying_key = deal(3, 5)
        self.ids = sorted(self.shares)

    def test_threshold_subsets_produce_bip340_signatures(self):
        for subset in ((0, 2, 3), (1, 2, 4), (2, 3, 4)):
            participants = [self.ids[i] for i in subset]
            sig = sign(self.message, self.user_key, self.shares, participants, self.verifying_key)
            self.assertTrue(verify_signature(self.verifying_key, self.message, sig))
            xonly = PublicKeyXOnly(self.verifying_key.to_bytes_xonly())
            self.assertTrue(xonly.verify(sig.to_bytes(), self.message))

    def test_both_key_parities(self):
        # enough fresh keys that both y parities show up
        for _ in range(8):
            user_key, shares, verifying_key = deal(2, 3)
            participants = sorted(shares)[:2]
            sig = sign(self.message, user_key, shares, participants, verifying_key)
            self.assertTrue(verify_signature(verifying_key, self.message, sig))

    def test_wrong_message_does_not_verify(self):
        sig = sign(self.message, self.user_key, self.shares, self.ids[:3], self.verifying_key)
        other = hashlib.sha256(b"other").digest()
        self.assertFalse(verify_signature(self.verifying_key, other, sig))

    def test_bad_share_names_the_operator(self):
        with self.assertRaises(AggregationMismatch) as ctx:
            sign(self.message, self.user_key, self.shares, self.ids[:3],
                 self.verifying_key, tamper=self.ids[1])
        self.assertEqual(ctx.exception.identifier, self.ids[1])

    def test_too_few_operators_fail_to_aggregate(self):
        with self.assertRaises(AggregationMismatch):
            sign(self.message, self.user_key, self.shares, self.ids[:2], self.verifying_key)

    def test_wallet_identifier_is_reserved(self):
        nonce = SigningNonce.generate()
        commitment = nonce.commitment()
        with self.assertRaises(ValueError):
            sign_frost(
                self.message, self.user_key, nonce, commitment,
                {USER_IDENTIFIER: SigningNonce.generate().commitment()},
                self.verifying_key,
            )

    def test_nonce_is_single_use(self):
        nonce = SigningNonce.generate()
        nonce.mark_used()
        with self.assertRaises(NonceReuseError):
            nonce.mark_used()

    def test_session_lagrange_weights(self):
        commitments = {i: SigningNonce.generate().commitment() for i in self.ids[:3]}
        commitments[USER_IDENTIFIER] = SigningNonce.generate().commitment()
        session = SigningSession(self.message, commitments, self.verifying_key)
        self.assertEqual(session.lagrange(USER_IDENTIFIER), Scalar.one())
        total = Scalar.zero()
        for i in self.ids[:3]:
            total = total + session.lagrange(i)
        self.assertEqual(total, Scalar.one())


class EncodingTests(unittest.TestCase):
    def test_operator_identifier(self):
        self.assertEqual(operator_identifier(0), "0" * 63 + "1")
        self.assertEqual(identifier_index(operator_identifier(9)), 10)

    def test_commitment_is_66_bytes(self):
        commitment = SigningNonce.generate().commitment()
        data = commitment.to_bytes()
        self.assertEqual(len(data), 66)
        self.assertEqual(SigningCommitment.from_bytes(data), commitment)
        with self.assertRaises(ValueError):
            SigningCommitment.from_bytes(data[:65])

    def test_signature_share_range(self):
        z = Scalar.random()
        self.assertEqual(signing_share_from_bytes(signing_share_bytes(z)), z)
        with self.assertRaises(ValueError):
            signing_share_from_bytes(ORDER.to_bytes(32, "big"))
        with self.assertRaises(ValueError):
            signing_share_from_bytes(b"\x01" * 31)

    def test_schnorr_sign(self):
        secret = Scalar.random()
        message = hashlib.sha256(b"payload").digest()
        sig = schnorr_sign(secret, message)
        self.assertTrue(verify_signature(secret * G, message, sig))
        self.assertEqual(Signature.from_bytes(sig.to_bytes()), sig)
        self.assertFalse(verify_signature(Scalar.random() * G, message, sig))


if __name__ == "__main__":
    unittest.main()
