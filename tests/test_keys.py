import hashlib
import unittest

from leafxfer import ecies
from leafxfer.curve import G, Scalar
from leafxfer.ecies import DecryptionError
from leafxfer.errors import KeyNotFound, NonceReuseError
from leafxfer.keys import InMemoryKeyStore, WalletSigner, verify_identity_signature
from leafxfer.secret_sharing import recover_secret, validate_share
from leafxfer.signing import SigningNonce, operator_identifier, schnorr_sign


def operator_commitments(count):
    return {operator_identifier(i): SigningNonce.generate().commitment() for i in range(count)}


class EciesTests(unittest.TestCase):
    def setUp(self):
        self.secret = Scalar.random()
        self.public_key = (self.secret * G).to_bytes_compressed()

    def test_round_trip(self):
        plaintext = Scalar.random().to_bytes()
        ciphertext = ecies.encrypt(self.public_key, plaintext)
        self.assertEqual(ecies.decrypt(self.secret, ciphertext), plaintext)
        self.assertNotEqual(ecies.encrypt(self.public_key, plaintext), ciphertext)

    def test_wrong_key(self):
        ciphertext = ecies.encrypt(self.public_key, b"leaf key")
        with self.assertRaises(DecryptionError):
            ecies.decrypt(Scalar.random(), ciphertext)

    def test_tampered_ciphertext(self):
        ciphertext = bytearray(ecies.encrypt(self.public_key, b"leaf key"))
        ciphertext[-1] ^= 1
        with self.assertRaises(DecryptionError):
            ecies.decrypt(self.secret, bytes(ciphertext))

    def test_truncated_ciphertext(self):
        with self.assertRaises(DecryptionError):
            ecies.decrypt(self.secret, b"\x04" * 40)


class KeyStoreTests(unittest.TestCase):
    def test_derivation_is_deterministic(self):
        a = InMemoryKeyStore(b"\x01" * 32)
        b = InMemoryKeyStore(b"\x01" * 32)
        self.assertEqual(a.derive(b"leaf"), b.derive(b"leaf"))
        self.assertNotEqual(a.derive(b"leaf"), a.derive(b"other"))
        self.assertNotEqual(a.derive(b"leaf"), InMemoryKeyStore(b"\x02" * 32).derive(b"leaf"))

    def test_get_put_remove(self):
        store = InMemoryKeyStore()
        secret = Scalar.random()
        public_key = store.put(secret)
        self.assertIn(public_key, store)
        self.assertEqual(store.get(public_key), secret)
        store.remove(public_key)
        self.assertNotIn(public_key, store)
        with self.assertRaises(KeyNotFound):
            store.get(public_key)

    def test_zero_key_is_rejected(self):
        with self.assertRaises(ValueError):
            InMemoryKeyStore().put(Scalar.zero())


class WalletSignerTests(unittest.TestCase):
    def setUp(self):
        self.signer = WalletSigner()

    def test_identity_signature(self):
        digest = hashlib.sha256(b"payload").digest()
        sig = self.signer.sign_message_with_identity_key(digest)
        self.assertTrue(verify_identity_signature(self.signer.identity_public_key, digest, sig))
        self.assertFalse(verify_identity_signature(WalletSigner().identity_public_key, digest, sig))
        with self.assertRaises(ValueError):
            self.signer.sign_message_with_identity_key(b"short")

    def test_leaf_signing_key_is_stable(self):
        key = self.signer.leaf_signing_key("leaf-1")
        self.assertEqual(self.signer.leaf_signing_key("leaf-1"), key)
        self.assertNotEqual(self.signer.leaf_signing_key("leaf-2"), key)

    def test_same_identity_restores_leaf_keys(self):
        identity = Scalar.random()
        first = WalletSigner(identity)
        second = WalletSigner(identity)
        self.assertEqual(first.leaf_signing_key("leaf"), second.leaf_signing_key("leaf"))

    def test_subtract_and_split(self):
        old = self.signer.generate_public_key()
        new = self.signer.generate_public_key()
        tweak = self.signer.subtract_private_keys_given_public_keys(old, new)
        expected = self.signer.keys.get(old) - self.signer.keys.get(new)
        self.assertEqual(self.signer.keys.get(tweak), expected)

        shares = self.signer.split_secret_with_proofs(tweak, 2, 3, is_secret_pubkey=True)
        for share in shares:
            validate_share(share)
        self.assertEqual(recover_secret(shares[:2]), expected.value)

    def test_identical_keys_give_no_tweak(self):
        key = self.signer.generate_public_key()
        with self.assertRaises(ValueError):
            self.signer.subtract_private_keys_given_public_keys(key, key)

    def test_leaf_key_handover(self):
        receiver = WalletSigner()
        leaf_key = self.signer.generate_public_key()
        cipher = self.signer.encrypt_leaf_private_key_ecies(receiver.identity_public_key, leaf_key)
        self.assertEqual(receiver.decrypt_ecies(cipher), leaf_key)
        self.assertEqual(receiver.keys.get(leaf_key), self.signer.keys.get(leaf_key))

    def test_commitment_backs_one_signature(self):
        user_key = self.signer.generate_public_key()
        operator_nonce = operator_commitments(2)
        verifying_key = (Scalar.random() * G).to_bytes_compressed()
        commitment = self.signer.get_random_signing_commitment()
        message = hashlib.sha256(b"refund").digest()
        self.signer.sign_frost(message, user_key, verifying_key, commitment, operator_nonce)
        with self.assertRaises(NonceReuseError):
            self.signer.sign_frost(message, user_key, verifying_key, commitment, operator_nonce)

    def test_discarded_commitment_cannot_sign(self):
        user_key = self.signer.generate_public_key()
        verifying_key = (Scalar.random() * G).to_bytes_compressed()
        kept = self.signer.get_random_signing_commitment()
        dropped = self.signer.get_random_signing_commitment()
        self.assertEqual(self.signer.pending_nonce_count, 2)

        self.signer.discard_commitments([dropped])
        self.assertEqual(self.signer.pending_nonce_count, 1)
        with self.assertRaises(NonceReuseError):
            self.signer.sign_frost(
                hashlib.sha256(b"refund").digest(), user_key, verifying_key,
                dropped, operator_commitments(2),
            )

        self.signer.discard_commitments([kept, kept])
        self.assertEqual(self.signer.pending_nonce_count, 0)

    def test_adaptor_secret_is_kept(self):
        sig = schnorr_sign(Scalar.random(), hashlib.sha256(b"x").digest())
        pair = self.signer.generate_adaptor_from_signature(sig.to_bytes())
        public_key = pair.adaptor_public_key.to_bytes_compressed()
        self.assertEqual(self.signer.keys.get(public_key), pair.adaptor_private_key)


if __name__ == "__main__":
    unittest.main()
