"""
Key custody for the wallet side of the protocol.

``KeyStore`` maps public keys to private scalars.  ``WalletSigner`` is
the only object that touches those scalars: it generates signing keys,
computes key tweaks, splits them into operator shares, produces FROST
partial signatures and ECIES ciphertexts, and signs transfer payloads
with the identity key.  Everything it hands back is public.
"""

from __future__ import annotations

import hashlib
import secrets
from typing import Dict, Iterable, List, Mapping, Optional, Protocol

from coincurve import PrivateKey as _SK, PublicKey as _PK

from . import ecies
from .adaptor import AdaptorPair, generate_adaptor_from_signature
from .curve import Scalar, Point, ORDER
from .errors import KeyNotFound, NonceReuseError
from .hash import hash_derive_key
from .secret_sharing import VerifiableSecretShare, split_secret_with_proofs
from .signing import (
    Signature,
    SigningCommitment,
    SigningNonce,
    aggregate_frost,
    sign_frost,
)


class KeyStore(Protocol):
    """Public key → private key custody."""

    def derive(self, data: bytes) -> bytes:
        """Deterministic key for *data*; stores it and returns its public key."""
        ...

    def get(self, public_key: bytes) -> Scalar:
        """Private key for *public_key*; raises ``KeyNotFound``."""
        ...

    def put(self, private_key: Scalar) -> bytes:
        """Track *private_key*; returns its compressed public key."""
        ...

    def remove(self, public_key: bytes) -> None:
        ...


class InMemoryKeyStore:
    """Dictionary-backed ``KeyStore`` with seed-based derivation."""

    def __init__(self, seed: Optional[bytes] = None) -> None:
        self._seed = seed if seed is not None else secrets.token_bytes(32)
        self._keys: Dict[bytes, Scalar] = {}

    def derive(self, data: bytes) -> bytes:
        counter = 0
        while True:
            k = hash_derive_key(self._seed, data, counter)
            if not k.is_zero():
                return self.put(k)
            counter += 1

    def get(self, public_key: bytes) -> Scalar:
        try:
            return self._keys[bytes(public_key)]
        except KeyError:
            raise KeyNotFound(bytes(public_key)) from None

    def put(self, private_key: Scalar) -> bytes:
        if private_key.is_zero():
            raise ValueError("private key must be non-zero")
        pub = Point.from_scalar(private_key).to_bytes_compressed()
        self._keys[pub] = private_key
        return pub

    def remove(self, public_key: bytes) -> None:
        self._keys.pop(bytes(public_key), None)

    def __contains__(self, public_key: bytes) -> bool:
        return bytes(public_key) in self._keys

    def __len__(self) -> int:
        return len(self._keys)

    def public_keys(self) -> List[bytes]:
        return list(self._keys)


# ── identity-key ECDSA ──────────────────────────────────────────────────

def verify_identity_signature(
    public_key: bytes,
    message_hash: bytes,
    signature: bytes,
) -> bool:
    """ECDSA (DER) verification of a 32-byte digest."""
    try:
        return _PK(public_key).verify(signature, message_hash, hasher=None)
    except ValueError:
        return False


# ── wallet signer ───────────────────────────────────────────────────────

class WalletSigner:
    """
    The wallet's private-key operations.

    Signing nonces are kept in a commitment → nonce map and popped on
    use, so a commitment can back exactly one partial signature.
    """

    def __init__(
        self,
        identity_private_key: Optional[Scalar] = None,
        key_store: Optional[KeyStore] = None,
    ) -> None:
        self._identity = identity_private_key or Scalar.random()
        self.keys: KeyStore = key_store if key_store is not None else InMemoryKeyStore(
            hashlib.sha256(b"leafxfer/seed" + self._identity.to_bytes()).digest()
        )
        self._nonces: Dict[bytes, SigningNonce] = {}

    # identity ---------------------------------------------------------------
    @property
    def identity_public_key(self) -> bytes:
        return Point.from_scalar(self._identity).to_bytes_compressed()

    def sign_message_with_identity_key(self, message_hash: bytes) -> bytes:
        if len(message_hash) != 32:
            raise ValueError("identity signatures cover 32-byte digests")
        return _SK(self._identity.to_bytes()).sign(message_hash, hasher=None)

    # signing keys -----------------------------------------------------------
    def generate_public_key(self, data: Optional[bytes] = None) -> bytes:
        """Fresh signing key, derived from *data* when given."""
        if data is not None:
            return self.keys.derive(data)
        return self.keys.put(Scalar.random())

    def leaf_signing_key(self, leaf_id: str) -> bytes:
        """The signing key a wallet uses for a leaf it owns."""
        return self.generate_public_key(hashlib.sha256(leaf_id.encode()).digest())

    def restore_signing_keys(self, leaf_ids: Iterable[str]) -> None:
        for leaf_id in leaf_ids:
            self.leaf_signing_key(leaf_id)

    def remove_public_key(self, public_key: bytes) -> None:
        self.keys.remove(public_key)

    def subtract_private_keys_given_public_keys(
        self,
        first: bytes,
        second: bytes,
    ) -> bytes:
        """Track  first − second  and return its public key."""
        diff = self.keys.get(first) - self.keys.get(second)
        if diff.is_zero():
            raise ValueError("keys are identical; tweak would be zero")
        return self.keys.put(diff)

    def split_secret_with_proofs(
        self,
        secret: bytes,
        threshold: int,
        num_shares: int,
        is_secret_pubkey: bool = False,
    ) -> List[VerifiableSecretShare]:
        """
        Split *secret*, or the private key behind it when
        *is_secret_pubkey* is set.
        """
        if is_secret_pubkey:
            value = self.keys.get(secret)
        else:
            value = Scalar(int.from_bytes(secret, "big"))
        return split_secret_with_proofs(value, ORDER, threshold, num_shares)

    # FROST ------------------------------------------------------------------
    def get_random_signing_commitment(self) -> SigningCommitment:
        nonce = SigningNonce.generate()
        commitment = nonce.commitment()
        self._nonces[commitment.to_bytes()] = nonce
        return commitment

    def discard_commitments(self, commitments: Iterable[SigningCommitment]) -> None:
        """Forget the nonces behind *commitments* that were never signed with."""
        for commitment in commitments:
            nonce = self._nonces.pop(commitment.to_bytes(), None)
            if nonce is not None:
                nonce.clear()

    @property
    def pending_nonce_count(self) -> int:
        return len(self._nonces)

    def sign_frost(
        self,
        message: bytes,
        public_key: bytes,
        verifying_key: bytes,
        self_commitment: SigningCommitment,
        operator_commitments: Mapping[str, SigningCommitment],
        adaptor_public_key: Optional[bytes] = None,
    ) -> Scalar:
        nonce = self._nonces.pop(self_commitment.to_bytes(), None)
        if nonce is None:
            raise NonceReuseError("no unused nonce for this commitment")
        return sign_frost(
            message,
            self.keys.get(public_key),
            nonce,
            self_commitment,
            operator_commitments,
            Point.from_bytes(verifying_key),
            Point.from_bytes(adaptor_public_key) if adaptor_public_key else None,
        )

    def aggregate_frost(
        self,
        message: bytes,
        self_signature: Scalar,
        public_key: bytes,
        self_commitment: SigningCommitment,
        operator_signatures: Mapping[str, Scalar],
        operator_public_keys: Mapping[str, bytes],
        operator_commitments: Mapping[str, SigningCommitment],
        verifying_key: bytes,
        adaptor_public_key: Optional[bytes] = None,
    ) -> Signature:
        return aggregate_frost(
            message,
            self_signature,
            Point.from_bytes(public_key),
            self_commitment,
            operator_signatures,
            {i: Point.from_bytes(pk) for i, pk in operator_public_keys.items()},
            operator_commitments,
            Point.from_bytes(verifying_key),
            Point.from_bytes(adaptor_public_key) if adaptor_public_key else None,
        )

    # ECIES ------------------------------------------------------------------
    def encrypt_leaf_private_key_ecies(
        self,
        receiver_public_key: bytes,
        public_key: bytes,
    ) -> bytes:
        return ecies.encrypt(receiver_public_key, self.keys.get(public_key).to_bytes())

    def decrypt_ecies(self, ciphertext: bytes) -> bytes:
        """Decrypt a leaf key sent to us; track it and return its public key."""
        raw = ecies.decrypt(self._identity, ciphertext)
        return self.keys.put(Scalar.from_bytes(raw))

    # adaptor ----------------------------------------------------------------
    def generate_adaptor_from_signature(self, signature: bytes) -> AdaptorPair:
        pair = generate_adaptor_from_signature(Signature.from_bytes(signature))
        self.keys.put(pair.adaptor_private_key)
        return pair
