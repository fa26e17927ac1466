"""
ECIES over secp256k1, wire-compatible with the ``eciesjs`` layout.

    ciphertext = ephemeral_pk (65, uncompressed)
               ‖ nonce (16) ‖ tag (16) ‖ AES-256-GCM(body)

    key = HKDF-SHA256( ephemeral_pk ‖ shared_point )      (both uncompressed)

The sender uses it to hand a leaf's new signing key to the receiver's
identity key; only the receiver can decrypt it.
"""

from __future__ import annotations

import secrets

from coincurve import PrivateKey as _SK, PublicKey as _PK
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.hashes import SHA256
from cryptography.hazmat.primitives.kdf.hkdf import HKDF

from .curve import Scalar
from .errors import LeafTransferError

EPHEMERAL_KEY_BYTES = 65
NONCE_BYTES = 16
TAG_BYTES = 16
KEY_BYTES = 32


class DecryptionError(LeafTransferError, ValueError):
    """Ciphertext is malformed or was not encrypted to this key."""


def _derive_key(ephemeral_pk: bytes, shared_point: bytes) -> bytes:
    return HKDF(
        algorithm=SHA256(),
        length=KEY_BYTES,
        salt=None,
        info=b"",
    ).derive(ephemeral_pk + shared_point)


def _shared_point(public_key: bytes, secret: bytes) -> bytes:
    return _PK(public_key).multiply(secret).format(compressed=False)


def encrypt(receiver_public_key: bytes, plaintext: bytes) -> bytes:
    """Encrypt *plaintext* to a compressed or uncompressed public key."""
    ephemeral = _SK(Scalar.random().to_bytes())
    ephemeral_pk = ephemeral.public_key.format(compressed=False)
    key = _derive_key(
        ephemeral_pk, _shared_point(receiver_public_key, ephemeral.secret),
    )
    nonce = secrets.token_bytes(NONCE_BYTES)
    sealed = AESGCM(key).encrypt(nonce, plaintext, None)
    # AESGCM appends the tag; the wire format puts it before the body
    body, tag = sealed[:-TAG_BYTES], sealed[-TAG_BYTES:]
    return ephemeral_pk + nonce + tag + body


def decrypt(receiver_private_key: Scalar, ciphertext: bytes) -> bytes:
    """Inverse of :func:`encrypt`.  Raises ``DecryptionError``."""
    header = EPHEMERAL_KEY_BYTES + NONCE_BYTES + TAG_BYTES
    if len(ciphertext) < header:
        raise DecryptionError(f"ciphertext too short: {len(ciphertext)} bytes")
    ephemeral_pk = ciphertext[:EPHEMERAL_KEY_BYTES]
    nonce = ciphertext[EPHEMERAL_KEY_BYTES:EPHEMERAL_KEY_BYTES + NONCE_BYTES]
    tag = ciphertext[EPHEMERAL_KEY_BYTES + NONCE_BYTES:header]
    body = ciphertext[header:]
    try:
        shared = _shared_point(ephemeral_pk, receiver_private_key.to_bytes())
    except ValueError as exc:
        raise DecryptionError("invalid ephemeral public key") from exc
    key = _derive_key(ephemeral_pk, shared)
    try:
        return AESGCM(key).decrypt(nonce, body + tag, None)
    except InvalidTag as exc:
        raise DecryptionError("authentication tag mismatch") from exc
