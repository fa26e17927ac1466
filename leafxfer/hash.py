"""
Domain-separated hash functions for leafxfer.

Every hash call includes a unique domain tag so that outputs for
different protocol roles (binding, key derivation, adaptor secrets)
are cryptographically independent, even when fed identical data.

Convention follows BIP-340 tagged hashes:

    H_tag(x) = SHA-256( SHA-256(tag) ‖ SHA-256(tag) ‖ x )

The Schnorr challenge uses the literal ``BIP0340/challenge`` tag over
raw x-only encodings, so aggregated signatures verify under any
BIP-340 verifier.
"""

from __future__ import annotations

import hashlib
from typing import Any, Dict, List

from .curve import Scalar, Point, SCALAR_BYTES


# ── domain tags ─────────────────────────────────────────────────────────
_TAG_BIND      = b"leafxfer/v1/binding"
_TAG_BIND_DATA = b"leafxfer/v1/binding_data"
_TAG_CHALLENGE = b"BIP0340/challenge"
_TAG_DERIVE    = b"leafxfer/v1/derive_key"


# ── internal helpers ────────────────────────────────────────────────────
def _tagged_hasher(tag: bytes) -> "hashlib._Hash":
    """Return a SHA-256 context pre-loaded with the BIP-340 tag prefix."""
    tag_hash = hashlib.sha256(tag).digest()
    h = hashlib.sha256()
    h.update(tag_hash)
    h.update(tag_hash)
    return h


def _encode_item(item: Any) -> bytes:
    """
    Canonical encoding of a protocol element for hashing.

    Length-prefixing is used for variable-length items (bytes, str,
    lists) to ensure unambiguous parsing.
    """
    if isinstance(item, bytes):
        return len(item).to_bytes(4, "big") + item
    if isinstance(item, str):
        return _encode_item(item.encode("utf-8"))
    if isinstance(item, int):
        return item.to_bytes(SCALAR_BYTES, "big")
    if isinstance(item, Scalar):
        return item.to_bytes()
    if isinstance(item, Point):
        return item.to_bytes_compressed()
    if isinstance(item, (list, tuple)):
        parts = b"".join(_encode_item(x) for x in item)
        return len(item).to_bytes(4, "big") + parts
    raise TypeError(f"cannot hash {type(item).__name__}")


def _tagged_hash(tag: bytes, *args: Any) -> bytes:
    """Compute BIP-340 tagged hash over arbitrary protocol elements."""
    h = _tagged_hasher(tag)
    for a in args:
        h.update(_encode_item(a))
    return h.digest()


def _tagged_scalar(tag: bytes, *args: Any) -> Scalar:
    """Hash to scalar: H_tag(*args) → Z_q."""
    return Scalar.from_bytes_reduce(_tagged_hash(tag, *args))


# ── public hash functions ───────────────────────────────────────────────

def hash_binding_data(
    message: bytes,
    commitments: Dict[str, bytes],
) -> bytes:
    """
    Canonical digest of the message and every participant's encoded
    commitment, ordered by identifier.

    Including all commitments stops a participant from choosing its
    nonce after seeing the others'.
    """
    ordered: List[Any] = []
    for ident in sorted(commitments):
        ordered.append(ident)
        ordered.append(commitments[ident])
    return _tagged_hash(_TAG_BIND_DATA, message, ordered)


def hash_binding(identifier: str, message: bytes, binding_data: bytes) -> Scalar:
    r"""
    Binding factor  ρ_i  = H₁(i, m, B)  from FROST §4.

    Binds each signer's nonce share to the message and signer set,
    preventing Drijvers-style multi-session forgery.
    """
    return _tagged_scalar(_TAG_BIND, identifier, message, binding_data)


def hash_challenge(R: Point, pk: Point, message: bytes) -> Scalar:
    r"""
    BIP-340 challenge  c = H_{BIP0340/challenge}(R.x ‖ Y.x ‖ m).

    Encodings are raw (not length-prefixed) as BIP-340 requires.
    """
    h = _tagged_hasher(_TAG_CHALLENGE)
    h.update(R.to_bytes_xonly())
    h.update(pk.to_bytes_xonly())
    h.update(message)
    return Scalar.from_bytes_reduce(h.digest())


def hash_derive_key(seed: bytes, data: bytes, counter: int = 0) -> Scalar:
    """Deterministic private scalar for *data* under a wallet seed."""
    return _tagged_scalar(_TAG_DERIVE, seed, data, counter)


def transfer_payload_hash(
    leaf_id: str,
    transfer_id: str,
    secret_cipher: bytes,
) -> bytes:
    """
    SHA-256( leafId ‖ transferId ‖ cipher ), the digest the sender
    signs with its identity key for every leaf it hands over.
    """
    return hashlib.sha256(
        leaf_id.encode("utf-8") + transfer_id.encode("utf-8") + secret_cipher
    ).digest()


def payment_hash(preimage: bytes) -> bytes:
    """Lightning payment hash  SHA-256(preimage)."""
    return hashlib.sha256(preimage).digest()
