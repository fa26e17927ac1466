"""
Schnorr adaptor signatures over BIP-340.

An adaptor signature  (r, s')  is a BIP-340 signature whose *s* is off
by the discrete log *t* of a public adaptor point  T = t·G:

    s = s' + t      or      s = s' − t

(the sign depends on whether the nonce had to be negated to reach an
even-y point).  Anyone can check that  (r, s')  is "one *t* away" from a
valid signature without knowing *t*; whoever completes it and publishes
the result reveals *t* to everyone holding  (r, s').  Leaf swaps use
this to make two ownership changes happen together or not at all.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from .curve import Scalar, Point, G
from .errors import InvalidAdaptorSignature
from .hash import hash_challenge
from .signing import Signature, verify_signature


@dataclass(frozen=True)
class AdaptorPair:
    """Adaptor secret *t*, the blinded signature and  T = t·G."""

    adaptor_private_key: Scalar
    adaptor_signature: Signature
    adaptor_public_key: Point


def generate_adaptor_from_signature(
    signature: Signature,
    adaptor_private_key: Optional[Scalar] = None,
) -> AdaptorPair:
    """
    Blind a complete signature:  s' = s − t  for a fresh (or given) *t*.
    """
    t = adaptor_private_key if adaptor_private_key is not None else Scalar.random()
    if t.is_zero():
        raise ValueError("adaptor secret must be non-zero")
    blinded = Signature(r=signature.r, s=signature.s - t)
    return AdaptorPair(
        adaptor_private_key=t,
        adaptor_signature=blinded,
        adaptor_public_key=t * G,
    )


def derive_from_existing_adaptor(
    signature: Signature,
    adaptor_private_key: Scalar,
) -> Signature:
    """Blind another signature with an adaptor secret already in use."""
    return generate_adaptor_from_signature(
        signature, adaptor_private_key,
    ).adaptor_signature


def apply_adaptor_to_signature(
    public_key: Point,
    message_hash: bytes,
    adaptor_signature: Signature,
    adaptor_private_key: Scalar,
) -> Signature:
    """
    Complete *adaptor_signature* with *t*, returning whichever of
    s' + t  and  s' − t  verifies.

    Raises ``InvalidAdaptorSignature`` if neither does.
    """
    for s in (adaptor_signature.s + adaptor_private_key,
              adaptor_signature.s - adaptor_private_key):
        candidate = Signature(r=adaptor_signature.r, s=s)
        if verify_signature(public_key, message_hash, candidate):
            return candidate
    raise InvalidAdaptorSignature("adaptor secret does not complete the signature")


def _blinded_nonce(
    public_key: Point,
    message_hash: bytes,
    adaptor_signature: Signature,
) -> Point:
    """R' = s'·G − c·P   with  P  the even-y lift of the key."""
    try:
        R = Point.lift_x(adaptor_signature.r)
    except ValueError as exc:
        raise InvalidAdaptorSignature("r is not a valid x-coordinate") from exc
    P = Point.lift_x(public_key.to_bytes_xonly())
    c = hash_challenge(R, P, message_hash)
    return (adaptor_signature.s * G) - (c * P)


def is_valid_adaptor_signature(
    public_key: Point,
    message_hash: bytes,
    adaptor_signature: Signature,
    adaptor_public_key: Point,
) -> bool:
    try:
        validate_outbound_adaptor_signature(
            public_key, message_hash, adaptor_signature, adaptor_public_key,
        )
    except InvalidAdaptorSignature:
        return False
    return True


def validate_outbound_adaptor_signature(
    public_key: Point,
    message_hash: bytes,
    adaptor_signature: Signature,
    adaptor_public_key: Point,
) -> None:
    """
    Check that *adaptor_signature* completes to a valid signature once
    the discrete log of *adaptor_public_key* is known.

    R' + T  or  R' − T  must be the even-y point with x-coordinate *r*.
    """
    R_blinded = _blinded_nonce(public_key, message_hash, adaptor_signature)
    for R in (R_blinded + adaptor_public_key, R_blinded - adaptor_public_key):
        if R.is_inf():
            continue
        if R.has_even_y() and R.to_bytes_xonly() == adaptor_signature.r:
            return
    raise InvalidAdaptorSignature("adaptor signature does not match adaptor point")


def extract_adaptor_secret(
    adaptor_signature: Signature,
    completed_signature: Signature,
    adaptor_public_key: Point,
) -> Scalar:
    """
    Recover *t* from a blinded signature and its completion.

    Raises ``InvalidAdaptorSignature`` if the two do not belong together.
    """
    if adaptor_signature.r != completed_signature.r:
        raise InvalidAdaptorSignature("signatures commit to different nonces")
    diff = completed_signature.s - adaptor_signature.s
    for t in (diff, -diff):
        if not t.is_zero() and t * G == adaptor_public_key:
            return t
    raise InvalidAdaptorSignature("completed signature does not reveal the adaptor secret")
