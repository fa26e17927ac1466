"""
Verifiable Shamir secret sharing with Feldman proofs.

The dealer (the wallet) samples a random polynomial of degree  t − 1
whose constant term is the secret, evaluates it at  x = 1 … n  and
publishes the Feldman commitments  a_j · G  of every coefficient (the
"proofs").  Each operator receives one share and checks it against the
proofs on its own:

    share_i · G  ==  Σ_j  proof_j · i^j

Any *t* shares reconstruct the secret through Lagrange interpolation at
zero; fewer than *t* reveal nothing about it.

Sharing is used twice in the transfer protocol: for the scalar
difference between a leaf's old and new signing key (the key tweak), and
for lightning preimages that operators may only release together.
"""

from __future__ import annotations

import secrets
from dataclasses import dataclass
from typing import List, Sequence, Tuple

from .curve import Scalar, Point, G, ORDER, SCALAR_BYTES
from .errors import InsufficientShares, InvalidShare, ShareNotFoundForOperator
from .field import field_div
from .polynomial import commit_polynomial, evaluate_commitment


# ── data structures ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class SecretShare:
    """Point  (index, f(index))  on the sharing polynomial."""

    field_modulus: int
    threshold: int
    index: int                 # 1 … n
    share: int                 # f(index) mod field_modulus

    def share_bytes(self) -> bytes:
        return self.share.to_bytes(SCALAR_BYTES, "big")


@dataclass(frozen=True)
class VerifiableSecretShare(SecretShare):
    """A ``SecretShare`` plus the dealer's Feldman proof points."""

    proofs: Tuple[Point, ...] = ()

    def proof_bytes(self) -> List[bytes]:
        """Compressed SEC 1 encodings of the proofs, as sent on the wire."""
        return [p.to_bytes_compressed() for p in self.proofs]

    @classmethod
    def from_wire(
        cls,
        index: int,
        threshold: int,
        share: bytes,
        proofs: Sequence[bytes],
    ) -> VerifiableSecretShare:
        return cls(
            field_modulus=ORDER,
            threshold=threshold,
            index=index,
            share=int.from_bytes(share, "big"),
            proofs=tuple(Point.from_bytes(p) for p in proofs),
        )


# ── polynomial over an explicit modulus ─────────────────────────────────

def _random_below(modulus: int) -> int:
    return secrets.randbelow(modulus)


def _sample_coefficients(secret: int, threshold: int, modulus: int) -> List[int]:
    return [secret % modulus] + [
        _random_below(modulus) for _ in range(threshold - 1)
    ]


def _evaluate(coeffs: List[int], x: int, modulus: int) -> int:
    result = 0
    for c in reversed(coeffs):
        result = (result * x + c) % modulus
    return result


def _check_parameters(threshold: int, num_shares: int) -> None:
    if threshold < 1:
        raise ValueError(f"threshold must be ≥ 1, got {threshold}")
    if threshold > num_shares:
        raise ValueError(
            f"threshold {threshold} exceeds number of shares {num_shares}"
        )


# ── split / recover ─────────────────────────────────────────────────────

def split_secret(
    secret: int,
    field_modulus: int,
    threshold: int,
    num_shares: int,
) -> List[SecretShare]:
    """Plain Shamir split of *secret* into *num_shares* shares."""
    _check_parameters(threshold, num_shares)
    coeffs = _sample_coefficients(secret, threshold, field_modulus)
    return [
        SecretShare(
            field_modulus=field_modulus,
            threshold=threshold,
            index=i,
            share=_evaluate(coeffs, i, field_modulus),
        )
        for i in range(1, num_shares + 1)
    ]


def split_secret_with_proofs(
    secret: Scalar,
    field_modulus: int,
    threshold: int,
    num_shares: int,
) -> List[VerifiableSecretShare]:
    """
    Split *secret* and attach Feldman proofs to every share.

    Parameters
    ----------
    secret : Scalar
        The value to share (constant term of the polynomial).
    field_modulus : int
        Must be the secp256k1 group order; the proofs live in that group.
    threshold : int
        Number of shares needed to recover, 1 ≤ t ≤ n.
    num_shares : int
        Number of shares *n* to emit, at indices 1 … n.
    """
    if field_modulus != ORDER:
        raise ValueError("Feldman proofs require the secp256k1 group order")
    _check_parameters(threshold, num_shares)

    coeffs = _sample_coefficients(secret.value, threshold, field_modulus)
    proofs = tuple(commit_polynomial([Scalar(c) for c in coeffs]))

    return [
        VerifiableSecretShare(
            field_modulus=field_modulus,
            threshold=threshold,
            index=i,
            share=_evaluate(coeffs, i, field_modulus),
            proofs=proofs,
        )
        for i in range(1, num_shares + 1)
    ]


def lagrange_at_zero(index: int, indexes: Sequence[int], field_modulus: int) -> int:
    r"""λ_i = Π_{j ≠ i}  j / (j − i)   in  Z_field_modulus."""
    numerator = 1
    denominator = 1
    for j in indexes:
        if j == index:
            continue
        numerator = numerator * j % field_modulus
        denominator = denominator * (j - index) % field_modulus
    return field_div(numerator, denominator, field_modulus)


def recover_secret(shares: Sequence[SecretShare]) -> int:
    """
    Reconstruct the secret from at least ``threshold`` shares.

    Raises ``InsufficientShares`` if too few shares are given and
    ``InvalidShare`` if two shares carry the same index or the shares
    disagree on threshold, modulus or proofs.
    """
    if not shares:
        raise InsufficientShares(0, 1)
    first = shares[0]
    threshold = first.threshold
    modulus = first.field_modulus
    proofs = getattr(first, "proofs", ())

    seen = set()
    for s in shares:
        if s.threshold != threshold:
            raise InvalidShare(
                s.index, f"threshold {s.threshold} differs from {threshold}",
            )
        if s.field_modulus != modulus:
            raise InvalidShare(s.index, "field modulus differs from other shares")
        if getattr(s, "proofs", ()) != proofs:
            raise InvalidShare(s.index, "proofs differ from other shares")
        if s.index in seen:
            raise InvalidShare(s.index, "duplicate share index")
        seen.add(s.index)

    if len(shares) < threshold:
        raise InsufficientShares(len(shares), threshold)

    indexes = [s.index for s in shares]

    result = 0
    for s in shares:
        lam = lagrange_at_zero(s.index, indexes, modulus)
        result = (result + s.share * lam) % modulus
    return result


def validate_share(share: VerifiableSecretShare) -> None:
    """
    Check *share* against its Feldman proofs.

    Raises ``InvalidShare`` on mismatch.  Needs no other share.
    """
    if not share.proofs:
        raise InvalidShare(share.index, "share carries no proofs")
    if len(share.proofs) != share.threshold:
        raise InvalidShare(
            share.index,
            f"expected {share.threshold} proofs, got {len(share.proofs)}",
        )
    if not 0 <= share.share < ORDER:
        raise InvalidShare(share.index, "share is outside the field")

    target = Scalar(share.share) * G
    expected = evaluate_commitment(list(share.proofs), share.index)
    if target != expected:
        raise InvalidShare(share.index, "share does not match proofs")


def find_share(
    shares: Sequence[VerifiableSecretShare],
    operator_id: int,
) -> VerifiableSecretShare:
    """The share destined for operator *operator_id* (index = id + 1)."""
    target = operator_id + 1
    for s in shares:
        if s.index == target:
            return s
    raise ShareNotFoundForOperator(operator_id)
