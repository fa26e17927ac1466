"""
Two-round threshold Schnorr signing (FROST) producing BIP-340 signatures.

A leaf's verifying key is the sum of the wallet's key and the operators'
joint key,  Y = P_user + P_ops.  The wallet signs as one participant
with weight 1; the operators sign as a threshold group and weight their
shares by Lagrange coefficients over the operators that took part.  The
algebra is FROST [Komlo-Goldberg, SAC 2020]:

**Round 1 (commit):**  Each participant samples a nonce pair  (d, e)
and publishes  (D = d·G,  E = e·G)  before the message is fixed.

**Round 2 (sign):**  Given message *m* and all commitments:

    ρ_i = H₁(i, m, B)                       (binding factor)
    R   = Σ (D_i + ρ_i · E_i)  [+ T]        (group commitment)
    c   = H_BIP0340(R.x, Y.x, m)            (challenge)
    z_i = g_R·(d_i + ρ_i·e_i) + c·λ_i·g_Y·s_i

where  g_R, g_Y ∈ {1, −1}  flip R and Y to even-y points as BIP-340
demands, and *T* is an optional adaptor point.

Without an adaptor, (R.x, Σ z_i) is a plain BIP-340 signature.  With
one, Σ z_i is short by  g_R · t  and only completes once the adaptor
secret *t* is known (see :pymod:`adaptor`).

References
----------
- Komlo, Goldberg (2020). "FROST: Flexible Round-Optimized Schnorr
  Threshold Signatures."  SAC 2020.
- BIP-340  Schnorr Signatures for secp256k1.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, Mapping, Optional

from .curve import Scalar, Point, G, ORDER, SCALAR_BYTES, XONLY_BYTES
from .errors import AggregationMismatch, NonceReuseError
from .hash import hash_binding, hash_binding_data, hash_challenge
from .polynomial import all_lagrange_coefficients


USER_IDENTIFIER = "user"


def operator_identifier(operator_id: int) -> str:
    """FROST identifier of an operator: its share index as 64 hex digits."""
    return f"{operator_id + 1:064x}"


def identifier_index(identifier: str) -> int:
    return int(identifier, 16)


# ── data structures ─────────────────────────────────────────────────────

@dataclass(frozen=True)
class SigningCommitment:
    """Public nonce commitment  (D, E)  published in Round 1."""

    hiding: Point      # D = d · G
    binding: Point     # E = e · G

    def to_bytes(self) -> bytes:
        """66 bytes: compressed D ‖ compressed E."""
        return self.hiding.to_bytes_compressed() + self.binding.to_bytes_compressed()

    @classmethod
    def from_bytes(cls, data: bytes) -> SigningCommitment:
        if len(data) != 66:
            raise ValueError(f"expected 66 bytes, got {len(data)}")
        return cls(hiding=Point.from_bytes(data[:33]),
                   binding=Point.from_bytes(data[33:]))


@dataclass
class SigningNonce:
    """Secret nonce pair; MUST be used exactly once, then erased."""

    hiding: Scalar
    binding: Scalar
    used: bool = False

    @classmethod
    def generate(cls) -> SigningNonce:
        return cls(hiding=Scalar.random(), binding=Scalar.random())

    def commitment(self) -> SigningCommitment:
        return SigningCommitment(hiding=self.hiding * G, binding=self.binding * G)

    def mark_used(self) -> None:
        if self.used:
            raise NonceReuseError("signing nonce was already used")
        self.used = True

    def clear(self) -> None:
        """Overwrite secrets (best-effort in Python)."""
        self.hiding = Scalar.zero()
        self.binding = Scalar.zero()


@dataclass(frozen=True)
class Signature:
    """
    BIP-340 signature  (r, s)  with  r  the x-coordinate of the nonce.

    Verifies iff  s·G == lift_x(r) + c·lift_x(Y.x).
    """

    r: bytes
    s: Scalar

    def to_bytes(self) -> bytes:
        """64 bytes: r (32) ‖ s (32)."""
        return self.r + self.s.to_bytes()

    @classmethod
    def from_bytes(cls, data: bytes) -> Signature:
        if len(data) != 64:
            raise ValueError(f"expected 64 bytes, got {len(data)}")
        return cls(r=data[:XONLY_BYTES], s=Scalar.from_bytes(data[XONLY_BYTES:]))


# ── signing session ─────────────────────────────────────────────────────

class SigningSession:
    """
    Everything the participants of one signing attempt agree on:
    message, commitments, verifying key and (optionally) adaptor point.

    The same session object computes partial signatures, verifies them
    and aggregates them, so signer and aggregator can never disagree on
    the challenge or the parity flags.
    """

    def __init__(
        self,
        message: bytes,
        commitments: Mapping[str, SigningCommitment],
        verifying_key: Point,
        adaptor_public_key: Optional[Point] = None,
    ) -> None:
        if verifying_key.is_inf():
            raise ValueError("verifying key is the point at infinity")
        self.message = message
        self.commitments = dict(commitments)
        self.verifying_key = verifying_key
        self.adaptor_public_key = adaptor_public_key

        self.binding_data = hash_binding_data(
            message, {i: c.to_bytes() for i, c in self.commitments.items()},
        )
        self._rho: Dict[str, Scalar] = {
            ident: hash_binding(ident, message, self.binding_data)
            for ident in self.commitments
        }

        R = Point.sum_points([self.nonce_point(i) for i in sorted(self.commitments)])
        if adaptor_public_key is not None:
            R = R + adaptor_public_key
        if R.is_inf():
            raise ValueError("group commitment is the point at infinity")
        self.group_commitment = R

        # BIP-340 only ever sees even-y R and Y
        self.nonce_negated = not R.has_even_y()
        self.key_negated = not verifying_key.has_even_y()
        self.challenge = hash_challenge(R, verifying_key, message)

        operators = sorted(i for i in self.commitments if i != USER_IDENTIFIER)
        lambdas = all_lagrange_coefficients([identifier_index(i) for i in operators])
        self._lambda: Dict[str, Scalar] = dict(zip(operators, lambdas))
        if USER_IDENTIFIER in self.commitments:
            self._lambda[USER_IDENTIFIER] = Scalar.one()

    # per-participant quantities ---------------------------------------------
    def binding_factor(self, identifier: str) -> Scalar:
        return self._rho[identifier]

    def nonce_point(self, identifier: str) -> Point:
        """R_i = D_i + ρ_i · E_i"""
        c = self.commitments[identifier]
        return c.hiding + (self._rho[identifier] * c.binding)

    def lagrange(self, identifier: str) -> Scalar:
        return self._lambda[identifier]

    # round 2 ----------------------------------------------------------------
    def sign_share(
        self,
        identifier: str,
        secret: Scalar,
        nonce: SigningNonce,
    ) -> Scalar:
        """Partial response  z_i  for *identifier*.  Consumes *nonce*."""
        if identifier not in self.commitments:
            raise ValueError(f"{identifier} is not a participant")
        if nonce.commitment() != self.commitments[identifier]:
            raise ValueError("nonce does not match the published commitment")
        nonce.mark_used()

        k = nonce.hiding + self._rho[identifier] * nonce.binding
        if self.nonce_negated:
            k = -k
        s = -secret if self.key_negated else secret
        z = k + self.challenge * self._lambda[identifier] * s

        nonce.clear()
        return z

    def verify_share(
        self,
        identifier: str,
        z_i: Scalar,
        public_share: Point,
    ) -> bool:
        """z_i · G  ==  g_R · R_i  +  c · λ_i · g_Y · Y_i"""
        R_i = self.nonce_point(identifier)
        if self.nonce_negated:
            R_i = -R_i
        Y_i = -public_share if self.key_negated else public_share
        rhs = R_i + (self.challenge * self._lambda[identifier] * Y_i)
        return z_i * G == rhs

    def aggregate(
        self,
        shares: Mapping[str, Scalar],
        public_shares: Mapping[str, Point],
    ) -> Signature:
        """
        Combine partial responses after checking each one.

        Raises ``AggregationMismatch`` naming the first participant
        whose response does not verify, or if the aggregate does not
        verify (as a plain signature, or as an adaptor signature when an
        adaptor point is set).
        """
        if set(shares) != set(self.commitments):
            raise AggregationMismatch(
                "signature shares do not match the committed participants"
            )
        for ident in sorted(shares):
            if ident not in public_shares:
                raise AggregationMismatch(
                    f"no public share for participant {ident}", ident,
                )
            if not self.verify_share(ident, shares[ident], public_shares[ident]):
                raise AggregationMismatch(
                    f"invalid signature share from {ident}", ident,
                )

        z = Scalar.zero()
        for ident in sorted(shares):
            z = z + shares[ident]
        sig = Signature(r=self.group_commitment.to_bytes_xonly(), s=z)

        if self.adaptor_public_key is None:
            if not verify_signature(self.verifying_key, self.message, sig):
                raise AggregationMismatch("aggregated signature does not verify")
        else:
            from .adaptor import is_valid_adaptor_signature
            if not is_valid_adaptor_signature(
                self.verifying_key, self.message, sig, self.adaptor_public_key,
            ):
                raise AggregationMismatch(
                    "aggregated adaptor signature does not verify"
                )
        return sig


# ── convenience wrappers (wallet side) ──────────────────────────────────

def _parse_commitments(
    self_commitment: SigningCommitment,
    operator_commitments: Mapping[str, SigningCommitment],
) -> Dict[str, SigningCommitment]:
    commitments = dict(operator_commitments)
    if USER_IDENTIFIER in commitments:
        raise ValueError(f"operator may not use identifier {USER_IDENTIFIER!r}")
    commitments[USER_IDENTIFIER] = self_commitment
    return commitments


def sign_frost(
    message: bytes,
    private_key: Scalar,
    nonce: SigningNonce,
    self_commitment: SigningCommitment,
    operator_commitments: Mapping[str, SigningCommitment],
    verifying_key: Point,
    adaptor_public_key: Optional[Point] = None,
) -> Scalar:
    """The wallet's partial signature over *message*."""
    session = SigningSession(
        message,
        _parse_commitments(self_commitment, operator_commitments),
        verifying_key,
        adaptor_public_key,
    )
    return session.sign_share(USER_IDENTIFIER, private_key, nonce)


def aggregate_frost(
    message: bytes,
    self_signature: Scalar,
    self_public_key: Point,
    self_commitment: SigningCommitment,
    operator_signatures: Mapping[str, Scalar],
    operator_public_keys: Mapping[str, Point],
    operator_commitments: Mapping[str, SigningCommitment],
    verifying_key: Point,
    adaptor_public_key: Optional[Point] = None,
) -> Signature:
    """
    Combine the wallet's and the operators' partial signatures.

    Only operators that returned a signature share take part; their
    commitments define the participant set and Lagrange weights.
    """
    commitments = {
        ident: operator_commitments[ident] for ident in operator_signatures
    }
    session = SigningSession(
        message,
        _parse_commitments(self_commitment, commitments),
        verifying_key,
        adaptor_public_key,
    )
    shares = dict(operator_signatures)
    shares[USER_IDENTIFIER] = self_signature
    public_shares = dict(operator_public_keys)
    public_shares[USER_IDENTIFIER] = self_public_key
    return session.aggregate(shares, public_shares)


# ── verification ────────────────────────────────────────────────────────

def verify_signature(
    public_key: Point,
    message: bytes,
    sig: Signature,
) -> bool:
    """
    BIP-340 verification:  s·G  ==  lift_x(r) + c·lift_x(Y.x).

    The aggregate is indistinguishable from a single-signer signature;
    any BIP-340 verifier accepts it.
    """
    if len(sig.r) != XONLY_BYTES:
        return False
    try:
        R = Point.lift_x(sig.r)
    except ValueError:
        return False
    P = Point.lift_x(public_key.to_bytes_xonly())
    c = hash_challenge(R, P, message)
    return sig.s * G == R + (c * P)


def schnorr_sign(secret: Scalar, message: bytes) -> Signature:
    """Single-key BIP-340 signature (random nonce)."""
    P = secret * G
    d = secret if P.has_even_y() else -secret
    k = Scalar.random()
    R = k * G
    if not R.has_even_y():
        k = -k
    c = hash_challenge(R, P, message)
    return Signature(r=R.to_bytes_xonly(), s=k + c * d)


def signing_share_bytes(z: Scalar) -> bytes:
    return z.to_bytes()


def signing_share_from_bytes(data: bytes) -> Scalar:
    if len(data) != SCALAR_BYTES:
        raise ValueError(f"need {SCALAR_BYTES} bytes, got {len(data)}")
    v = int.from_bytes(data, "big")
    if v >= ORDER:
        raise ValueError("signature share out of range")
    return Scalar(v)
