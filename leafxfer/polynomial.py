"""
Lagrange weights and Feldman commitments over Z_q.

A leaf's operator key, a key tweak and a preimage are all hidden in the
constant term of a random polynomial  f(x) = a_0 + a_1 x + … ;  share
holders get  (i, f(i)).  Two things are done with the public side of
that polynomial:

- FROST weights each signer's share by its Lagrange coefficient at
  zero for the signing set;
- Feldman commitments  C_j = a_j · G  let one operator check its share
  without seeing anyone else's.

References
----------
- Shamir (1979). "How to Share a Secret."  CACM 22(11).
- Feldman (1987). "A Practical Scheme for Non-interactive Verifiable
  Secret Sharing."  FOCS 1987.
"""

from __future__ import annotations

from typing import List

from .curve import Scalar, Point, G
from .field import batch_inverse


# ── Lagrange coefficients ───────────────────────────────────────────────

def all_lagrange_coefficients(signer_ids: List[int]) -> List[Scalar]:
    r"""
    Lagrange coefficient at zero for every id in *signer_ids*, in order:

    .. math::
        \lambda_i = \prod_{j \in S,\; j \ne i} \frac{j}{j - i}

    All denominators share one field inversion.
    """
    if len(set(signer_ids)) != len(signer_ids):
        raise ValueError("signer ids must be distinct")
    nums: List[Scalar] = []
    dens: List[Scalar] = []
    for i in signer_ids:
        xi = Scalar(i)
        num = Scalar.one()
        den = Scalar.one()
        for j in signer_ids:
            if j == i:
                continue
            xj = Scalar(j)
            num = num * xj
            den = den * (xj - xi)
        nums.append(num)
        dens.append(den)
    return [n * d for n, d in zip(nums, batch_inverse(dens))]


# ── Feldman commitments ─────────────────────────────────────────────────

def commit_polynomial(coeffs: List[Scalar]) -> List[Point]:
    """C_j = a_j · G  for each coefficient, constant term first."""
    return [c * G for c in coeffs]


def evaluate_commitment(commitments: List[Point], eval_point: int) -> Point:
    """Σ_j  C_j · x^j: the public image of  f(x)."""
    x = Scalar(eval_point)
    rhs = Point.identity()
    x_pow = Scalar.one()
    for C_j in commitments:
        rhs = rhs + (x_pow * C_j)
        x_pow = x_pow * x
    return rhs
