"""
Exception taxonomy for the leaf-ownership transfer protocol.

Every error raised by this package derives from ``LeafTransferError``.
Errors that describe bad input values additionally derive from the
matching builtin (``ValueError``, ``KeyError``, …) so that callers
written against the builtins keep working.
"""

from __future__ import annotations

from typing import Dict, List, Optional


class LeafTransferError(Exception):
    """Root of all protocol errors."""


# ── secret sharing ──────────────────────────────────────────────────────

class InsufficientShares(LeafTransferError, ValueError):
    """Fewer shares than the threshold were supplied for recovery."""

    def __init__(self, have: int, need: int) -> None:
        self.have = have
        self.need = need
        super().__init__(f"need {need} shares to recover secret, got {have}")


class InvalidShare(LeafTransferError, ValueError):
    """A share does not match its Feldman proof points."""

    def __init__(self, index: int, reason: str = "share is not valid") -> None:
        self.index = index
        super().__init__(f"share {index}: {reason}")


class DivisionByZero(LeafTransferError, ZeroDivisionError):
    """Denominator reduced to zero modulo the field."""


# ── signing ─────────────────────────────────────────────────────────────

class NonceReuseError(LeafTransferError, RuntimeError):
    """A single-use signing nonce was presented a second time."""


class AggregationMismatch(LeafTransferError):
    """The aggregated signature (or one of its shares) failed to verify."""

    def __init__(self, message: str, identifier: Optional[str] = None) -> None:
        self.identifier = identifier
        super().__init__(message)


class InvalidAdaptorSignature(LeafTransferError, ValueError):
    """An adaptor signature cannot be validated or completed."""


# ── keys ────────────────────────────────────────────────────────────────

class KeyNotFound(LeafTransferError, KeyError):
    """No private key is tracked for the requested public key."""

    def __init__(self, public_key: bytes) -> None:
        self.public_key = public_key
        super().__init__(f"no private key for public key {public_key.hex()[:16]}…")

    def __str__(self) -> str:
        return self.args[0]


# ── operators ───────────────────────────────────────────────────────────

class OperatorCallError(LeafTransferError):
    """A single operator call failed."""

    def __init__(self, identifier: str, cause: BaseException) -> None:
        self.identifier = identifier
        self.cause = cause
        super().__init__(f"operator {identifier[-8:]}: {cause}")


class OperatorFanOutError(LeafTransferError):
    """
    A fan-out phase did not meet its success policy.

    ``errors`` holds the failure of **every** operator that failed, not
    only the first one, so the caller can see the whole picture.
    """

    def __init__(
        self,
        phase: str,
        errors: Dict[str, BaseException],
        succeeded: List[str],
    ) -> None:
        self.phase = phase
        self.errors = errors
        self.succeeded = succeeded
        detail = "; ".join(
            f"{ident[-8:]}: {err}" for ident, err in sorted(errors.items())
        )
        super().__init__(
            f"{phase} failed at {len(errors)} operator(s): {detail}"
        )


class InconsistentOperatorResponse(LeafTransferError):
    """Operators disagree on the state of a transfer."""


class ShareNotFoundForOperator(LeafTransferError):
    """No secret share was produced for an operator's index."""

    def __init__(self, operator_id: int) -> None:
        self.operator_id = operator_id
        super().__init__(f"share not found for operator {operator_id}")


# ── transfers ───────────────────────────────────────────────────────────

class TransferExpired(LeafTransferError, ValueError):
    """The transfer's expiry time elapsed before it was tweaked."""


class ClaimVerificationFailed(LeafTransferError, ValueError):
    """A leaf payload signature does not verify against the sender key."""


class InvalidStateTransition(LeafTransferError):
    """A transfer was asked to move to a state it cannot reach."""


class PartialKeyTweakError(LeafTransferError):
    """
    Some operators committed the sender key tweak and some did not.

    The transfer cannot be cancelled at the operators in ``tweaked`` and
    must be completed there; ``cancelled`` lists where it was rolled back.
    """

    def __init__(
        self,
        transfer_id: str,
        tweaked: List[str],
        cancelled: List[str],
        cause: BaseException,
    ) -> None:
        self.transfer_id = transfer_id
        self.tweaked = tweaked
        self.cancelled = cancelled
        self.cause = cause
        super().__init__(
            f"transfer {transfer_id} is tweaked at {len(tweaked)} operator(s) "
            f"and cannot be cancelled there: {cause}"
        )


# ── timelocks ───────────────────────────────────────────────────────────

class TimelockExhausted(LeafTransferError, ValueError):
    """The next relative timelock would be non-positive."""


class TimelockRefreshRequired(LeafTransferError):
    """A leaf must be refreshed before it is used in a signing job."""

    def __init__(self, leaf_id: str) -> None:
        self.leaf_id = leaf_id
        super().__init__(f"leaf {leaf_id} needs a timelock refresh")


# ── wallet ──────────────────────────────────────────────────────────────

class LeafSelectionError(LeafTransferError, ValueError):
    """No set of leaves can cover the requested amount."""
