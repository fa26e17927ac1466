"""
Leaf, transfer and key-tweak entities.

All entities are immutable: a transfer run never edits a ``Leaf`` in
place, it receives new ``Leaf`` values from the operators.  Status
fields are closed enums; values an operator sends that this version
does not know decode to ``UNKNOWN`` instead of failing.
"""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Optional, Tuple, Union


class _OpenEnum(Enum):
    """Enum whose ``parse`` maps unrecognised wire values to UNKNOWN."""

    @classmethod
    def parse(cls, value: str):
        try:
            return cls(value)
        except ValueError:
            return cls("UNKNOWN")


class LeafStatus(_OpenEnum):
    """Lifecycle of a leaf at the operators."""
    AVAILABLE = "AVAILABLE"
    TRANSFER_LOCKED = "TRANSFER_LOCKED"
    SPENT = "SPENT"
    UNKNOWN = "UNKNOWN"


class TransferStatus(_OpenEnum):
    """Transfer state machine positions (see :pymod:`state`)."""
    SENDER_INITIATED = "SENDER_INITIATED"
    SENDER_KEY_TWEAK_PENDING = "SENDER_KEY_TWEAK_PENDING"
    SENDER_KEY_TWEAKED = "SENDER_KEY_TWEAKED"
    RECEIVER_KEY_TWEAKED = "RECEIVER_KEY_TWEAKED"
    RECEIVER_REFUND_SIGNED = "RECEIVER_REFUND_SIGNED"
    COMPLETED = "COMPLETED"
    CANCELLED = "CANCELLED"
    EXPIRED = "EXPIRED"
    UNKNOWN = "UNKNOWN"


class SignatureIntent(Enum):
    """Why a set of node signatures is being finalised."""
    CREATION = "CREATION"
    TRANSFER = "TRANSFER"
    AGGREGATE = "AGGREGATE"
    REFRESH = "REFRESH"
    EXTEND = "EXTEND"


# ── leaves ──────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class Leaf:
    """
    An off-chain unit of value.

    ``verifying_public_key`` is the joint key  P_user + P_ops  that the
    node and refund transactions are signed under.
    """

    id: str
    value: int
    node_tx: bytes
    refund_tx: bytes
    verifying_public_key: bytes
    owner_identity_public_key: bytes
    parent_node_id: Optional[str] = None
    vout: int = 0
    status: LeafStatus = LeafStatus.AVAILABLE

    def __post_init__(self) -> None:
        if self.value < 0:
            raise ValueError(f"leaf {self.id} has negative value")

    def with_changes(self, **changes) -> Leaf:
        return replace(self, **changes)


@dataclass(frozen=True)
class LeafKeyTweak:
    """Intent to rotate a leaf's wallet-side signing key."""

    leaf: Leaf
    signing_public_key: bytes
    new_signing_public_key: bytes


# ── transfers ───────────────────────────────────────────────────────────

@dataclass(frozen=True)
class TransferLeaf:
    """A leaf inside a transfer, with the sender's encrypted handover."""

    leaf: Leaf
    secret_cipher: bytes = b""
    signature: bytes = b""
    intermediate_refund_tx: bytes = b""


@dataclass(frozen=True)
class Transfer:
    """The unit of atomicity for an ownership change."""

    id: str
    sender_identity_public_key: bytes
    receiver_identity_public_key: bytes
    status: TransferStatus
    total_value: int
    expiry_time: datetime
    leaves: Tuple[TransferLeaf, ...] = field(default_factory=tuple)

    def is_expired(self, now: Optional[datetime] = None) -> bool:
        now = now or datetime.now(timezone.utc)
        return now >= self.expiry_time

    def leaf_ids(self) -> Tuple[str, ...]:
        return tuple(tl.leaf.id for tl in self.leaves)

    def matches(self, other: Transfer) -> bool:
        """
        Whether two operators returned the same transfer: id, sender,
        status, total value, expiry and leaf count must agree.
        """
        return (
            self.id == other.id
            and self.sender_identity_public_key == other.sender_identity_public_key
            and self.status == other.status
            and self.total_value == other.total_value
            and self.expiry_time == other.expiry_time
            and len(self.leaves) == len(other.leaves)
        )

    def with_status(self, status: TransferStatus) -> Transfer:
        return replace(self, status=status)


# ── query filters (tagged unions) ───────────────────────────────────────

@dataclass(frozen=True)
class SenderIdentity:
    public_key: bytes


@dataclass(frozen=True)
class ReceiverIdentity:
    public_key: bytes


Participant = Union[SenderIdentity, ReceiverIdentity]


@dataclass(frozen=True)
class OwnerIdentity:
    public_key: bytes


@dataclass(frozen=True)
class NodeIds:
    ids: Tuple[str, ...]


NodeSource = Union[OwnerIdentity, NodeIds]
