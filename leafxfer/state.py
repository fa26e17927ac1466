"""
Transfer state machine.

    SENDER_INITIATED → SENDER_KEY_TWEAK_PENDING → SENDER_KEY_TWEAKED
        → RECEIVER_KEY_TWEAKED → RECEIVER_REFUND_SIGNED → COMPLETED

``CANCELLED`` and ``EXPIRED`` branch off every state before
``RECEIVER_KEY_TWEAKED``.  A sender may only *ask* for cancellation
while no operator has committed its tweak, i.e. in ``SENDER_INITIATED``
or ``SENDER_KEY_TWEAK_PENDING``; once an operator reports
``SENDER_KEY_TWEAKED`` the transfer has to be claimed.
"""

from __future__ import annotations

from datetime import datetime
from typing import Dict, FrozenSet, Optional

from .errors import InvalidStateTransition, TransferExpired
from .models import Transfer, TransferStatus as S

TRANSITIONS: Dict[S, FrozenSet[S]] = {
    S.SENDER_INITIATED: frozenset({S.SENDER_KEY_TWEAK_PENDING, S.CANCELLED, S.EXPIRED}),
    S.SENDER_KEY_TWEAK_PENDING: frozenset({S.SENDER_KEY_TWEAKED, S.CANCELLED, S.EXPIRED}),
    S.SENDER_KEY_TWEAKED: frozenset({S.RECEIVER_KEY_TWEAKED, S.CANCELLED, S.EXPIRED}),
    S.RECEIVER_KEY_TWEAKED: frozenset({S.RECEIVER_REFUND_SIGNED}),
    S.RECEIVER_REFUND_SIGNED: frozenset({S.COMPLETED}),
    S.COMPLETED: frozenset(),
    S.CANCELLED: frozenset(),
    S.EXPIRED: frozenset(),
    S.UNKNOWN: frozenset(),
}

SENDER_CANCELLABLE = frozenset({S.SENDER_INITIATED, S.SENDER_KEY_TWEAK_PENDING})
CLAIMABLE = frozenset({S.SENDER_KEY_TWEAKED, S.RECEIVER_KEY_TWEAKED, S.RECEIVER_REFUND_SIGNED})
TERMINAL = frozenset({S.COMPLETED, S.CANCELLED, S.EXPIRED})


def can_transition(current: S, target: S) -> bool:
    return target in TRANSITIONS.get(current, frozenset())


def advance(transfer: Transfer, target: S) -> Transfer:
    """Return *transfer* moved to *target*; raises ``InvalidStateTransition``."""
    if not can_transition(transfer.status, target):
        raise InvalidStateTransition(
            f"transfer {transfer.id}: {transfer.status.value} → {target.value}"
        )
    return transfer.with_status(target)


def can_cancel(transfer: Transfer) -> bool:
    """Whether the sender may still cancel *transfer*."""
    return transfer.status in SENDER_CANCELLABLE


def is_claimable(transfer: Transfer) -> bool:
    return transfer.status in CLAIMABLE


def is_expired(transfer: Transfer, now: Optional[datetime] = None) -> bool:
    """Expired, or still cancellable and past its expiry time."""
    return transfer.status == S.EXPIRED or (
        can_cancel(transfer) and transfer.is_expired(now)
    )


def ensure_not_expired(transfer: Transfer, now: Optional[datetime] = None) -> None:
    """Raise ``TransferExpired`` if *transfer* can no longer be tweaked."""
    if is_expired(transfer, now):
        raise TransferExpired(f"transfer {transfer.id} expired at {transfer.expiry_time}")
