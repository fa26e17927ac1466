"""
Relative-timelock arithmetic and the transaction seam.

Every transfer re-signs a leaf's refund transaction with a relative
timelock  ``TIME_LOCK_INTERVAL``  blocks shorter than the previous one,
so the newest owner's refund always confirms first.  The remaining
budget is carried in the low 16 bits of the input's nSequence:

    sequence = (1 << 30) | timelock

When the next step would reach zero the leaf has to be refreshed
(decrement the node transaction instead, reset the refund) or extended
(spend the node transaction into a new one) before it can be signed
again.

Bitcoin serialisation and sighash computation are not done here; they
sit behind ``TransactionCodec``.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .errors import TimelockExhausted, TimelockRefreshRequired
from .models import Leaf

TIME_LOCK_INTERVAL = 100
INITIAL_TIME_LOCK = 2000
_SEQUENCE_FLAG = 1 << 30
_TIMELOCK_MASK = 0xFFFF


def initial_sequence() -> int:
    return _SEQUENCE_FLAG | INITIAL_TIME_LOCK


@dataclass(frozen=True)
class SequenceStep:
    next_sequence: int
    need_refresh: bool


def next_sequence(current_sequence: Optional[int], for_refresh: bool = False) -> SequenceStep:
    """
    The sequence one interval below *current_sequence*.

    With *for_refresh* a step into the last interval is still allowed
    (and flagged); otherwise a non-positive timelock raises
    ``TimelockExhausted``.
    """
    current = (current_sequence or 0) & _TIMELOCK_MASK
    nxt = current - TIME_LOCK_INTERVAL
    if for_refresh and nxt <= TIME_LOCK_INTERVAL and current > 0:
        return SequenceStep(_SEQUENCE_FLAG | max(nxt, 0), True)
    if nxt <= 0:
        raise TimelockExhausted(f"timelock {current} cannot be decremented")
    return SequenceStep(_SEQUENCE_FLAG | nxt, nxt <= TIME_LOCK_INTERVAL)


def needs_refresh(sequence: int) -> bool:
    """True when no further decrement of *sequence* is possible."""
    return (sequence & _TIMELOCK_MASK) - TIME_LOCK_INTERVAL <= 0


# ── transaction seam ────────────────────────────────────────────────────

@dataclass(frozen=True)
class OutPoint:
    txid: str
    vout: int


class TransactionCodec(Protocol):
    """Bitcoin transaction construction and inspection."""

    def txid(self, tx: bytes) -> str: ...

    def input_sequence(self, tx: bytes, index: int = 0) -> int: ...

    def input_outpoint(self, tx: bytes, index: int = 0) -> OutPoint: ...

    def output_amount(self, tx: bytes, index: int = 0) -> int: ...

    def output_count(self, tx: bytes) -> int: ...

    def output(self, tx: bytes, index: int = 0) -> bytes:
        """Serialised output (amount + script), as sighash input."""
        ...

    def sighash(self, tx: bytes, input_index: int, prev_output: bytes) -> bytes:
        """Taproot key-path sighash of *tx* spending *prev_output*."""
        ...

    def create_refund_tx(
        self,
        sequence: int,
        node_outpoint: OutPoint,
        amount_sats: int,
        receiving_public_key: bytes,
        network: str,
    ) -> bytes: ...

    def create_connector_refund_tx(
        self,
        sequence: int,
        node_outpoint: OutPoint,
        connector_outpoint: OutPoint,
        amount_sats: int,
        receiving_public_key: bytes,
        network: str,
    ) -> bytes: ...

    def with_input(
        self,
        tx: bytes,
        sequence: int,
        prev_txid: Optional[str] = None,
    ) -> bytes:
        """Copy of *tx* with input 0 re-sequenced (and re-pointed)."""
        ...

    def create_node_tx(self, prev: OutPoint, sequence: int, output: bytes) -> bytes:
        """Node transaction spending *prev* into *output* plus an anchor."""
        ...


# ── leaf signing context ────────────────────────────────────────────────

@dataclass(frozen=True)
class LeafSigningContext:
    """What a refund signing job for one leaf needs to know."""

    leaf_id: str
    node_tx: bytes
    refund_tx: bytes
    vout: int
    node_outpoint: OutPoint
    node_output: bytes
    refund_sequence: int
    amount_sats: int


def signing_context(leaf: Leaf, codec: TransactionCodec) -> LeafSigningContext:
    return LeafSigningContext(
        leaf_id=leaf.id,
        node_tx=leaf.node_tx,
        refund_tx=leaf.refund_tx,
        vout=leaf.vout,
        node_outpoint=OutPoint(codec.txid(leaf.node_tx), 0),
        node_output=codec.output(leaf.node_tx, 0),
        refund_sequence=codec.input_sequence(leaf.refund_tx, 0),
        amount_sats=codec.output_amount(leaf.refund_tx, 0),
    )


def next_refund_sequence(leaf: Leaf, codec: TransactionCodec) -> int:
    """
    Sequence for the next refund of *leaf*.

    Raises ``TimelockRefreshRequired`` when the leaf has to be
    refreshed or extended first.
    """
    current = codec.input_sequence(leaf.refund_tx, 0)
    try:
        return next_sequence(current).next_sequence
    except TimelockExhausted as exc:
        raise TimelockRefreshRequired(leaf.id) from exc
