"""
Choosing which leaves pay for an amount.

Sends need *exact* change, since a leaf cannot be split while it is being
transferred: ``select_leaves`` walks the leaves largest-first, then
smallest-first, taking every leaf that still fits.  Swaps only need to
*cover* the amount: ``select_leaves_for_swap`` takes the smallest leaves
until the total reaches it.
"""

from __future__ import annotations

from typing import Iterable, List

from .errors import LeafSelectionError
from .models import Leaf


def total_value(leaves: Iterable[Leaf]) -> int:
    return sum(leaf.value for leaf in leaves)


def _greedy(leaves: List[Leaf], target_amount: int, largest_first: bool) -> List[Leaf]:
    selected: List[Leaf] = []
    amount = 0
    for leaf in sorted(leaves, key=lambda l: l.value, reverse=largest_first):
        if target_amount - amount >= leaf.value:
            amount += leaf.value
            selected.append(leaf)
    return selected


def select_leaves(leaves: Iterable[Leaf], target_amount: int) -> List[Leaf]:
    """
    Greedy selection towards *target_amount*: largest-first, then
    smallest-first if the first pass misses.

    The result may sum to less than the target; callers compare
    ``total_value(result)`` with the target to see whether exact change
    was found.
    """
    if target_amount <= 0:
        raise ValueError("target amount must be positive")

    leaves = list(leaves)
    selected = _greedy(leaves, target_amount, largest_first=True)
    if total_value(selected) == target_amount:
        return selected
    smallest = _greedy(leaves, target_amount, largest_first=False)
    if total_value(smallest) == target_amount:
        return smallest
    return selected


def select_leaves_for_swap(leaves: Iterable[Leaf], target_amount: int) -> List[Leaf]:
    """
    Smallest-first selection that covers *target_amount*.

    Raises ``LeafSelectionError`` if all leaves together are not enough.
    """
    if target_amount <= 0:
        raise ValueError("target amount must be positive")

    selected: List[Leaf] = []
    amount = 0
    for leaf in sorted(leaves, key=lambda l: l.value):
        if amount >= target_amount:
            break
        amount += leaf.value
        selected.append(leaf)

    if amount < target_amount:
        raise LeafSelectionError(
            f"leaves worth {amount} sats cannot cover {target_amount} sats"
        )
    return selected
