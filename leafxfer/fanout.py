"""
Concurrent calls to a set of operators with an explicit success policy.

Every phase that talks to more than one operator goes through
:func:`fan_out`.  All calls are issued at once and joined; failures are
collected rather than short-circuited, so the error raised when the
policy is not met names every operator that failed.

    ALL        every operator must succeed (key tweaks, preimage shares)
    THRESHOLD  at least *t* operators must succeed (signature shares)
    ANY        one success is enough (cancellation sweeps)
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, Generic, Iterable, List, Optional, TypeVar

from .config import SigningOperator
from .errors import LeafTransferError, OperatorCallError, OperatorFanOutError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class Require(Enum):
    ALL = "all"
    THRESHOLD = "threshold"
    ANY = "any"


@dataclass
class FanOutResult(Generic[T]):
    """Per-operator outcomes of one phase, keyed by operator identifier."""

    successes: Dict[str, T] = field(default_factory=dict)
    errors: Dict[str, BaseException] = field(default_factory=dict)

    @property
    def succeeded(self) -> List[str]:
        return sorted(self.successes)

    @property
    def failed(self) -> List[str]:
        return sorted(self.errors)

    def values(self) -> List[T]:
        return [self.successes[i] for i in self.succeeded]

    def meets(self, require: Require, threshold: Optional[int] = None) -> bool:
        n = len(self.successes)
        if require is Require.ALL:
            return not self.errors
        if require is Require.THRESHOLD:
            if threshold is None:
                raise ValueError("THRESHOLD policy needs a threshold")
            return n >= threshold
        return n >= 1


async def fan_out(
    operators: Iterable[SigningOperator],
    call: Callable[[SigningOperator], Awaitable[T]],
    require: Require = Require.ALL,
    threshold: Optional[int] = None,
    phase: str = "operator call",
) -> FanOutResult[T]:
    """
    Run ``call(operator)`` for every operator concurrently.

    Returns every outcome when *require* is met.  Otherwise raises
    ``OperatorFanOutError`` carrying the successes and all failures.
    Cancellation (and other non-``Exception`` errors) propagates.
    """
    ops = list(operators)
    outcomes = await asyncio.gather(
        *(call(op) for op in ops), return_exceptions=True,
    )

    result: FanOutResult[T] = FanOutResult()
    for op, outcome in zip(ops, outcomes):
        if isinstance(outcome, BaseException):
            if not isinstance(outcome, Exception):
                raise outcome
            logger.warning("%s failed at operator %d: %s", phase, op.id, outcome)
            if not isinstance(outcome, OperatorCallError):
                outcome = OperatorCallError(op.identifier, outcome)
            result.errors[op.identifier] = outcome
        else:
            result.successes[op.identifier] = outcome

    if not result.meets(require, threshold):
        raise OperatorFanOutError(phase, result.errors, result.succeeded)
    logger.debug(
        "%s: %d/%d operators succeeded", phase, len(result.successes), len(ops),
    )
    return result


async def call_operator(
    connection_manager,
    operator: SigningOperator,
    call: Callable[[Any], Awaitable[T]],
) -> T:
    """
    Run *call* against a client for *operator*.

    Transport failures are wrapped in ``OperatorCallError``; protocol
    errors pass through unchanged.
    """
    client = await connection_manager.create_client(operator.address)
    try:
        return await call(client)
    except LeafTransferError:
        raise
    except Exception as exc:
        raise OperatorCallError(operator.identifier, exc) from exc
