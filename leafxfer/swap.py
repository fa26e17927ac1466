"""
Leaf swaps with the service provider.

A swap reshapes the wallet's leaves: the wallet sends some leaves to the
service provider (SSP) and receives leaves of other denominations back.
Both directions are bound together with one adaptor secret *t*:

1. The wallet co-signs refunds for its leaves towards the SSP and blinds
   them with *t*; the SSP only sees the adaptor signatures.
2. The SSP co-signs refunds for its leaves towards the wallet, blinded
   by the same  T = t·G, and returns them.
3. The wallet checks that *t* completes every SSP signature, tweaks its
   leaf keys over to the SSP, then reveals *t*.

If anything fails before the reveal, the wallet cancels its outgoing
transfer at every operator where it is still cancellable.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, List, Optional, Protocol, Sequence, Tuple

from .adaptor import apply_adaptor_to_signature, derive_from_existing_adaptor
from .curve import Point, Scalar
from .errors import InconsistentOperatorResponse, LeafTransferError
from .models import Leaf, LeafKeyTweak, NodeIds
from .signing import Signature
from .transfer import TransferService

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class UserLeaf:
    """One of the wallet's leaves as offered to the SSP."""

    leaf_id: str
    raw_unsigned_refund_transaction: bytes
    adaptor_added_signature: bytes


@dataclass(frozen=True)
class SwapLeaf:
    """One of the SSP's leaves offered back, with its blinded refund signature."""

    leaf_id: str
    raw_unsigned_refund_transaction: bytes
    adaptor_signed_signature: bytes


@dataclass(frozen=True)
class LeavesSwapRequest:
    id: str
    swap_leaves: Tuple[SwapLeaf, ...]


class SwapProvider(Protocol):
    """The SSP's side of a swap."""

    async def request_leaves_swap(
        self,
        user_leaves: Sequence[UserLeaf],
        adaptor_public_key: bytes,
        target_amount_sats: int,
        total_amount_sats: int,
        fee_sats: int,
        idempotency_key: str,
    ) -> Optional[LeavesSwapRequest]: ...

    async def complete_leaves_swap(
        self,
        adaptor_secret_key: bytes,
        user_outbound_transfer_external_id: str,
        leaves_swap_request_id: str,
    ) -> Any: ...


class SwapService:
    """
    Runs a swap from the wallet's side.

    *claim_transfers* is called before the swap (so pending incoming
    leaves are not left behind) and after it (to claim the SSP's leaves).
    """

    def __init__(
        self,
        transfers: TransferService,
        provider: SwapProvider,
        claim_transfers: Callable[[], Awaitable[Any]],
    ) -> None:
        self.transfers = transfers
        self.provider = provider
        self.claim_transfers = claim_transfers

    async def request_leaves_swap(
        self,
        leaves: Sequence[Leaf],
        target_amount: Optional[int] = None,
        fee_sats: int = 0,
    ) -> Any:
        """
        Swap *leaves* with the SSP for leaves worth *target_amount*
        (default: their total value).
        """
        if not leaves:
            raise ValueError("no leaves to swap")
        total = sum(leaf.value for leaf in leaves)
        if target_amount is not None and not 0 < target_amount <= total:
            raise ValueError(f"target amount {target_amount} not in 1..{total}")

        await self.claim_transfers()

        signer = self.transfers.signer
        config = self.transfers.config
        tweaks = [
            LeafKeyTweak(
                leaf=leaf,
                signing_public_key=signer.leaf_signing_key(leaf.id),
                new_signing_public_key=signer.generate_public_key(),
            )
            for leaf in leaves
        ]
        signed = await self.transfers.start_swap_sign_refund(
            tweaks,
            config.ssp_identity_public_key,
            datetime.now(timezone.utc) + config.swap_expiry,
        )
        transfer = signed.transfer
        logger.info("swapping %d leaves (%d sats) in transfer %s", len(leaves), total, transfer.id)

        try:
            if not transfer.leaves:
                raise InconsistentOperatorResponse(f"transfer {transfer.id} has no leaves")

            first_id = transfer.leaves[0].leaf.id
            adaptor = signer.generate_adaptor_from_signature(signed.signature_map[first_id])
            user_leaves: List[UserLeaf] = []
            for transfer_leaf in transfer.leaves:
                leaf_id = transfer_leaf.leaf.id
                if leaf_id == first_id:
                    blinded = adaptor.adaptor_signature
                else:
                    blinded = derive_from_existing_adaptor(
                        Signature.from_bytes(signed.signature_map[leaf_id]),
                        adaptor.adaptor_private_key,
                    )
                user_leaves.append(UserLeaf(
                    leaf_id=leaf_id,
                    raw_unsigned_refund_transaction=(
                        transfer_leaf.intermediate_refund_tx
                        or signed.leaf_data_map[leaf_id].refund_tx
                    ),
                    adaptor_added_signature=blinded.to_bytes(),
                ))

            request = await self.provider.request_leaves_swap(
                user_leaves,
                adaptor.adaptor_public_key.to_bytes_compressed(),
                target_amount if target_amount is not None else total,
                total,
                fee_sats,
                str(uuid.uuid4()),
            )
            if request is None:
                raise LeafTransferError("swap provider returned no swap request")

            await self._validate_swap_leaves(request, adaptor.adaptor_private_key)

            await self.transfers.send_transfer_tweak_key(transfer, tweaks, signed.signature_map)
            completed = await self.provider.complete_leaves_swap(
                adaptor.adaptor_private_key.to_bytes(), transfer.id, request.id,
            )
            await self.claim_transfers()
            return completed
        except Exception:
            logger.warning("leaf swap %s failed; cancelling outgoing transfers", transfer.id)
            try:
                await self.transfers.cancel_all_sender_initiated()
            except LeafTransferError as cancel_error:
                logger.warning("cancellation after failed swap failed: %s", cancel_error)
            raise

    async def _validate_swap_leaves(
        self,
        request: LeavesSwapRequest,
        adaptor_private_key: Scalar,
    ) -> None:
        """Every SSP refund signature must complete with our adaptor secret."""
        ids = tuple(leaf.leaf_id for leaf in request.swap_leaves)
        nodes = await self.transfers.query_nodes(NodeIds(ids))
        if len(nodes) != len(request.swap_leaves):
            raise InconsistentOperatorResponse(
                f"expected {len(request.swap_leaves)} swap nodes, got {len(nodes)}"
            )
        codec = self.transfers.codec
        for swap_leaf in request.swap_leaves:
            node = nodes.get(swap_leaf.leaf_id)
            if node is None:
                raise InconsistentOperatorResponse(f"swap leaf {swap_leaf.leaf_id} not found")
            sighash = codec.sighash(
                swap_leaf.raw_unsigned_refund_transaction, 0, codec.output(node.node_tx, 0),
            )
            apply_adaptor_to_signature(
                Point.from_bytes(node.verifying_public_key),
                sighash,
                Signature.from_bytes(swap_leaf.adaptor_signed_signature),
                adaptor_private_key,
            )
