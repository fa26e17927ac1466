"""
Cooperative exit: trading leaves for an on-chain output.

The service provider builds a connector transaction whose outputs are
only spendable once its exit transaction confirms.  Each leaf's new
refund spends both the leaf's node output and one connector output, so
the refund is only valid if the exit really happened.  After the
refunds are co-signed the leaves are handed over with the usual
unanimous key tweak.
"""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional, Protocol, Sequence

from .models import LeafKeyTweak, Transfer
from .rpc import CooperativeExitRequest, LeafRefundTxSigningJob, SigningJob
from .transaction import OutPoint, TransactionCodec, next_refund_sequence, signing_context
from .transfer import BaseTransferService

logger = logging.getLogger(__name__)

# withdrawals below this many sats are refused
MIN_WITHDRAWAL_SATS = 10_000


@dataclass(frozen=True)
class CoopExitRequest:
    """The SSP's answer to an exit request: an id and its connector tx."""

    id: str
    raw_connector_transaction: bytes


class CoopExitProvider(Protocol):
    """The SSP's side of a cooperative exit."""

    async def request_coop_exit(
        self,
        leaf_external_ids: Sequence[str],
        withdrawal_address: str,
        idempotency_key: str,
    ) -> Optional[CoopExitRequest]: ...

    async def complete_coop_exit(
        self,
        user_outbound_transfer_external_id: str,
        coop_exit_request_id: str,
    ) -> Any: ...


@dataclass
class CoopExitResult:
    transfer: Transfer
    signature_map: Dict[str, bytes]


def connector_outputs(codec: TransactionCodec, connector_tx: bytes) -> List[OutPoint]:
    """Every output of *connector_tx* but the trailing anchor."""
    txid = codec.txid(connector_tx)
    return [OutPoint(txid, i) for i in range(codec.output_count(connector_tx) - 1)]


class CoopExitService(BaseTransferService):

    async def get_connector_refund_signatures(
        self,
        leaves: Sequence[LeafKeyTweak],
        exit_txid: str,
        connector_outputs: Sequence[OutPoint],
        receiver_public_key: bytes,
    ) -> CoopExitResult:
        """
        Co-sign connector refunds for *leaves* and hand them over to
        *receiver_public_key*.  ``connector_outputs[i]`` backs ``leaves[i]``.
        """
        signed = await self._sign_coop_exit_refunds(
            leaves, exit_txid, connector_outputs, receiver_public_key,
        )
        transfer = await self.send_transfer_tweak_key(
            signed.transfer, leaves, signed.signature_map,
        )
        return CoopExitResult(transfer=transfer, signature_map=signed.signature_map)

    async def _sign_coop_exit_refunds(
        self,
        leaves: Sequence[LeafKeyTweak],
        exit_txid: str,
        connector_outputs: Sequence[OutPoint],
        receiver_public_key: bytes,
    ) -> CoopExitResult:
        if len(leaves) != len(connector_outputs):
            raise ValueError(
                f"{len(leaves)} leaves but {len(connector_outputs)} connector outputs"
            )

        jobs: List[LeafRefundTxSigningJob] = []
        leaf_data_map = {}
        try:
            for leaf, connector in zip(leaves, connector_outputs):
                ctx = signing_context(leaf.leaf, self.codec)
                data = self._new_leaf_data(leaf.leaf, leaf.signing_public_key, receiver_public_key)
                leaf_data_map[leaf.leaf.id] = data
                data.refund_tx = self.codec.create_connector_refund_tx(
                    next_refund_sequence(leaf.leaf, self.codec),
                    ctx.node_outpoint,
                    connector,
                    leaf.leaf.value,
                    receiver_public_key,
                    self.config.network.value,
                )
                jobs.append(LeafRefundTxSigningJob(
                    leaf_id=leaf.leaf.id,
                    refund_tx_signing_job=SigningJob(
                        signing_public_key=leaf.signing_public_key,
                        raw_tx=data.refund_tx,
                        signing_nonce_commitment=data.signing_nonce_commitment,
                    ),
                ))

            request = CooperativeExitRequest(
                transfer=self._start_request(
                    str(uuid.uuid4()),
                    receiver_public_key,
                    datetime.now(timezone.utc) + self.config.coop_exit_expiry,
                    jobs,
                ),
                exit_id=str(uuid.uuid4()),
                exit_txid=exit_txid,
            )
            logger.info("starting cooperative exit of %d leaves (exit tx %s)", len(leaves), exit_txid)
            response = await self._on_coordinator(lambda c: c.cooperative_exit(request))

            signatures = self.sign_refunds(leaf_data_map, response.signing_results)
        finally:
            self._discard_unsigned(leaf_data_map)
        return CoopExitResult(
            transfer=response.transfer,
            signature_map={s.node_id: s.refund_tx_signature for s in signatures},
        )
